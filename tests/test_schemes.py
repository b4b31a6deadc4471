"""
Тесты схем оплаты и версий формулы
"""
import pytest

from clubledger.database import crud
from clubledger.exceptions import NotFoundError, ValidationError
from clubledger.services.schemes import SchemeService

HOURLY_FORMULA = [
    {"kind": "HOURLY", "rate": 200},
    {"kind": "PERCENT_OF_METRIC", "metric_key": "total_revenue", "percent": 3},
]


class TestCreateScheme:

    async def test_first_version(self, session, club):
        scheme = await SchemeService(session).create_scheme(
            club['club_id'], "Ночной администратор", [{"kind": "FLAT_PER_SHIFT", "amount": 2500}],
            standard_monthly_shifts=12,
        )
        versions = await crud.get_scheme_versions(session, scheme.id)
        assert [v.version for v in versions] == [1]
        assert scheme.standard_monthly_shifts == 12

    async def test_invalid_formula(self, session, club):
        with pytest.raises(ValidationError):
            await SchemeService(session).create_scheme(club['club_id'], "Пустая", [])

    async def test_invalid_period_bonus(self, session, club):
        with pytest.raises(ValidationError):
            await SchemeService(session).create_scheme(
                club['club_id'], "Сломанная", HOURLY_FORMULA,
                period_bonuses=[{"type": "PROGRESSIVE", "thresholds": "много"}],
            )


class TestPublishVersion:

    async def test_versions_append_only(self, session, club):
        """Новая версия получает следующий номер, старые не меняются"""
        service = SchemeService(session)
        second = await service.publish_version(club['scheme_id'], [{"kind": "HOURLY", "rate": 250}])
        third = await service.publish_version(club['scheme_id'], [{"kind": "HOURLY", "rate": 300}])
        assert (second.version, third.version) == (2, 3)

        first = await crud.get_scheme_version(session, club['version_id'])
        assert first.formula == HOURLY_FORMULA
        latest = await crud.get_latest_scheme_version(session, club['scheme_id'])
        assert latest.id == third.id

    async def test_conflict_retried(self, session, club, monkeypatch):
        """Номер занят параллельной публикацией: берется следующий"""
        original = crud.get_max_scheme_version
        calls = []

        async def stale_max(session, scheme_id):
            calls.append(scheme_id)
            if len(calls) == 1:
                return 0
            return await original(session, scheme_id)

        monkeypatch.setattr(crud, 'get_max_scheme_version', stale_max)
        version = await SchemeService(session).publish_version(
            club['scheme_id'], [{"kind": "HOURLY", "rate": 250}]
        )
        assert version.version == 2
        assert len(calls) == 2

    async def test_unknown_scheme(self, session, club):
        with pytest.raises(NotFoundError):
            await SchemeService(session).publish_version(9999, HOURLY_FORMULA)


class TestAssignScheme:

    async def test_reassign(self, session, club):
        service = SchemeService(session)
        scheme = await service.create_scheme(club['club_id'], "Старший админ", [{"kind": "HOURLY", "rate": 300}])
        await service.assign_scheme(club['employee_id'], club['club_id'], scheme.id)

        assigned = await crud.get_assigned_scheme(session, club['employee_id'], club['club_id'])
        assert assigned.id == scheme.id

    async def test_scheme_from_other_club(self, session, club):
        with pytest.raises(NotFoundError):
            await SchemeService(session).assign_scheme(club['employee_id'], 9999, club['scheme_id'])
