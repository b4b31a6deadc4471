"""
Тесты пакетного импорта смен
"""
import pytest
from datetime import datetime
from decimal import Decimal

from clubledger.database import crud
from clubledger.exceptions import ValidationError
from clubledger.services.batch_import import BatchImportRunner, BatchShiftRow, parse_club_datetime


def row(name="Иванов Иван Иванович", day=1, **overrides):
    data = {
        "employee_name": name,
        "check_in": f"{day:02d}.10.2024 10:00",
        "check_out": f"{day:02d}.10.2024 22:00",
        "cash_income": 1000,
        "card_income": 500,
    }
    data.update(overrides)
    return data


class TestParseDatetime:
    """Время строки пакета по часам клуба"""

    def test_local_time_to_utc(self):
        assert parse_club_datetime("01.10.2024 10:00", "Europe/Moscow") == datetime(2024, 10, 1, 7, 0)

    def test_iso_format(self):
        assert parse_club_datetime("2024-10-01T22:30:00", "Europe/Moscow") == datetime(2024, 10, 1, 19, 30)

    def test_explicit_offset_kept(self):
        assert parse_club_datetime("2024-10-01T10:00:00+00:00", "Europe/Moscow") == datetime(2024, 10, 1, 10, 0)

    def test_empty(self):
        assert parse_club_datetime("", "Europe/Moscow") is None

    def test_garbage(self):
        with pytest.raises(ValidationError):
            parse_club_datetime("вчера вечером", "Europe/Moscow")


class TestBatchRow:

    def test_amount_with_spaces(self):
        """Суммы из таблиц приходят с пробелами и запятой"""
        parsed = BatchShiftRow.model_validate(row(cash_income="12 500,50", card_income=None))
        assert parsed.cash_income == Decimal('12500.50')
        assert parsed.card_income == Decimal('0')


class TestProcessBatch:
    """Импорт пакета"""

    async def test_partial_success(self, session, club):
        """5 строк, в третьей нет сотрудника: 4 импортировано, 1 ошибка с индексом 2"""
        rows = [
            row(day=1),
            row(day=2),
            row(name=None, day=3),
            row(name="Сидорова Анна", day=4),
            {**row(day=5, name=None), "user_id": club['employee_id']},
        ]
        result = await BatchImportRunner(session).process_batch(club['club_id'], rows, actor_id=club['owner_id'])

        assert result.imported == 4
        assert result.failed == 1
        assert len(result.errors) == 1
        assert result.errors[0].index == 2
        assert [item['index'] for item in result.results] == [0, 1, 3, 4]

    async def test_rows_become_closed_shifts(self, session, club):
        result = await BatchImportRunner(session).process_batch(club['club_id'], [row()])

        item = result.results[0]
        assert item['total_hours'] == '12.00'
        assert item['calculated_salary'] == '2445.00'

        shift = await crud.get_shift(session, item['shift_id'])
        assert shift.status == 'CLOSED'
        assert shift.check_in == datetime(2024, 10, 1, 7, 0)
        assert shift.shift_type == 'DAY'

    async def test_name_match_ignores_case_and_spaces(self, session, club):
        result = await BatchImportRunner(session).process_batch(
            club['club_id'], [row(name="  иванов   иван иванович ")]
        )
        assert result.imported == 1
        assert result.results[0]['user_id'] == club['employee_id']

    async def test_unknown_employee(self, session, club):
        result = await BatchImportRunner(session).process_batch(club['club_id'], [row(name="Кузнецов")])
        assert result.failed == 1
        assert "Кузнецов" in result.errors[0].error

    async def test_bad_rows_do_not_stop_batch(self, session, club):
        """Ошибки разных видов не прерывают пакет"""
        rows = [
            row(check_in="не дата"),
            row(cash_income=-100),
            row(check_out=None),
            row(day=7),
        ]
        result = await BatchImportRunner(session).process_batch(club['club_id'], rows)
        assert result.imported == 1
        assert [error.index for error in result.errors] == [0, 1, 2]
        assert result.results[0]['index'] == 3
