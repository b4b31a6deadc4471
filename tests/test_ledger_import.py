"""
Тесты проводки выручки смен в финансовый журнал
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select

from clubledger.config import settings
from clubledger.database import crud
from clubledger.database.models import FinanceCategory, FinanceTransaction, ReportTemplate
from clubledger.exceptions import (
    AlreadyImportedError, RevenueCategoryMissingError, StorageConflictError
)
from clubledger.services.ledger_import import LedgerImporter
from clubledger.services.shift_lifecycle import ShiftCreate, ShiftService

OCTOBER_START = datetime(2024, 10, 1)
NOVEMBER_START = datetime(2024, 11, 1)


async def closed_shift(session, club, cash=1000, card=500, report_data=None, day=1):
    check_in = datetime(2024, 10, day, 7, 0)
    return await ShiftService(session).create_shift(club['club_id'], ShiftCreate(
        user_id=club['employee_id'],
        check_in=check_in,
        check_out=check_in + timedelta(hours=12),
        cash_income=cash,
        card_income=card,
        report_data=report_data or {},
    ))


async def add_template(session, club, fields):
    session.add(ReportTemplate(club_id=club['club_id'], schema=fields, is_active=True))
    await session.commit()


class TestImportShift:
    """Проводка одной смены"""

    async def test_cash_and_card_posted(self, session, club):
        """Наличные и безнал: две проводки со ссылкой на смену"""
        await add_template(session, club, [
            {"metric_key": "cash_income", "field_type": "INCOME"},
            {"metric_key": "card_income", "field_type": "INCOME"},
        ])
        shift = await closed_shift(session, club)

        transactions = await LedgerImporter(session).import_shift(shift, created_by=club['owner_id'])
        await session.commit()

        assert len(transactions) == 2
        assert sorted(t.amount for t in transactions) == [Decimal('500.00'), Decimal('1000.00')]
        assert {t.payment_method for t in transactions} == {'cash_income', 'card_income'}
        assert all(t.related_shift_report_id == shift.id for t in transactions)
        assert all(t.type == 'income' and t.status == 'completed' for t in transactions)
        assert all(t.category_id == club['category_id'] for t in transactions)
        assert all(t.transaction_date == shift.check_in for t in transactions)

    async def test_second_import_refused(self, session, club):
        """Повторная проводка отклоняется и ничего не добавляет"""
        shift = await closed_shift(session, club)
        importer = LedgerImporter(session)
        await importer.import_shift(shift)
        await session.commit()

        with pytest.raises(AlreadyImportedError) as exc_info:
            await importer.import_shift(shift)
        assert exc_info.value.shift_id == shift.id
        assert await crud.count_shift_transactions(session, shift.id) == 2

    async def test_storage_constraint_is_final_guard(self, session, club, monkeypatch):
        """Проверка пропустила дубль: срабатывает уникальный индекс"""
        shift = await closed_shift(session, club)
        shift_id = shift.id
        importer = LedgerImporter(session)
        await importer.import_shift(shift)
        await session.commit()

        async def no_transactions(session, shift_id):
            return 0

        monkeypatch.setattr(crud, 'count_shift_transactions', no_transactions)
        with pytest.raises(StorageConflictError) as exc_info:
            await importer.import_shift(shift)
        assert isinstance(exc_info.value, AlreadyImportedError)

        monkeypatch.undo()
        assert await crud.count_shift_transactions(session, shift_id) == 2

    async def test_zero_income_posts_nothing(self, session, club):
        """Нулевые суммы не проводятся"""
        shift = await closed_shift(session, club, cash=0, card=0)
        transactions = await LedgerImporter(session).import_shift(shift)
        assert transactions == []

    async def test_only_positive_channels(self, session, club):
        shift = await closed_shift(session, club, cash=1000, card=0)
        transactions = await LedgerImporter(session).import_shift(shift)
        assert [t.payment_method for t in transactions] == ['cash_income']

    async def test_custom_income_field(self, session, club):
        """Поле дохода из шаблона проводится отдельным каналом"""
        await add_template(session, club, [
            {"metric_key": "sbp_income", "field_type": "INCOME", "custom_label": "СБП"},
            {"metric_key": "supplies", "field_type": "EXPENSE"},
        ])
        shift = await closed_shift(
            session, club, report_data={"sbp_income": 300, "supplies": 200}
        )
        transactions = await LedgerImporter(session).import_shift(shift)

        by_channel = {t.payment_method: t for t in transactions}
        assert set(by_channel) == {'cash_income', 'card_income', 'sbp_income'}
        assert by_channel['sbp_income'].amount == Decimal('300.00')
        assert by_channel['sbp_income'].description == 'Выручка смены (СБП)'

    async def test_club_category_preferred(self, session, club):
        """Категория клуба важнее общей"""
        own = FinanceCategory(club_id=club['club_id'], name=settings.REVENUE_CATEGORY_NAME, type='income')
        session.add(own)
        await session.commit()

        shift = await closed_shift(session, club)
        transactions = await LedgerImporter(session).import_shift(shift)
        assert {t.category_id for t in transactions} == {own.id}

    async def test_missing_category(self, session, club):
        category = await session.get(FinanceCategory, club['category_id'])
        category.is_active = False
        await session.commit()

        shift = await closed_shift(session, club)
        with pytest.raises(RevenueCategoryMissingError):
            await LedgerImporter(session).import_shift(shift)


class TestImportRange:
    """Проводка смен за период"""

    async def test_preview_does_not_write(self, session, club):
        await closed_shift(session, club, day=1)
        await closed_shift(session, club, cash=2000, card=0, day=2)
        await ShiftService(session).check_in(club['second_id'], club['club_id'], now=datetime(2024, 10, 3, 7))

        stats = await LedgerImporter(session).import_range(
            club['club_id'], OCTOBER_START, NOVEMBER_START, preview=True
        )

        assert stats['preview'] is True
        assert stats['shifts_total'] == 2
        assert stats['shifts_imported'] == 2
        assert stats['transactions_created'] == 3
        assert stats['totals'] == {'cash_income': Decimal('3000.00'), 'card_income': Decimal('500.00')}
        result = await session.execute(select(FinanceTransaction))
        assert result.scalars().all() == []

    async def test_import_and_repeat(self, session, club):
        """Повторный запуск пропускает уже проведенные смены"""
        first = await closed_shift(session, club, day=1)
        await closed_shift(session, club, day=2)
        importer = LedgerImporter(session)

        stats = await importer.import_range(club['club_id'], OCTOBER_START, NOVEMBER_START)
        assert stats['shifts_imported'] == 2
        assert stats['transactions_created'] == 4
        assert len(stats['transaction_ids']) == 4
        assert await crud.count_shift_transactions(session, first.id) == 2

        again = await importer.import_range(club['club_id'], OCTOBER_START, NOVEMBER_START)
        assert again['transactions_created'] == 0
        assert again['skipped'] == 2
        assert len(again['skipped_reasons']) == 2

    async def test_outside_period_ignored(self, session, club):
        await closed_shift(session, club, day=1)
        stats = await LedgerImporter(session).import_range(
            club['club_id'], NOVEMBER_START, datetime(2024, 12, 1)
        )
        assert stats['shifts_total'] == 0
