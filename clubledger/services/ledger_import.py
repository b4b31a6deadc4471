"""
Проводка выручки смены в финансовый журнал

Выручка смены попадает в журнал ровно один раз: по одной проводке на каждый
канал дохода (наличные, безнал, пользовательские поля шаблона). Повторная
проводка отклоняется. Проверка существующих проводок дает понятную ошибку,
а гарантией служит уникальный индекс (related_shift_report_id, payment_method).
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import crud
from ..database.models import FinanceTransaction
from ..exceptions import AlreadyImportedError, RevenueCategoryMissingError, StorageConflictError
from .money import ZERO, money, to_decimal
from .report_template import STANDARD_INCOME_KEYS, ReportTemplateSchema, read_field

logger = logging.getLogger(__name__)

LEDGER_STATUSES = ('CLOSED', 'VERIFIED', 'PAID')


def income_channels(shift, template: ReportTemplateSchema) -> List[Tuple[str, Decimal]]:
    """
    Каналы дохода смены с положительной суммой.

    Returns:
        [(metric_key, сумма), ...] в порядке шаблона
    """
    report_data = read_field(shift, 'report_data') or {}
    channels = []
    for key in template.income_keys():
        if key in STANDARD_INCOME_KEYS:
            value = to_decimal(read_field(shift, key))
        else:
            value = to_decimal(report_data.get(key))
        value = money(value)
        if value > 0:
            channels.append((key, value))
    return channels


async def load_report_template(session: AsyncSession, club_id: int) -> ReportTemplateSchema:
    """Активный шаблон отчета клуба (пустой, если шаблона нет)"""
    template = await crud.get_active_report_template(session, club_id)
    return ReportTemplateSchema.from_raw(template.schema if template else None)


class LedgerImporter:
    """Проводка выручки смен в finance_transactions"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _revenue_category_id(self, club_id: int) -> int:
        category = await crud.resolve_revenue_category(
            self.session, club_id, settings.REVENUE_CATEGORY_NAME
        )
        if category is None:
            raise RevenueCategoryMissingError(
                f"Revenue category '{settings.REVENUE_CATEGORY_NAME}' not found for club {club_id}"
            )
        return category.id

    async def import_shift(
        self,
        shift,
        created_by: Optional[int] = None,
        template: Optional[ReportTemplateSchema] = None
    ) -> List[FinanceTransaction]:
        """
        Провести выручку смены.

        Проводки добавляются в сессию и сбрасываются в БД (flush), фиксирует
        транзакцию вызывающий код.

        Returns:
            Созданные проводки (пустой список, если дохода нет)

        Raises:
            AlreadyImportedError: на смену уже ссылаются проводки
            StorageConflictError: параллельная проводка успела раньше
            RevenueCategoryMissingError: нет категории выручки
        """
        shift_id = read_field(shift, 'id')
        club_id = read_field(shift, 'club_id')

        existing = await crud.count_shift_transactions(self.session, shift_id)
        if existing:
            logger.warning(f"Shift {shift_id} already has {existing} ledger transactions, import refused")
            raise AlreadyImportedError(shift_id)

        if template is None:
            template = await load_report_template(self.session, club_id)

        channels = income_channels(shift, template)
        if not channels:
            logger.info(f"Shift {shift_id} has no income to post")
            return []

        category_id = await self._revenue_category_id(club_id)
        transactions = [
            FinanceTransaction(
                club_id=club_id,
                category_id=category_id,
                amount=amount,
                type='income',
                payment_method=key,
                status='completed',
                transaction_date=read_field(shift, 'check_in'),
                description=template.ledger_description(key),
                related_shift_report_id=shift_id,
                created_by=created_by
            )
            for key, amount in channels
        ]
        self.session.add_all(transactions)

        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Ledger conflict for shift {shift_id}: {e.orig}")
            raise StorageConflictError(shift_id) from e

        logger.info(
            f"Created {len(transactions)} ledger transactions for shift {shift_id}: "
            f"{', '.join(f'{key}={amount}' for key, amount in channels)}"
        )
        return transactions

    @staticmethod
    def _add_totals(stats: Dict, channels: List[Tuple[str, Decimal]]):
        for key, amount in channels:
            stats['totals'][key] = stats['totals'].get(key, ZERO) + amount

    async def import_range(
        self,
        club_id: int,
        start: datetime,
        end: datetime,
        created_by: Optional[int] = None,
        preview: bool = False
    ) -> Dict:
        """
        Провести выручку всех завершенных смен клуба за период.

        Уже проведенные смены пропускаются. Каждая смена фиксируется отдельно,
        так что сбой на одной смене не отменяет уже проведенные.
        В режиме preview только считает, что будет проведено.
        """
        template = await load_report_template(self.session, club_id)
        shifts = await crud.get_shifts_for_period(
            self.session, club_id, start, end, statuses=list(LEDGER_STATUSES)
        )
        # после rollback ORM-объекты истекают, поэтому берем значения заранее
        candidates = [
            {
                'id': shift.id,
                'club_id': shift.club_id,
                'check_in': shift.check_in,
                'cash_income': shift.cash_income,
                'card_income': shift.card_income,
                'report_data': dict(shift.report_data or {}),
            }
            for shift in shifts if shift.check_out is not None
        ]

        stats = {
            'preview': preview,
            'shifts_total': len(candidates),
            'shifts_imported': 0,
            'transactions_created': 0,
            'skipped': 0,
            'skipped_reasons': [],
            'totals': {},
            'transaction_ids': [],
        }

        for data in candidates:
            shift_id = data['id']
            if await crud.count_shift_transactions(self.session, shift_id):
                stats['skipped'] += 1
                stats['skipped_reasons'].append(f"Смена #{shift_id}: уже импортирована")
                continue

            channels = income_channels(data, template)

            if preview:
                self._add_totals(stats, channels)
                stats['transactions_created'] += len(channels)
                if channels:
                    stats['shifts_imported'] += 1
                continue

            try:
                transactions = await self.import_shift(
                    data, created_by=created_by, template=template
                )
                await self.session.commit()
            except AlreadyImportedError as e:
                stats['skipped'] += 1
                stats['skipped_reasons'].append(f"Смена #{shift_id}: уже импортирована")
                logger.warning(f"Range import skipped shift {shift_id}: {e}")
                continue

            if transactions:
                self._add_totals(stats, channels)
                stats['shifts_imported'] += 1
                stats['transactions_created'] += len(transactions)
                stats['transaction_ids'].extend(t.id for t in transactions)

        logger.info(
            f"Range import for club {club_id} ({start} - {end}), preview={preview}: "
            f"{stats['transactions_created']} transactions, {stats['skipped']} skipped"
        )
        return stats

