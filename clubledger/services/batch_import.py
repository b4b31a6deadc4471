"""
Пакетный импорт смен

Каждая строка обрабатывается независимо: сотрудник, часы, зарплата, запись
смены в статусе CLOSED. Ошибка строки записывается в errors и не прерывает
пакет; уже сохраненные строки не откатываются.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import crud
from ..exceptions import ValidationError
from .ledger_import import load_report_template
from .money import ZERO, to_decimal
from .shift_lifecycle import ShiftCreate, ShiftService, get_zone, to_naive_utc

logger = logging.getLogger(__name__)

DATETIME_FORMATS = (
    '%d.%m.%Y %H:%M',
    '%d.%m.%Y %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M',
    '%Y-%m-%dT%H:%M:%S',
)


class BatchShiftRow(BaseModel):
    """Строка пакета: сотрудник по ID или по ФИО"""
    user_id: Optional[int] = None
    employee_name: Optional[str] = None
    check_in: Optional[Union[datetime, str]] = None
    check_out: Optional[Union[datetime, str]] = None
    cash_income: Decimal = ZERO
    card_income: Decimal = ZERO
    expenses: Decimal = ZERO
    report_comment: Optional[str] = None
    report_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('cash_income', 'card_income', 'expenses', mode='before')
    @classmethod
    def _amount(cls, value):
        if isinstance(value, str):
            value = value.replace(' ', '').replace('\xa0', '')
        return to_decimal(value)


class BatchRowError(BaseModel):
    index: int
    error: str


class BatchResult(BaseModel):
    """Итог пакетного импорта"""
    imported: int = 0
    failed: int = 0
    results: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[BatchRowError] = Field(default_factory=list)


def parse_club_datetime(value, timezone: Optional[str]) -> Optional[datetime]:
    """
    Разобрать время строки пакета.

    Время без часового пояса - это время на часах клуба. Результат в UTC без пояса.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        moment = None
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            for fmt in DATETIME_FORMATS:
                try:
                    moment = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if moment is None:
            raise ValidationError(f"Unrecognized date: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=get_zone(timezone))
    return to_naive_utc(moment)


class BatchImportRunner:
    """Пакетный импорт смен клуба"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.shifts = ShiftService(session)

    async def _resolve_user_id(self, row: BatchShiftRow) -> int:
        if row.user_id:
            return row.user_id
        if row.employee_name:
            user = await crud.get_user_by_full_name(self.session, row.employee_name)
            if user is None:
                raise ValidationError(f"Employee '{row.employee_name}' not found")
            return user.id
        raise ValidationError("Employee is required")

    async def process_batch(
        self,
        club_id: int,
        rows: List[Union[BatchShiftRow, Dict[str, Any]]],
        actor_id: Optional[int] = None
    ) -> BatchResult:
        """
        Импортировать строки как закрытые смены.

        Returns:
            BatchResult: imported/failed, созданные смены и ошибки по индексам строк
        """
        # настройки клуба и шаблон читаются до цикла: rollback строки истекает ORM-объекты сессии
        club = await self.shifts.club_settings(club_id)
        template = await load_report_template(self.session, club_id)
        result = BatchResult()

        for index, raw in enumerate(rows):
            try:
                row = raw if isinstance(raw, BatchShiftRow) else BatchShiftRow.model_validate(raw)
                data = ShiftCreate(
                    user_id=await self._resolve_user_id(row),
                    check_in=parse_club_datetime(row.check_in, club['timezone']),
                    check_out=parse_club_datetime(row.check_out, club['timezone']),
                    cash_income=row.cash_income,
                    card_income=row.card_income,
                    expenses=row.expenses,
                    report_comment=row.report_comment,
                    report_data=row.report_data,
                )
                shift = await self.shifts.create_shift(
                    club_id, data, actor_id=actor_id, club=club, template=template
                )
            except Exception as e:
                await self.session.rollback()
                logger.error(f"Batch row {index} failed: {e}")
                result.failed += 1
                result.errors.append(BatchRowError(index=index, error=str(e)))
                continue

            result.imported += 1
            result.results.append({
                'index': index,
                'shift_id': shift.id,
                'user_id': shift.user_id,
                'total_hours': str(shift.total_hours),
                'calculated_salary': str(shift.calculated_salary),
            })

        logger.info(f"Batch import for club {club_id}: {result.imported} imported, {result.failed} failed")
        return result
