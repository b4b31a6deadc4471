"""
Жизненный цикл смены

    ACTIVE -> CLOSED -> VERIFIED -> PAID

CLOSED также создается напрямую (ручной ввод и пакетный импорт с уже
известным временем окончания). Переходы только вперед: VERIFIED обратно в
CLOSED не возвращается. Подтверждение смены проводит ее выручку в журнал.
"""
import logging
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import crud
from ..database.models import Shift, FinanceTransaction
from ..exceptions import (
    AlreadyImportedError, ConfigurationError, InvalidTransitionError,
    NotFoundError, ValidationError,
)
from .formula import SalaryCalculation, ShiftInput, evaluate
from .ledger_import import LedgerImporter, load_report_template
from .money import ZERO, money
from .report_template import ReportTemplateSchema, build_context

logger = logging.getLogger(__name__)

ACTIVE = 'ACTIVE'
CLOSED = 'CLOSED'
VERIFIED = 'VERIFIED'
PAID = 'PAID'

# Поля, правка которых считается корректировкой отчета владельцем
REPORT_FIELDS = ('cash_income', 'card_income', 'expenses', 'report_data', 'report_comment')

SECONDS_IN_HOUR = Decimal('3600')


class ShiftCreate(BaseModel):
    """Смена, введенная вручную (сразу CLOSED)"""
    user_id: Optional[int] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    cash_income: Decimal = Field(default=ZERO, ge=0)
    card_income: Decimal = Field(default=ZERO, ge=0)
    expenses: Decimal = Field(default=ZERO, ge=0)
    report_comment: Optional[str] = None
    report_data: Dict[str, Any] = Field(default_factory=dict)


class ShiftPatch(BaseModel):
    """Частичное изменение смены: применяются только переданные поля"""
    user_id: Optional[int] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    cash_income: Optional[Decimal] = Field(default=None, ge=0)
    card_income: Optional[Decimal] = Field(default=None, ge=0)
    expenses: Optional[Decimal] = Field(default=None, ge=0)
    report_comment: Optional[str] = None
    report_data: Optional[Dict[str, Any]] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def touches_report(self) -> bool:
        return any(key in REPORT_FIELDS for key in self.changes())


# ═══════════════════════════════════════════════════
# ВРЕМЯ СМЕНЫ
# ═══════════════════════════════════════════════════

def to_naive_utc(value: datetime) -> datetime:
    """В БД время хранится в UTC без часового пояса"""
    if value.tzinfo is not None:
        return value.astimezone(dt_timezone.utc).replace(tzinfo=None)
    return value


def utc_now() -> datetime:
    """Текущее время UTC в формате хранения"""
    return to_naive_utc(datetime.now(dt_timezone.utc))


def compute_hours(check_in: datetime, check_out: Optional[datetime]) -> Decimal:
    """Длительность смены в часах (отрицательная длительность дает 0)"""
    if check_in is None or check_out is None:
        return ZERO
    seconds = Decimal(str((to_naive_utc(check_out) - to_naive_utc(check_in)).total_seconds()))
    if seconds <= 0:
        return ZERO
    return money(seconds / SECONDS_IN_HOUR)


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {settings.DEFAULT_TIMEZONE}")
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def classify_shift_type(
    check_in: datetime,
    timezone: Optional[str] = None,
    day_start_hour: Optional[int] = None,
    night_start_hour: Optional[int] = None
) -> str:
    """
    DAY или NIGHT по часу начала смены в часовом поясе клуба.

    Время без пояса считается UTC.
    """
    day_start = settings.DEFAULT_DAY_START_HOUR if day_start_hour is None else day_start_hour
    night_start = settings.DEFAULT_NIGHT_START_HOUR if night_start_hour is None else night_start_hour

    moment = check_in if check_in.tzinfo else check_in.replace(tzinfo=dt_timezone.utc)
    hour = moment.astimezone(get_zone(timezone)).hour

    if day_start <= night_start:
        is_day = day_start <= hour < night_start
    else:
        is_day = hour >= day_start or hour < night_start
    return 'DAY' if is_day else 'NIGHT'


def _json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def shift_snapshot(shift: Shift) -> Dict[str, Any]:
    """Состояние смены для журнала аудита"""
    return {
        key: _json_value(getattr(shift, key))
        for key in (
            'user_id', 'check_in', 'check_out', 'total_hours', 'cash_income',
            'card_income', 'expenses', 'report_comment', 'report_data',
            'status', 'calculated_salary', 'scheme_version_id',
        )
    }


# ═══════════════════════════════════════════════════
# СЕРВИС
# ═══════════════════════════════════════════════════

class ShiftService:
    """Смены: открытие, закрытие, правка, подтверждение, выплата, удаление"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def club_settings(self, club_id: int) -> Dict[str, Any]:
        """Часовой пояс и границы дневной смены клуба"""
        club = await crud.get_club(self.session, club_id)
        if club is None:
            raise NotFoundError(f"Club {club_id} not found")
        return {
            'timezone': club.timezone or settings.DEFAULT_TIMEZONE,
            'day_start_hour': settings.DEFAULT_DAY_START_HOUR if club.day_start_hour is None else club.day_start_hour,
            'night_start_hour': settings.DEFAULT_NIGHT_START_HOUR if club.night_start_hour is None else club.night_start_hour,
        }

    async def _get_shift(self, shift_id: int) -> Shift:
        shift = await crud.get_shift(self.session, shift_id)
        if shift is None:
            raise NotFoundError(f"Shift {shift_id} not found")
        return shift

    async def _audit(self, action: str, shift: Shift, actor_id: Optional[int], old_data=None):
        await crud.create_audit_log(self.session, {
            'user_id': actor_id,
            'action': action,
            'entity_type': 'shift',
            'entity_id': shift.id,
            'old_data': old_data,
            'new_data': shift_snapshot(shift),
        })

    # ─── Зарплата ───────────────────────────────────

    async def _resolve_formula(self, shift: Shift, repin: bool) -> Tuple[Any, int]:
        """
        Формула для расчета смены.

        Смена считается по закрепленной версии. Без закрепленной версии (или
        при явном пересчете) берется последняя версия назначенной схемы.
        """
        if shift.scheme_version_id and not repin:
            version = await crud.get_scheme_version(self.session, shift.scheme_version_id)
            if version is not None:
                return version.formula, version.id

        if not shift.user_id:
            raise ConfigurationError("Shift has no employee")
        scheme = await crud.get_assigned_scheme(self.session, shift.user_id, shift.club_id)
        if scheme is None:
            raise ConfigurationError(
                f"No salary scheme assigned to user {shift.user_id} in club {shift.club_id}"
            )
        version = await crud.get_latest_scheme_version(self.session, scheme.id)
        if version is None:
            raise ConfigurationError(f"Salary scheme {scheme.id} has no published versions")
        return version.formula, version.id

    async def apply_salary(
        self,
        shift: Shift,
        template: Optional[ReportTemplateSchema] = None,
        repin: bool = False
    ) -> SalaryCalculation:
        """
        Пересчитать calculated_salary и salary_breakdown смены.

        Если схема не назначена или формула некорректна, зарплата = 0.
        """
        if template is None:
            template = await load_report_template(self.session, shift.club_id)
        try:
            formula, version_id = await self._resolve_formula(shift, repin)
            calculation = evaluate(
                ShiftInput(id=shift.id, total_hours=shift.total_hours or ZERO,
                           report_data=shift.report_data or {}),
                formula,
                build_context(shift, template),
            )
        except ConfigurationError as e:
            logger.warning(f"Salary for shift {shift.id} set to 0: {e}")
            calculation = SalaryCalculation(total=ZERO, breakdown=[])
            version_id = None

        shift.calculated_salary = calculation.total
        shift.salary_breakdown = calculation.breakdown_json()
        shift.scheme_version_id = version_id
        logger.info(f"Salary computed for shift {shift.id}: {calculation.total}")
        return calculation

    # ─── Открытие и закрытие ────────────────────────

    async def check_in(self, user_id: int, club_id: int, now: Optional[datetime] = None) -> Shift:
        """Открыть смену (ACTIVE)"""
        user = await crud.get_user(self.session, user_id)
        if user is None or not user.is_active:
            raise ValidationError(f"Employee {user_id} not found")
        if await crud.get_active_shift(self.session, user_id, club_id):
            raise ValidationError(f"Employee {user_id} already has an active shift")

        club = await self.club_settings(club_id)
        started = to_naive_utc(now) if now else utc_now()
        shift = Shift(
            user_id=user_id,
            club_id=club_id,
            check_in=started,
            status=ACTIVE,
            shift_type=classify_shift_type(started, **club),
            total_hours=ZERO,
            cash_income=ZERO,
            card_income=ZERO,
            expenses=ZERO,
            report_data={},
            calculated_salary=ZERO,
            salary_breakdown=[],
        )
        self.session.add(shift)
        await self.session.flush()
        await self._audit('shift_check_in', shift, user_id)
        await self.session.commit()
        logger.info(f"Shift {shift.id} opened for user {user_id} in club {club_id}")
        return shift

    async def check_out(
        self,
        shift_id: int,
        report: Optional[ShiftPatch] = None,
        now: Optional[datetime] = None
    ) -> Shift:
        """Закрыть смену (ACTIVE -> CLOSED) с отчетом и расчетом зарплаты"""
        shift = await self._get_shift(shift_id)
        if shift.status != ACTIVE:
            raise InvalidTransitionError(f"Shift {shift_id} is {shift.status}, only ACTIVE can be closed")

        old_data = shift_snapshot(shift)
        if report is not None:
            for key, value in report.changes().items():
                if key in REPORT_FIELDS:
                    setattr(shift, key, value)

        shift.check_out = to_naive_utc(now) if now else utc_now()
        shift.total_hours = compute_hours(shift.check_in, shift.check_out)
        shift.status = CLOSED
        await self.apply_salary(shift)
        await self._audit('shift_check_out', shift, shift.user_id, old_data)
        await self.session.commit()
        logger.info(f"Shift {shift_id} closed, hours: {shift.total_hours}")
        return shift

    async def build_closed_shift(
        self,
        club_id: int,
        data: ShiftCreate,
        club: Optional[Dict[str, Any]] = None,
        template: Optional[ReportTemplateSchema] = None
    ) -> Shift:
        """Собрать закрытую смену с рассчитанной зарплатой (без сохранения)"""
        if not data.user_id:
            raise ValidationError("Employee is required")
        if data.check_in is None:
            raise ValidationError("Check-in time is required")
        if data.check_out is None:
            raise ValidationError("Check-out time is required")
        user = await crud.get_user(self.session, data.user_id)
        if user is None:
            raise ValidationError(f"Employee {data.user_id} not found")

        if club is None:
            club = await self.club_settings(club_id)
        check_in = to_naive_utc(data.check_in)
        check_out = to_naive_utc(data.check_out)
        shift = Shift(
            user_id=data.user_id,
            club_id=club_id,
            check_in=check_in,
            check_out=check_out,
            total_hours=compute_hours(check_in, check_out),
            cash_income=data.cash_income,
            card_income=data.card_income,
            expenses=data.expenses,
            report_comment=data.report_comment,
            report_data=dict(data.report_data),
            shift_type=classify_shift_type(check_in, **club),
            status=CLOSED,
        )
        await self.apply_salary(shift, template=template)
        return shift

    async def create_shift(
        self,
        club_id: int,
        data: ShiftCreate,
        actor_id: Optional[int] = None,
        club: Optional[Dict[str, Any]] = None,
        template: Optional[ReportTemplateSchema] = None
    ) -> Shift:
        """Ручной ввод смены задним числом (сразу CLOSED)"""
        shift = await self.build_closed_shift(club_id, data, club=club, template=template)
        self.session.add(shift)
        await self.session.flush()
        await self._audit('shift_create', shift, actor_id)
        await self.session.commit()
        logger.info(f"Shift {shift.id} created manually for user {shift.user_id}")
        return shift

    # ─── Правка ─────────────────────────────────────

    async def update_shift(self, shift_id: int, patch: ShiftPatch, actor_id: Optional[int] = None) -> Shift:
        """
        Изменить смену.

        Зарплата всегда пересчитывается по объединенным (старые + новые) данным.
        Правка отчета закрытой смены отмечается флагом has_owner_corrections.
        Выручку подтвержденной смены менять нельзя: она уже в журнале.
        """
        shift = await self._get_shift(shift_id)
        changes = patch.changes()
        if not changes:
            return shift

        if shift.status in (VERIFIED, PAID) and patch.touches_report():
            raise ValidationError(
                f"Shift {shift_id} is {shift.status}, its income is already posted to the ledger"
            )
        if 'check_out' in changes:
            if shift.status == ACTIVE:
                raise ValidationError(f"Shift {shift_id} is ACTIVE, close it with check-out")
            if changes['check_out'] is None:
                raise ValidationError(f"Shift {shift_id} is {shift.status}, check-out time is required")
        if 'user_id' in changes and changes['user_id'] is not None:
            if await crud.get_user(self.session, changes['user_id']) is None:
                raise ValidationError(f"Employee {changes['user_id']} not found")

        old_data = shift_snapshot(shift)
        for key, value in changes.items():
            if key in ('check_in', 'check_out') and value is not None:
                value = to_naive_utc(value)
            if key in ('check_in', 'user_id') and value is None:
                continue
            setattr(shift, key, value)

        if 'check_in' in changes or 'check_out' in changes:
            if shift.check_out is not None:
                shift.total_hours = compute_hours(shift.check_in, shift.check_out)
            if 'check_in' in changes:
                club = await self.club_settings(shift.club_id)
                shift.shift_type = classify_shift_type(shift.check_in, **club)

        if shift.status == CLOSED and patch.touches_report():
            shift.has_owner_corrections = True

        await self.apply_salary(shift, repin='user_id' in changes)
        await self._audit('shift_update', shift, actor_id, old_data)
        await self.session.commit()
        logger.info(f"Shift {shift_id} updated: {', '.join(changes)}")
        return shift

    async def recalculate(self, shift_id: int, actor_id: Optional[int] = None) -> Shift:
        """Явный пересчет по последней версии схемы (версия перезакрепляется)"""
        shift = await self._get_shift(shift_id)
        old_data = shift_snapshot(shift)
        await self.apply_salary(shift, repin=True)
        await self._audit('shift_recalculate', shift, actor_id, old_data)
        await self.session.commit()
        return shift

    # ─── Подтверждение и выплата ────────────────────

    async def verify(
        self,
        shift_id: int,
        verified_by: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Shift, List[FinanceTransaction]]:
        """
        Подтвердить смену (CLOSED -> VERIFIED) и провести выручку в журнал.

        Raises:
            AlreadyImportedError: смена уже подтверждена или ее выручка проведена
            InvalidTransitionError: смена еще открыта
        """
        shift = await self._get_shift(shift_id)
        if shift.status in (VERIFIED, PAID):
            logger.warning(f"Shift {shift_id} is already {shift.status}, verification refused")
            raise AlreadyImportedError(shift_id, f"Shift {shift_id} is already verified")
        if shift.status != CLOSED:
            raise InvalidTransitionError(f"Shift {shift_id} is {shift.status}, only CLOSED can be verified")

        old_data = shift_snapshot(shift)
        transactions = await LedgerImporter(self.session).import_shift(shift, created_by=verified_by)

        shift.status = VERIFIED
        shift.verified_by = verified_by
        shift.verified_at = to_naive_utc(now) if now else utc_now()
        await self._audit('shift_verify', shift, verified_by, old_data)
        await self.session.commit()
        logger.info(f"Shift {shift_id} verified by {verified_by}, {len(transactions)} ledger transactions")
        return shift, transactions

    async def mark_paid(self, shift_id: int, actor_id: Optional[int] = None, now: Optional[datetime] = None) -> Shift:
        """Отметить выплату (VERIFIED -> PAID), зарплата фиксируется в snapshot"""
        shift = await self._get_shift(shift_id)
        if shift.status != VERIFIED:
            raise InvalidTransitionError(f"Shift {shift_id} is {shift.status}, only VERIFIED can be paid")

        old_data = shift_snapshot(shift)
        paid_at = to_naive_utc(now) if now else utc_now()
        shift.status = PAID
        shift.salary_snapshot = {
            'calculated_salary': str(shift.calculated_salary),
            'breakdown': list(shift.salary_breakdown or []),
            'scheme_version_id': shift.scheme_version_id,
            'paid_at': paid_at.isoformat(),
        }
        await self._audit('shift_paid', shift, actor_id, old_data)
        await self.session.commit()
        logger.info(f"Shift {shift_id} marked as paid")
        return shift

    async def change_status(
        self,
        shift_id: int,
        status: str,
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Shift:
        """Перевести смену в статус; разрешены только переходы вперед"""
        shift = await self._get_shift(shift_id)
        current = shift.status
        if status == CLOSED and current == ACTIVE:
            return await self.check_out(shift_id, now=now)
        if status == VERIFIED and current in (CLOSED, VERIFIED, PAID):
            shift, _ = await self.verify(shift_id, verified_by=actor_id, now=now)
            return shift
        if status == PAID and current == VERIFIED:
            return await self.mark_paid(shift_id, actor_id=actor_id, now=now)
        raise InvalidTransitionError(f"Shift {shift_id}: transition {current} -> {status} is not allowed")

    # ─── Удаление ───────────────────────────────────

    async def delete_shift(self, shift_id: int) -> int:
        """
        Удалить смену и ее журнал аудита.

        Проводки журнала не удаляются: они остаются со ссылкой на удаленную смену.

        Returns:
            Число оставшихся проводок смены
        """
        shift = await self._get_shift(shift_id)
        status = shift.status
        orphaned = await crud.count_shift_transactions(self.session, shift_id)

        await crud.delete_audit_for_shift(self.session, shift_id)
        await self.session.delete(shift)
        await self.session.commit()

        if orphaned:
            logger.warning(
                f"Shift {shift_id} ({status}) deleted, {orphaned} ledger transactions left without shift"
            )
        else:
            logger.info(f"Shift {shift_id} deleted")
        return orphaned
