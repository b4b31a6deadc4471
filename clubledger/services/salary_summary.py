"""
Сводка по зарплате и прогресс KPI за месяц
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import crud
from ..database.models import Shift
from .apportioner import ShiftAttribution, ShiftSlice, apportion, total_attributed
from .formula import ShiftInput
from .ladder import BonusProgress, PeriodBonus, resolve_bonus
from .ledger_import import load_report_template
from .money import ZERO, money, to_decimal
from .report_template import ReportTemplateSchema, build_context, period_metric
from .shift_lifecycle import ACTIVE, ShiftService, get_zone, to_naive_utc

logger = logging.getLogger(__name__)


def month_bounds(year: int, month: int, timezone: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Границы месяца по часам клуба, в UTC без пояса: [начало, начало следующего)"""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    zone = get_zone(timezone)
    start = datetime(year, month, 1, tzinfo=zone)
    end = datetime(year + 1, 1, 1, tzinfo=zone) if month == 12 else datetime(year, month + 1, 1, tzinfo=zone)
    return to_naive_utc(start), to_naive_utc(end)


class SalarySummaryService:
    """Сводка начислений сотрудника и прогресс премий периода"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _period_shifts(self, club_id: int, user_id: int, year: int, month: int) -> List[Shift]:
        club = await ShiftService(self.session).club_settings(club_id)
        start, end = month_bounds(year, month, club['timezone'])
        return await crud.get_shifts_for_period(self.session, club_id, start, end, user_id=user_id)

    async def _scheme_context(self, club_id: int, user_id: int):
        scheme = await crud.get_assigned_scheme(self.session, user_id, club_id)
        if scheme is None:
            return None, [], settings.DEFAULT_STANDARD_MONTHLY_SHIFTS
        bonuses = [PeriodBonus.model_validate(bonus) for bonus in scheme.period_bonuses or []]
        reference = scheme.standard_monthly_shifts or settings.DEFAULT_STANDARD_MONTHLY_SHIFTS
        return scheme, bonuses, reference

    async def _formulas(self, shifts: List[Shift]) -> Dict[int, Any]:
        formulas = {}
        for version_id in {shift.scheme_version_id for shift in shifts if shift.scheme_version_id}:
            version = await crud.get_scheme_version(self.session, version_id)
            if version is not None:
                formulas[version_id] = version.formula
        return formulas

    # ═══════════════════════════════════════════════════
    # KPI
    # ═══════════════════════════════════════════════════

    async def kpi_progress(self, club_id: int, user_id: int, year: int, month: int) -> Dict[str, Any]:
        """
        Прогресс премий периода сотрудника.

        Учитываются завершенные смены и одна (последняя) открытая смена.
        Средняя за смену считается только по завершенным.
        """
        scheme, bonuses, reference = await self._scheme_context(club_id, user_id)
        if scheme is None:
            return {'kpi': [], 'message': 'Схема зарплаты не назначена'}

        shifts = await self._period_shifts(club_id, user_id, year, month)
        closed = [shift for shift in shifts if shift.status != ACTIVE]
        active = [shift for shift in shifts if shift.status == ACTIVE]
        current_shift = max(active, key=lambda s: s.check_in) if active else None
        counted = closed + ([current_shift] if current_shift else [])

        planned = await crud.get_planned_shifts(self.session, club_id, user_id, year, month)
        if planned is None:
            planned = settings.DEFAULT_PLANNED_SHIFTS
        remaining = max(0, planned - len(counted))
        template = await load_report_template(self.session, club_id)

        progress = []
        for bonus in bonuses:
            item = resolve_bonus(
                bonus,
                period_metric(counted, bonus.metric_key, template),
                len(counted),
                reference,
                planned_shifts=planned,
                remaining_shifts=remaining,
                completed_value=period_metric(closed, bonus.metric_key, template),
                completed_shifts=len(closed),
                opportunity_shifts=remaining + (1 if current_shift else 0),
            )
            data = item.model_dump(mode='json')
            data['current_shift_value'] = str(
                period_metric([current_shift], bonus.metric_key, template) if current_shift else ZERO
            )
            progress.append((item, data))

        return {
            'kpi': [data for _, data in progress],
            'total_kpi_bonus': str(money(sum((item.bonus_amount for item, _ in progress), ZERO))),
            'total_projected_bonus': str(money(sum((item.projected_bonus for item, _ in progress), ZERO))),
            'shifts_count': len(counted),
            'completed_shifts': len(closed),
            'planned_shifts': planned,
            'remaining_shifts': remaining,
            'standard_monthly_shifts': reference,
        }

    # ═══════════════════════════════════════════════════
    # СВОДКА
    # ═══════════════════════════════════════════════════

    def _attribute(
        self,
        shifts: List[Shift],
        formulas: Dict[int, Any],
        progress: List[BonusProgress],
        template: ReportTemplateSchema
    ) -> List[ShiftAttribution]:
        slices = [
            ShiftSlice(
                shift=ShiftInput(id=shift.id, total_hours=to_decimal(shift.total_hours),
                                 report_data=shift.report_data or {}),
                formula=formulas.get(shift.scheme_version_id),
                context=build_context(shift, template),
            )
            for shift in shifts
        ]
        return apportion(slices, progress)

    async def employee_summary(self, club_id: int, user_id: int, year: int, month: int) -> Dict[str, Any]:
        """
        Начисления сотрудника за месяц: зарплата по сменам, премии периода
        и их раскладка по сменам (kpi_bonus).
        """
        scheme, bonuses, reference = await self._scheme_context(club_id, user_id)
        shifts = [
            shift for shift in await self._period_shifts(club_id, user_id, year, month)
            if shift.status != ACTIVE
        ]
        template = await load_report_template(self.session, club_id)

        progress = [
            resolve_bonus(
                bonus,
                period_metric(shifts, bonus.metric_key, template),
                len(shifts),
                reference,
            )
            for bonus in bonuses
        ]
        attributions = self._attribute(shifts, await self._formulas(shifts), progress, template)
        attribution = {item.shift_id: item.kpi_bonus for item in attributions}

        accrued = money(sum((to_decimal(shift.calculated_salary) for shift in shifts), ZERO))
        paid = money(sum(
            (to_decimal(shift.calculated_salary) for shift in shifts if shift.status == 'PAID'), ZERO
        ))
        kpi_bonus = money(sum((item.bonus_amount for item in progress), ZERO))

        return {
            'user_id': user_id,
            'club_id': club_id,
            'year': year,
            'month': month,
            'scheme_id': scheme.id if scheme else None,
            'shifts_count': len(shifts),
            'total_hours': str(money(sum((to_decimal(s.total_hours) for s in shifts), ZERO))),
            'total_revenue': str(money(period_metric(shifts, 'total_revenue', template))),
            'accrued_salary': str(accrued),
            'kpi_bonus': str(kpi_bonus),
            'total_accrued': str(accrued + kpi_bonus),
            'paid': str(paid),
            'balance': str(accrued + kpi_bonus - paid),
            'attributed_kpi_total': str(total_attributed(attributions)),
            'period_bonuses': [item.model_dump(mode='json') for item in progress],
            'shifts': [
                {
                    'id': shift.id,
                    'check_in': shift.check_in.isoformat(),
                    'status': shift.status,
                    'total_hours': str(shift.total_hours),
                    'calculated_salary': str(shift.calculated_salary),
                    'kpi_bonus': str(attribution.get(shift.id, ZERO)),
                    'has_owner_corrections': bool(shift.has_owner_corrections),
                }
                for shift in shifts
            ],
        }

