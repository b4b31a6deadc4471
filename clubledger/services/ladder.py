"""
Премии периода (KPI): пересчет порогов под темп периода

Пороги прогрессивной премии задаются на весь период (месяц). В середине месяца
сравнивать выручку с полным месячным порогом бессмысленно, поэтому порог
масштабируется под число уже отработанных смен:

    MONTH: порог / эталонное число смен * отработано смен
    SHIFT: порог * отработано смен

Модуль не обращается к БД и не знает текущей даты: все входы передаются явно.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .formula import PeriodBonusContribution
from .money import ZERO, money, percent_of, to_decimal

logger = logging.getLogger(__name__)

MODE_MONTH = 'MONTH'
MODE_SHIFT = 'SHIFT'
PROGRESSIVE = 'PROGRESSIVE'

HUNDRED = Decimal('100')


class Threshold(BaseModel):
    """Ступень прогрессивной премии: порог на весь период и процент"""
    model_config = ConfigDict(populate_by_name=True)

    from_: Decimal = Field(ZERO, alias='from')
    percent: Decimal = ZERO
    label: Optional[str] = None

    @field_validator('from_', 'percent', mode='before')
    @classmethod
    def _decimal(cls, value):
        return to_decimal(value)


class PeriodBonus(BaseModel):
    """Премия периода из схемы оплаты"""
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    metric_key: str = 'total_revenue'
    bonus_mode: str = MODE_MONTH
    type: Optional[str] = None
    thresholds: List[Threshold] = Field(default_factory=list)
    target_per_shift: Decimal = ZERO
    reward_value: Decimal = ZERO
    reward_type: str = 'PERCENT'

    @field_validator('target_per_shift', 'reward_value', mode='before')
    @classmethod
    def _decimal(cls, value):
        return to_decimal(value)

    @field_validator('metric_key', mode='before')
    @classmethod
    def _metric_key(cls, value):
        return value or 'total_revenue'

    @field_validator('bonus_mode', mode='before')
    @classmethod
    def _bonus_mode(cls, value):
        return str(value).upper() if value else MODE_MONTH

    @field_validator('reward_type', mode='before')
    @classmethod
    def _reward_type(cls, value):
        return str(value).upper() if value else 'PERCENT'

    @property
    def is_progressive(self) -> bool:
        return (self.type or '').upper() == PROGRESSIVE and bool(self.thresholds)

    def sorted_thresholds(self) -> List[Threshold]:
        return sorted(self.thresholds, key=lambda t: t.from_)


class ScaledThreshold(BaseModel):
    """Ступень, пересчитанная под текущий темп"""
    level: int
    label: Optional[str] = None
    monthly_threshold: Decimal
    scaled_threshold: Decimal
    planned_month_threshold: Decimal
    percent: Decimal
    is_met: bool = False
    remaining_total: Decimal = ZERO
    per_shift_to_reach: Decimal = ZERO
    per_shift_to_stay: Decimal = ZERO
    potential_bonus: Decimal = ZERO


class BonusProgress(BaseModel):
    """Состояние премии периода на текущий момент"""
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    metric_key: str
    bonus_mode: str
    is_progressive: bool
    current_value: Decimal
    shifts_count: int
    avg_per_shift: Decimal = ZERO
    is_met: bool = False
    current_level: int = 0
    current_reward_value: Decimal = ZERO
    current_reward_type: str = 'PERCENT'
    bonus_amount: Decimal = ZERO
    target_value: Decimal = ZERO
    progress_percent: Decimal = ZERO
    thresholds: List[ScaledThreshold] = Field(default_factory=list)
    remaining_shifts: int = 0
    projected_total: Decimal = ZERO
    projected_level: int = 0
    projected_bonus: Decimal = ZERO

    def as_contribution(self) -> PeriodBonusContribution:
        """Зафиксированный уровень премии для раскладки по сменам"""
        return PeriodBonusContribution(
            id=self.id,
            name=self.name,
            metric_key=self.metric_key,
            current_reward_value=self.current_reward_value if self.is_met else ZERO,
            current_reward_type=self.current_reward_type,
        )


def _coerce(bonus) -> PeriodBonus:
    if isinstance(bonus, PeriodBonus):
        return bonus
    return PeriodBonus.model_validate(bonus)


def _scaled_floor(floor: Decimal, mode: str, shifts_count: int, reference: int) -> Decimal:
    if mode == MODE_SHIFT:
        return money(floor * shifts_count)
    if reference <= 0:
        return ZERO
    return money(floor * shifts_count / reference)


def _period_target(floor: Decimal, mode: str, planned: int) -> Decimal:
    """Порог на конец периода (без масштабирования по отработанным сменам)"""
    if mode == MODE_SHIFT:
        return money(floor * planned)
    return floor


def _floor_met(floor: Decimal, value: Decimal, mode: str, shifts_count: int, reference: int) -> bool:
    if shifts_count <= 0:
        return False
    # без эталонного числа смен месячный порог недостижим
    if mode == MODE_MONTH and reference <= 0:
        return False
    return value >= floor


# ═══════════════════════════════════════════════════
# МАСШТАБИРОВАНИЕ
# ═══════════════════════════════════════════════════

def scale_thresholds(
    bonus,
    shifts_count: int,
    reference_shift_count: int,
    current_value=ZERO,
    planned_shifts: Optional[int] = None,
    remaining_shifts: Optional[int] = None,
    opportunity_shifts: Optional[int] = None,
) -> List[ScaledThreshold]:
    """
    Пересчитать ступени прогрессивной премии под число отработанных смен.

    Args:
        bonus: PeriodBonus или словарь из схемы
        shifts_count: сколько смен уже учтено в периоде
        reference_shift_count: эталон смен (standard_monthly_shifts или план)
        current_value: текущее значение показателя за период
        planned_shifts: план смен на период (по умолчанию равен эталону)
        remaining_shifts: сколько смен осталось (по умолчанию план минус учтенные)
        opportunity_shifts: на сколько смен делится остаток до порога
            (оставшиеся плюс открытая смена; по умолчанию remaining_shifts)

    Returns:
        Ступени по возрастанию порога
    """
    bonus = _coerce(bonus)
    mode = bonus.bonus_mode
    value = to_decimal(current_value)
    reference = max(0, int(reference_shift_count or 0))
    planned = reference if planned_shifts is None else max(0, int(planned_shifts))
    if remaining_shifts is None:
        remaining_shifts = max(0, planned - shifts_count)
    if opportunity_shifts is None:
        opportunity_shifts = remaining_shifts

    result = []
    for index, threshold in enumerate(bonus.sorted_thresholds()):
        floor = threshold.from_
        scaled = _scaled_floor(floor, mode, shifts_count, reference)
        target = _period_target(floor, mode, planned)
        remaining_total = max(ZERO, target - value)

        if mode == MODE_SHIFT:
            to_stay = floor
        else:
            to_stay = floor / reference if reference > 0 else ZERO

        result.append(ScaledThreshold(
            level=index + 1,
            label=threshold.label,
            monthly_threshold=floor,
            scaled_threshold=scaled,
            planned_month_threshold=target,
            percent=threshold.percent,
            is_met=_floor_met(scaled, value, mode, shifts_count, reference),
            remaining_total=money(remaining_total),
            per_shift_to_reach=money(remaining_total / opportunity_shifts) if opportunity_shifts > 0 else ZERO,
            per_shift_to_stay=money(to_stay),
            potential_bonus=money(percent_of(target, threshold.percent)),
        ))
    return result


# ═══════════════════════════════════════════════════
# ТЕКУЩИЙ УРОВЕНЬ И ПРОГНОЗ
# ═══════════════════════════════════════════════════

def _progress(value: Decimal, target: Decimal) -> Decimal:
    if target <= 0:
        return ZERO
    return money(value / target * HUNDRED)


def resolve_bonus(
    bonus,
    current_value,
    shifts_count: int,
    reference_shift_count: int,
    planned_shifts: Optional[int] = None,
    remaining_shifts: Optional[int] = None,
    completed_value=None,
    completed_shifts: Optional[int] = None,
    opportunity_shifts: Optional[int] = None,
) -> BonusProgress:
    """
    Определить достигнутый уровень премии, сумму и прогноз на конец периода.

    Средняя за смену считается по завершенным сменам, если они переданы
    (completed_value/completed_shifts), иначе по всем учтенным.
    """
    bonus = _coerce(bonus)
    mode = bonus.bonus_mode
    value = to_decimal(current_value)
    reference = max(0, int(reference_shift_count or 0))
    planned = reference if planned_shifts is None else max(0, int(planned_shifts))
    if remaining_shifts is None:
        remaining_shifts = max(0, planned - shifts_count)

    if completed_shifts is not None:
        avg = to_decimal(completed_value) / completed_shifts if completed_shifts > 0 else ZERO
    else:
        avg = value / shifts_count if shifts_count > 0 else ZERO

    progress = BonusProgress(
        id=bonus.id,
        name=bonus.name,
        metric_key=bonus.metric_key,
        bonus_mode=mode,
        is_progressive=bonus.is_progressive,
        current_value=value,
        shifts_count=shifts_count,
        avg_per_shift=money(avg),
        remaining_shifts=remaining_shifts,
        projected_total=money(value + avg * remaining_shifts),
    )

    if bonus.is_progressive:
        thresholds = scale_thresholds(
            bonus, shifts_count, reference, value,
            planned_shifts=planned, remaining_shifts=remaining_shifts,
            opportunity_shifts=opportunity_shifts,
        )
        progress.thresholds = thresholds
        progress.current_reward_type = 'PERCENT'

        met_index = -1
        for index in range(len(thresholds) - 1, -1, -1):
            if thresholds[index].is_met:
                met_index = index
                break

        if met_index >= 0:
            progress.is_met = True
            progress.current_level = met_index + 1
            progress.current_reward_value = thresholds[met_index].percent
            progress.bonus_amount = money(percent_of(value, thresholds[met_index].percent))
            next_index = min(met_index + 1, len(thresholds) - 1)
            progress.target_value = thresholds[next_index].scaled_threshold
        else:
            # до первой смены показываем исходный порог
            first = thresholds[0]
            progress.target_value = first.scaled_threshold if shifts_count > 0 else first.monthly_threshold
        progress.progress_percent = _progress(value, progress.target_value)

        for threshold in reversed(thresholds):
            if progress.projected_total >= threshold.planned_month_threshold:
                progress.projected_level = threshold.level
                progress.projected_bonus = money(percent_of(progress.projected_total, threshold.percent))
                break
        return progress

    target = _scaled_floor(bonus.target_per_shift, mode, shifts_count, reference)
    progress.target_value = target
    progress.current_reward_value = bonus.reward_value
    progress.current_reward_type = bonus.reward_type
    progress.is_met = _floor_met(target, value, mode, shifts_count, reference)
    if target > 0:
        progress.progress_percent = _progress(value, target)
    elif progress.is_met:
        progress.progress_percent = HUNDRED

    if progress.is_met:
        if bonus.reward_type == 'PERCENT':
            progress.bonus_amount = money(percent_of(value, bonus.reward_value))
        else:
            progress.bonus_amount = money(bonus.reward_value)
    return progress

