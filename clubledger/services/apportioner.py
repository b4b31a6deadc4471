"""
Раскладка премии периода по сменам

Премия периода начисляется одной суммой за месяц. Для истории смен ее нужно
показать по сменам: каждая смена пересчитывается по своей формуле с
зафиксированным уровнем премии, а сумма премиальных строк становится
kpi_bonus смены. Сумма kpi_bonus по сменам может расходиться с общей премией
на копейки из-за округления каждой смены отдельно. В журнал ничего не пишется.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from ..exceptions import ConfigurationError
from .formula import (
    Formula, PeriodBonusContribution, SalaryCalculation,
    ShiftInput, evaluate, normalize_formula,
)
from .ladder import BonusProgress
from .money import ZERO, money

logger = logging.getLogger(__name__)


class ShiftSlice(BaseModel):
    """Смена периода с ее формулой и показателями"""
    shift: ShiftInput
    formula: Any = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ShiftAttribution(BaseModel):
    """Доля премии, приходящаяся на смену"""
    shift_id: Optional[Union[int, str]] = None
    kpi_bonus: Decimal = ZERO
    calculation: SalaryCalculation


def freeze_period_bonuses(progress: Iterable[BonusProgress]) -> List[PeriodBonusContribution]:
    """Уровни премий периода, зафиксированные на достигнутой ступени"""
    return [item.as_contribution() for item in progress]


def _formula_with_frozen(raw, frozen: List[PeriodBonusContribution]) -> Formula:
    try:
        formula = normalize_formula(raw)
    except ConfigurationError as e:
        logger.warning(f"Formula is not usable for apportionment, using bonuses only: {e}")
        formula = Formula()
    return formula.model_copy(update={'period_bonuses': frozen})


def apportion(slices: Iterable[ShiftSlice], progress: Iterable[BonusProgress]) -> List[ShiftAttribution]:
    """
    Разложить премии периода по сменам.

    Args:
        slices: смены периода
        progress: результат resolve_bonus по каждой премии схемы

    Returns:
        По одной записи на смену в исходном порядке
    """
    frozen = freeze_period_bonuses(progress)
    result = []
    for item in slices:
        formula = _formula_with_frozen(item.formula, frozen)
        calculation = evaluate(item.shift, formula, item.context)
        kpi_bonus = calculation.bonus_total()
        result.append(ShiftAttribution(
            shift_id=item.shift.id,
            kpi_bonus=money(kpi_bonus),
            calculation=calculation,
        ))
    return result


def total_attributed(attributions: Iterable[ShiftAttribution]) -> Decimal:
    return money(sum((item.kpi_bonus for item in attributions), ZERO))
