"""
Расчет зарплаты за смену по формуле схемы оплаты

Формула - упорядоченный список компонентов. Каждый компонент дает одну строку
расшифровки, итог равен сумме строк. Расчет не обращается ни к БД, ни к часам:
одинаковые входные данные всегда дают одинаковый результат.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError as PydanticValidationError

from ..config import settings
from ..exceptions import ConfigurationError, ValidationError
from .money import ZERO, money, percent_of, to_decimal

logger = logging.getLogger(__name__)

HOURLY = 'HOURLY'
FLAT_PER_SHIFT = 'FLAT_PER_SHIFT'
PERCENT_OF_METRIC = 'PERCENT_OF_METRIC'
CUSTOM_METRIC_MULTIPLIER = 'CUSTOM_METRIC_MULTIPLIER'
SHIFT_BONUS = 'SHIFT_BONUS'
PERIOD_BONUS_CONTRIBUTION = 'PERIOD_BONUS_CONTRIBUTION'

# Типы строк расшифровки помимо видов компонентов
CHECKLIST_BONUS = 'CHECKLIST_BONUS'
EQUIPMENT_MAINTENANCE = 'EQUIPMENT_MAINTENANCE'
MAINTENANCE_METRIC = 'maintenance_bonus'

COMPONENT_KINDS = (
    HOURLY, FLAT_PER_SHIFT, PERCENT_OF_METRIC,
    CUSTOM_METRIC_MULTIPLIER, SHIFT_BONUS, PERIOD_BONUS_CONTRIBUTION,
)

# Строки, которые относятся к премиям (а не к базовой оплате)
BONUS_LINE_TYPES = (SHIFT_BONUS, PERIOD_BONUS_CONTRIBUTION)

SHIFT_BONUS_TYPES = ('fixed', 'percent_revenue', 'tiered', 'progressive_percent', 'penalty', 'checklist')

SOURCE_ALIASES = {
    'total': 'total_revenue',
    'cash': 'revenue_cash',
    'card': 'revenue_card',
}

DEFAULT_LABELS = {
    HOURLY: 'Почасовая оплата',
    FLAT_PER_SHIFT: 'Оплата за смену',
    PERCENT_OF_METRIC: '% от выручки',
    CUSTOM_METRIC_MULTIPLIER: 'Оплата за показатель',
    SHIFT_BONUS: 'Бонус за смену',
    PERIOD_BONUS_CONTRIBUTION: 'KPI',
    CHECKLIST_BONUS: 'Бонус за чек-лист',
    EQUIPMENT_MAINTENANCE: 'Обслуживание оборудования',
}

DEFAULT_FULL_SHIFT_HOURS = Decimal(settings.DEFAULT_FULL_SHIFT_HOURS)


class ShiftInput(BaseModel):
    """
    Данные смены, нужные формуле.

    evaluations - оценки чек-листов смены ({template_id, score_percent}).
    Если не переданы явно, берутся из report_data["evaluations"].
    """
    id: Optional[Union[int, str]] = None
    total_hours: Decimal = ZERO
    report_data: Dict[str, Any] = Field(default_factory=dict)
    evaluations: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator('total_hours', mode='before')
    @classmethod
    def _hours(cls, value):
        return to_decimal(value)

    @field_validator('report_data', mode='before')
    @classmethod
    def _report_data(cls, value):
        return value if value is not None else {}

    @model_validator(mode='after')
    def _evaluations_from_report(self):
        if not self.evaluations:
            stored = self.report_data.get('evaluations')
            if isinstance(stored, list):
                self.evaluations = [item for item in stored if isinstance(item, dict)]
        return self


class FormulaComponent(BaseModel):
    """Компонент формулы"""
    kind: str
    label: Optional[str] = None
    rate: Decimal = ZERO
    amount: Decimal = ZERO
    percent: Decimal = ZERO
    metric_key: Optional[str] = None
    full_shift_hours: Optional[Decimal] = None
    # SHIFT_BONUS
    bonus_type: Optional[str] = None
    tiers: List[Dict[str, Any]] = Field(default_factory=list)
    thresholds: List[Dict[str, Any]] = Field(default_factory=list)
    checklist_template_id: Optional[int] = None
    min_score: Decimal = ZERO
    mode: Optional[str] = None
    # PERIOD_BONUS_CONTRIBUTION
    reward_value: Decimal = ZERO
    reward_type: str = 'PERCENT'

    @model_validator(mode='before')
    @classmethod
    def _kind_from_type(cls, data):
        if isinstance(data, dict):
            if 'kind' not in data and 'type' in data:
                data = {**data, 'kind': data['type']}
            if isinstance(data.get('kind'), str):
                data = {**data, 'kind': data['kind'].upper()}
        return data


class PeriodBonusContribution(BaseModel):
    """Премия периода с уже определенным уровнем вознаграждения"""
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None
    metric_key: str = 'total_revenue'
    current_reward_value: Decimal = ZERO
    current_reward_type: str = 'PERCENT'


class Formula(BaseModel):
    """Нормализованная формула схемы"""
    components: List[FormulaComponent] = Field(default_factory=list)
    period_bonuses: List[PeriodBonusContribution] = Field(default_factory=list)


class BreakdownLine(BaseModel):
    """Строка расшифровки зарплаты"""
    type: str
    amount: Decimal
    label: str
    source_key: Optional[str] = None
    source_value: Optional[Decimal] = None
    reward_value: Optional[Decimal] = None
    reward_type: Optional[str] = None


class SalaryCalculation(BaseModel):
    """Результат расчета"""
    total: Decimal
    breakdown: List[BreakdownLine]

    def breakdown_json(self) -> List[Dict[str, Any]]:
        """Расшифровка для хранения в JSON-колонке (суммы строками)"""
        return [line.model_dump(mode='json', exclude_none=True) for line in self.breakdown]

    def bonus_total(self) -> Decimal:
        return sum((line.amount for line in self.breakdown if line.type in BONUS_LINE_TYPES), ZERO)


# ═══════════════════════════════════════════════════
# НОРМАЛИЗАЦИЯ
# ═══════════════════════════════════════════════════

def _base_component(base: Dict[str, Any]) -> Optional[FormulaComponent]:
    type_ = base.get('type') or 'hourly'
    amount = to_decimal(base.get('amount'))
    if type_ == 'hourly':
        return FormulaComponent(kind=HOURLY, rate=amount)
    if type_ in ('fixed', 'per_shift'):
        full_hours = to_decimal(base.get('full_shift_hours')) or DEFAULT_FULL_SHIFT_HOURS
        return FormulaComponent(kind=FLAT_PER_SHIFT, amount=amount, full_shift_hours=full_hours)
    if type_ == 'percent_revenue':
        return FormulaComponent(
            kind=PERCENT_OF_METRIC,
            percent=to_decimal(base.get('percent')),
            metric_key='total_revenue'
        )
    if type_ == 'none':
        return None
    raise ConfigurationError(f"Unknown base salary type: {type_}")


def _bonus_component(bonus: Dict[str, Any]) -> Optional[FormulaComponent]:
    bonus_type = bonus.get('type')
    if bonus_type not in SHIFT_BONUS_TYPES:
        raise ConfigurationError(f"Unknown shift bonus type: {bonus_type}")

    source = bonus.get('source') or 'total'
    return FormulaComponent(
        kind=SHIFT_BONUS,
        label=bonus.get('name') or bonus_type,
        bonus_type=bonus_type,
        metric_key=SOURCE_ALIASES.get(source, source),
        amount=to_decimal(bonus.get('amount')),
        percent=to_decimal(bonus.get('percent')),
        tiers=bonus.get('tiers') or [],
        thresholds=bonus.get('thresholds') or [],
        checklist_template_id=bonus.get('checklist_template_id'),
        min_score=to_decimal(bonus.get('min_score')),
        mode=bonus.get('mode'),
    )


def _period_bonuses(raw) -> List[PeriodBonusContribution]:
    result = []
    for bonus in raw or []:
        if not isinstance(bonus, dict):
            raise ConfigurationError("Period bonus must be an object")
        result.append(PeriodBonusContribution(
            id=bonus.get('id'),
            name=bonus.get('name'),
            metric_key=bonus.get('metric_key') or 'total_revenue',
            current_reward_value=to_decimal(bonus.get('current_reward_value')),
            current_reward_type=bonus.get('current_reward_type') or 'PERCENT',
        ))
    return result


def normalize_formula(raw) -> Formula:
    """
    Привести сохраненную формулу к списку компонентов.

    Поддерживаются:
    - список компонентов или {"components": [...], "period_bonuses": [...]};
    - объект {"base": {...}, "bonuses": [...], "period_bonuses": [...]};
    - плоский объект с type/amount/percent на верхнем уровне.

    Raises:
        ConfigurationError: формулы нет или она не разбирается
    """
    if isinstance(raw, Formula):
        return raw
    if not isinstance(raw, (dict, list)) or not raw:
        raise ConfigurationError("Salary formula is missing")

    try:
        if isinstance(raw, list):
            formula = Formula(components=raw)
        elif 'components' in raw:
            formula = Formula(
                components=raw.get('components') or [],
                period_bonuses=_period_bonuses(raw.get('period_bonuses')),
            )
        else:
            components = []
            base = raw.get('base') if isinstance(raw.get('base'), dict) else raw
            base_component = _base_component(base)
            if base_component:
                components.append(base_component)
            for bonus in raw.get('bonuses') or []:
                if not isinstance(bonus, dict):
                    raise ConfigurationError("Shift bonus must be an object")
                component = _bonus_component(bonus)
                if component:
                    components.append(component)
            formula = Formula(
                components=components,
                period_bonuses=_period_bonuses(raw.get('period_bonuses')),
            )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Malformed salary formula: {e}") from e

    for component in formula.components:
        if component.kind not in COMPONENT_KINDS:
            raise ConfigurationError(f"Unknown formula component: {component.kind}")
    return formula


# ═══════════════════════════════════════════════════
# РАСЧЕТ
# ═══════════════════════════════════════════════════

def _metric(metrics: Dict[str, Decimal], key: Optional[str]) -> Decimal:
    return metrics.get(key or 'total_revenue', ZERO)


def _shift_bonus_amount(component: FormulaComponent, value: Decimal) -> Decimal:
    bonus_type = component.bonus_type
    if bonus_type == 'fixed':
        return component.amount
    if bonus_type == 'percent_revenue':
        return percent_of(value, component.percent)
    if bonus_type == 'tiered':
        for tier in component.tiers:
            lower = to_decimal(tier.get('from'))
            upper = tier.get('to')
            open_ended = upper in (None, '', '∞')
            if value >= lower and (open_ended or value <= to_decimal(upper)):
                return to_decimal(tier.get('bonus')) or to_decimal(tier.get('amount'))
        return ZERO
    if bonus_type == 'progressive_percent':
        ordered = sorted(component.thresholds, key=lambda t: to_decimal(t.get('from')), reverse=True)
        for threshold in ordered:
            if value >= to_decimal(threshold.get('from')):
                return percent_of(value, threshold.get('percent'))
        return ZERO
    if bonus_type == 'penalty':
        return -component.amount
    raise ConfigurationError(f"Unknown shift bonus type: {bonus_type}")


def _checklist_line(component: FormulaComponent, shift: ShiftInput) -> Optional[BreakdownLine]:
    # в режиме MONTH бонус за чек-лист начисляется за период, а не за смену
    if (component.mode or '').upper() == 'MONTH':
        return None
    for evaluation in shift.evaluations:
        if to_decimal(evaluation.get('template_id')) != to_decimal(component.checklist_template_id):
            continue
        score = to_decimal(evaluation.get('score_percent'))
        if score < component.min_score:
            return None
        return BreakdownLine(
            type=CHECKLIST_BONUS,
            label=component.label or DEFAULT_LABELS[CHECKLIST_BONUS],
            amount=money(component.amount),
            source_key='checklist_score',
            source_value=score,
        )
    return None


def _component_line(
    component: FormulaComponent,
    shift: ShiftInput,
    metrics: Dict[str, Decimal]
) -> Optional[BreakdownLine]:
    kind = component.kind
    label = component.label or DEFAULT_LABELS[kind]
    hours = to_decimal(shift.total_hours)

    if kind == HOURLY:
        return BreakdownLine(
            type=kind, label=label, amount=money(component.rate * hours),
            source_key='total_hours', source_value=hours
        )

    if kind == FLAT_PER_SHIFT:
        amount = component.amount
        full_hours = component.full_shift_hours
        if full_hours and full_hours > 0 and hours < full_hours:
            amount = amount / full_hours * hours
        return BreakdownLine(type=kind, label=label, amount=money(amount))

    if kind == PERCENT_OF_METRIC:
        value = _metric(metrics, component.metric_key)
        return BreakdownLine(
            type=kind, label=label, amount=money(percent_of(value, component.percent)),
            source_key=component.metric_key or 'total_revenue', source_value=value
        )

    if kind == CUSTOM_METRIC_MULTIPLIER:
        key = component.metric_key
        if key in shift.report_data:
            value = to_decimal(shift.report_data.get(key))
        else:
            value = metrics.get(key, ZERO)
        return BreakdownLine(
            type=kind, label=label, amount=money(component.rate * value),
            source_key=key, source_value=value
        )

    if kind == SHIFT_BONUS and component.bonus_type == 'checklist':
        return _checklist_line(component, shift)

    if kind == SHIFT_BONUS:
        value = _metric(metrics, component.metric_key)
        return BreakdownLine(
            type=kind, label=label, amount=money(_shift_bonus_amount(component, value)),
            source_key=component.metric_key or 'total_revenue', source_value=value
        )

    # PERIOD_BONUS_CONTRIBUTION, заданный прямо в формуле
    value = _metric(metrics, component.metric_key)
    amount = percent_of(value, component.reward_value) if component.reward_type == 'PERCENT' else ZERO
    return BreakdownLine(
        type=kind, label=label, amount=money(amount),
        source_key=component.metric_key or 'total_revenue', source_value=value,
        reward_value=component.reward_value, reward_type=component.reward_type
    )


def _period_bonus_line(bonus: PeriodBonusContribution, metrics: Dict[str, Decimal]) -> Optional[BreakdownLine]:
    # Разовые (FIXED) премии периода на смены не раскладываются
    if bonus.current_reward_type != 'PERCENT':
        return None
    value = _metric(metrics, bonus.metric_key)
    amount = money(percent_of(value, bonus.current_reward_value))
    if amount <= 0:
        return None
    return BreakdownLine(
        type=PERIOD_BONUS_CONTRIBUTION,
        label=bonus.name or DEFAULT_LABELS[PERIOD_BONUS_CONTRIBUTION],
        amount=amount,
        source_key=bonus.metric_key,
        source_value=value,
        reward_value=bonus.current_reward_value,
        reward_type=bonus.current_reward_type,
    )


def evaluate(shift, formula, context: Optional[Dict[str, Any]] = None) -> SalaryCalculation:
    """
    Рассчитать зарплату за смену.

    Args:
        shift: ShiftInput или словарь {id, total_hours, report_data}
        formula: Formula или сохраненная формула в любом поддерживаемом виде
        context: показатели смены (total_revenue, revenue_cash, revenue_card,
            expenses и поля отчета)

    Returns:
        SalaryCalculation: итог и расшифровка в порядке компонентов

    Raises:
        ConfigurationError: формулы нет или она некорректна
        ValidationError: данные смены не разбираются
    """
    formula = normalize_formula(formula)
    if not isinstance(shift, ShiftInput):
        try:
            shift = ShiftInput.model_validate(shift or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed shift data: {e}") from e
    metrics = {key: to_decimal(value) for key, value in (context or {}).items()}

    lines = []
    for component in formula.components:
        line = _component_line(component, shift, metrics)
        if line:
            lines.append(line)
    for bonus in formula.period_bonuses:
        line = _period_bonus_line(bonus, metrics)
        if line:
            lines.append(line)

    maintenance = money(metrics.get(MAINTENANCE_METRIC, ZERO))
    if maintenance > 0:
        lines.append(BreakdownLine(
            type=EQUIPMENT_MAINTENANCE,
            label=DEFAULT_LABELS[EQUIPMENT_MAINTENANCE],
            amount=maintenance,
            source_key=MAINTENANCE_METRIC,
            source_value=maintenance,
        ))

    total = sum((line.amount for line in lines), ZERO)
    return SalaryCalculation(total=money(total), breakdown=lines)
