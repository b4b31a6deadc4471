"""
Шаблон отчета смены: классификация показателей и контекст для расчета

Шаблон принадлежит внешней настройке отчетов клуба. Здесь он только читается:
какие ключи считаются доходом (INCOME), расходом (EXPENSE) или прочим (OTHER).
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .money import ZERO, is_number, to_decimal

INCOME = 'INCOME'
EXPENSE = 'EXPENSE'
OTHER = 'OTHER'

# Стандартные колонки смены, которые одновременно могут быть полями шаблона
STANDARD_INCOME_KEYS = ('cash_income', 'card_income')

DEFAULT_LABELS = {
    'cash_income': 'Выручка смены (наличные)',
    'card_income': 'Выручка смены (безнал)',
}


def guess_category(key: str) -> str:
    """Категория по имени ключа, если в шаблоне она не указана"""
    if 'income' in key or 'revenue' in key or key in ('cash', 'card'):
        return INCOME
    if 'expense' in key:
        return EXPENSE
    return OTHER


def read_field(obj, name, default=None):
    """Прочитать поле у ORM-объекта или словаря"""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class ReportTemplateSchema:
    """Разобранный шаблон отчета"""

    def __init__(self, fields: Optional[List[Dict]] = None):
        self.fields = []
        self.categories: Dict[str, str] = {}
        self.labels: Dict[str, str] = {}

        for raw in fields or []:
            if not isinstance(raw, dict):
                continue
            key = raw.get('metric_key') or raw.get('key')
            if not key:
                continue
            category = raw.get('field_type') or raw.get('calculation_category') or guess_category(key)
            self.fields.append(raw)
            self.categories[key] = str(category).upper()
            self.labels[key] = (
                raw.get('custom_label') or raw.get('employee_label') or raw.get('label')
                or raw.get('name') or DEFAULT_LABELS.get(key) or key
            )

    @classmethod
    def from_raw(cls, schema) -> 'ReportTemplateSchema':
        """Шаблон хранится либо списком полей, либо объектом {fields: [...]}"""
        if isinstance(schema, dict):
            schema = schema.get('fields') or []
        if not isinstance(schema, list):
            schema = []
        return cls(schema)

    @property
    def is_empty(self) -> bool:
        return not self.categories

    def category(self, key: str) -> Optional[str]:
        return self.categories.get(key)

    def label(self, key: str) -> str:
        return self.labels.get(key) or DEFAULT_LABELS.get(key) or key

    def is_income(self, key: str) -> bool:
        """
        Считается ли показатель доходом.

        Наличные и безнал считаются доходом, пока шаблон явно не говорит иное.
        """
        category = self.categories.get(key)
        if key in STANDARD_INCOME_KEYS:
            return category is None or category == INCOME
        return category == INCOME

    def income_keys(self) -> List[str]:
        """
        Каналы дохода для проводки в журнал, в порядке шаблона.

        Без шаблона используются только стандартные колонки. Стандартные
        колонки, которых нет в шаблоне, тоже считаются доходом.
        """
        keys = [key for key in STANDARD_INCOME_KEYS if key not in self.categories]
        keys.extend(key for key, category in self.categories.items() if category == INCOME)
        return keys

    def ledger_description(self, key: str) -> str:
        if key in STANDARD_INCOME_KEYS:
            return self.label(key)
        return f"Выручка смены ({self.label(key)})"

    def shift_income(self, shift) -> Decimal:
        """Доход смены: наличные + безнал + пользовательские поля дохода"""
        total = ZERO
        for key in STANDARD_INCOME_KEYS:
            if self.is_income(key):
                total += to_decimal(read_field(shift, key))

        report_data = read_field(shift, 'report_data') or {}
        for key, value in report_data.items():
            if key in STANDARD_INCOME_KEYS:
                continue
            if self.categories.get(key) == INCOME:
                total += to_decimal(value)
        return total


def numeric_report_data(report_data: Optional[Dict]) -> Dict[str, Decimal]:
    """Только числовые значения отчета (комментарии и прочий текст отбрасываются)"""
    return {
        key: to_decimal(value)
        for key, value in (report_data or {}).items()
        if is_number(value)
    }


def build_context(shift, template: ReportTemplateSchema) -> Dict[str, Decimal]:
    """
    Контекст показателей смены для формулы.

    Базовые ключи (total_revenue, revenue_cash, revenue_card, expenses)
    имеют приоритет над одноименными полями отчета.
    """
    context = numeric_report_data(read_field(shift, 'report_data'))
    context.update({
        'total_revenue': template.shift_income(shift),
        'revenue_cash': to_decimal(read_field(shift, 'cash_income')),
        'revenue_card': to_decimal(read_field(shift, 'card_income')),
        'expenses': to_decimal(read_field(shift, 'expenses')),
    })
    return context


def period_metric(shifts: Iterable, metric_key: str, template: ReportTemplateSchema) -> Decimal:
    """Значение показателя за период по набору смен"""
    total = ZERO
    for shift in shifts:
        if metric_key == 'total_revenue':
            total += template.shift_income(shift)
        elif metric_key == 'total_hours':
            total += to_decimal(read_field(shift, 'total_hours'))
        else:
            report_data = read_field(shift, 'report_data') or {}
            total += to_decimal(report_data.get(metric_key))
    return total
