"""
Тесты шаблона отчета смены
"""
from decimal import Decimal

from clubledger.services.report_template import (
    ReportTemplateSchema, build_context, numeric_report_data, period_metric
)

TEMPLATE = [
    {"metric_key": "cash_income", "field_type": "INCOME", "custom_label": "Наличные"},
    {"metric_key": "card_income", "field_type": "INCOME", "custom_label": "Безнал"},
    {"metric_key": "sbp_income", "field_type": "INCOME", "custom_label": "СБП"},
    {"metric_key": "supplies", "field_type": "EXPENSE", "custom_label": "Закупка"},
    {"metric_key": "guests", "field_type": "OTHER", "custom_label": "Гости"},
]


class TestReportTemplate:
    """Классификация показателей"""

    def test_income_keys_in_template_order(self):
        template = ReportTemplateSchema.from_raw(TEMPLATE)
        assert template.income_keys() == ['cash_income', 'card_income', 'sbp_income']

    def test_no_template_uses_standard_columns(self):
        """Без шаблона доходом считаются наличные и безнал"""
        template = ReportTemplateSchema.from_raw(None)
        assert template.is_empty
        assert template.income_keys() == ['cash_income', 'card_income']

    def test_fields_wrapped_in_object(self):
        template = ReportTemplateSchema.from_raw({"fields": TEMPLATE})
        assert template.category('supplies') == 'EXPENSE'

    def test_card_excluded_by_template(self):
        """Шаблон может явно исключить безнал из дохода"""
        template = ReportTemplateSchema.from_raw([
            {"metric_key": "card_income", "field_type": "OTHER"},
        ])
        assert not template.is_income('card_income')
        assert template.income_keys() == ['cash_income']

    def test_guessed_category(self):
        """Категория без field_type угадывается по ключу"""
        template = ReportTemplateSchema.from_raw([{"metric_key": "bar_revenue"}])
        assert template.category('bar_revenue') == 'INCOME'

    def test_ledger_description(self):
        template = ReportTemplateSchema.from_raw(TEMPLATE)
        assert template.ledger_description('cash_income') == 'Наличные'
        assert template.ledger_description('sbp_income') == 'Выручка смены (СБП)'

    def test_shift_income(self):
        """Доход смены: стандартные колонки + поля дохода из отчета"""
        template = ReportTemplateSchema.from_raw(TEMPLATE)
        shift = {
            "cash_income": 1000, "card_income": 500,
            "report_data": {"sbp_income": 300, "supplies": 200, "guests": 40},
        }
        assert template.shift_income(shift) == Decimal('1800')


class TestContext:
    """Контекст показателей для формулы"""

    def test_numeric_report_data_drops_text(self):
        data = numeric_report_data({"guests": "12", "comment": "все хорошо", "flag": True})
        assert data == {"guests": Decimal('12')}

    def test_base_keys_take_priority(self):
        """Поле отчета не перекрывает базовый показатель"""
        template = ReportTemplateSchema.from_raw(None)
        shift = {
            "cash_income": 1000, "card_income": 500, "expenses": 100,
            "report_data": {"total_revenue": 1, "bar_sales": 7},
        }
        context = build_context(shift, template)
        assert context['total_revenue'] == Decimal('1500')
        assert context['revenue_cash'] == Decimal('1000')
        assert context['expenses'] == Decimal('100')
        assert context['bar_sales'] == Decimal('7')

    def test_period_metric(self):
        template = ReportTemplateSchema.from_raw(None)
        shifts = [
            {"cash_income": 1000, "card_income": 0, "total_hours": 12, "report_data": {"bar_sales": 2}},
            {"cash_income": 0, "card_income": 700, "total_hours": 10, "report_data": {}},
        ]
        assert period_metric(shifts, 'total_revenue', template) == Decimal('1700')
        assert period_metric(shifts, 'total_hours', template) == Decimal('22')
        assert period_metric(shifts, 'bar_sales', template) == Decimal('2')
