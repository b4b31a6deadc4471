"""
Тесты импорта смен из Excel
"""
import pytest
from datetime import datetime
from io import BytesIO

from openpyxl import Workbook, load_workbook

from clubledger.exceptions import ValidationError
from clubledger.services.excel_import import COLUMNS, parse_shift_workbook, template_bytes


def workbook_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for values in rows:
        ws.append(values)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestTemplate:

    def test_template_headers(self):
        ws = load_workbook(BytesIO(template_bytes())).active
        assert ws.title == "Смены"
        assert [cell.value for cell in ws[1]] == list(COLUMNS)

    def test_template_example_parses(self):
        """Пример из шаблона разбирается как строка пакета"""
        rows = parse_shift_workbook(template_bytes())
        assert rows == [{
            'employee_name': 'Иванов Иван Иванович',
            'check_in': '01.10.2024 10:00',
            'check_out': '01.10.2024 22:00',
            'cash_income': 5000,
            'card_income': 3000,
            'expenses': 0,
            'report_comment': None,
        }]


class TestParseWorkbook:

    def test_datetime_cells_and_empty_rows(self):
        content = workbook_bytes([
            ['Дата начала', 'ФИО', 'Дата окончания', 'Наличные'],
            [datetime(2024, 10, 1, 10, 0), 'Сидорова Анна', datetime(2024, 10, 1, 22, 0), 1500],
            [None, None, None, None],
            ['02.10.2024 10:00', 'Иванов Иван Иванович', '02.10.2024 22:00', None],
        ])
        rows = parse_shift_workbook(content)

        assert len(rows) == 2
        assert rows[0]['employee_name'] == 'Сидорова Анна'
        assert rows[0]['check_in'] == '01.10.2024 10:00'
        assert rows[0]['cash_income'] == 1500
        assert rows[0]['card_income'] == 0
        assert rows[1]['cash_income'] == 0

    def test_missing_required_column(self):
        content = workbook_bytes([['ФИО', 'Наличные'], ['Сидорова Анна', 100]])
        with pytest.raises(ValidationError) as exc_info:
            parse_shift_workbook(content)
        assert 'Дата начала' in str(exc_info.value)

    def test_not_excel(self):
        with pytest.raises(ValidationError):
            parse_shift_workbook(b'not an excel file')
