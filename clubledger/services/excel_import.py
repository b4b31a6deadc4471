"""
Импорт смен из Excel

Шаблон: один лист, первая строка - заголовки
ФИО | Дата начала | Дата окончания | Наличные | Безнал | Расходы | Комментарий
Даты в формате ДД.ММ.ГГГГ ЧЧ:ММ по часам клуба.
"""
import logging
from datetime import datetime
from io import BytesIO
from typing import Dict, List, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, Alignment, Border, Side
from openpyxl.utils import get_column_letter

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

DATE_FORMAT = '%d.%m.%Y %H:%M'

# заголовок колонки -> поле строки пакета
COLUMNS = {
    'ФИО': 'employee_name',
    'Дата начала': 'check_in',
    'Дата окончания': 'check_out',
    'Наличные': 'cash_income',
    'Безнал': 'card_income',
    'Расходы': 'expenses',
    'Комментарий': 'report_comment',
}

REQUIRED_COLUMNS = ('ФИО', 'Дата начала', 'Дата окончания')


def build_template_workbook() -> Workbook:
    """Пустой шаблон для заполнения с примером строки"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Смены"

    thin = Side(style='thin')
    for col, header in enumerate(COLUMNS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal='center')
        cell.border = Border(bottom=thin, top=thin, left=thin, right=thin)
        ws.column_dimensions[get_column_letter(col)].width = 22 if col <= 3 else 14

    example = ['Иванов Иван Иванович', '01.10.2024 10:00', '01.10.2024 22:00', 5000, 3000, 0, '']
    for col, value in enumerate(example, start=1):
        ws.cell(row=2, column=col, value=value)
    return wb


def template_bytes() -> bytes:
    buffer = BytesIO()
    build_template_workbook().save(buffer)
    return buffer.getvalue()


def _cell_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    text = str(value).strip()
    return text or None


def _amount(value):
    if value is None or value == '':
        return 0
    return value


def parse_shift_workbook(content: bytes) -> List[Dict]:
    """
    Разобрать xlsx в строки пакетного импорта.

    Пустые строки пропускаются. Ошибки отдельных строк не проверяются здесь:
    они всплывут при импорте строки.

    Raises:
        ValidationError: файл не читается или нет обязательных колонок
    """
    try:
        wb = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValidationError(f"Cannot read Excel file: {e}") from e

    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            raise ValidationError("Excel file is empty")

        positions = {}
        for index, title in enumerate(header):
            title = _cell_text(title)
            if title in COLUMNS:
                positions[COLUMNS[title]] = index
        missing = [title for title in REQUIRED_COLUMNS if COLUMNS[title] not in positions]
        if missing:
            raise ValidationError(f"Missing columns: {', '.join(missing)}")

        result = []
        for values in rows:
            if not values or all(value in (None, '') for value in values):
                continue

            def get(field):
                index = positions.get(field)
                return values[index] if index is not None and index < len(values) else None

            result.append({
                'employee_name': _cell_text(get('employee_name')),
                'check_in': _cell_text(get('check_in')),
                'check_out': _cell_text(get('check_out')),
                'cash_income': _amount(get('cash_income')),
                'card_income': _amount(get('card_income')),
                'expenses': _amount(get('expenses')),
                'report_comment': _cell_text(get('report_comment')),
            })
    finally:
        wb.close()

    logger.info(f"Parsed {len(result)} shift rows from Excel")
    return result
