"""
Денежная арифметика
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0')
CENT = Decimal('0.01')


def to_decimal(value) -> Decimal:
    """Привести значение к Decimal; пустые и нечисловые значения дают 0"""
    if value is None or value == '' or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip().replace(',', '.'))
    except (InvalidOperation, ValueError):
        return ZERO
    if not result.is_finite():
        return ZERO
    return result


def is_number(value) -> bool:
    """Можно ли трактовать значение как число"""
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    try:
        return Decimal(str(value).strip().replace(',', '.')).is_finite()
    except (InvalidOperation, ValueError):
        return False


def money(value) -> Decimal:
    """Округление до копеек"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(value, percent) -> Decimal:
    """percent% от value"""
    return to_decimal(value) * to_decimal(percent) / Decimal('100')
