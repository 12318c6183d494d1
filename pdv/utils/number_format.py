"""Number parsing utilities for money and quantities (Brazilian and plain formats)."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal('0.01')

BR_DECIMAL_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+),\d{1,2}$")
PLAIN_DECIMAL_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")


def quantize_money(value) -> Decimal:
    """Round a monetary value to cents (ROUND_HALF_UP)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value, field: str = 'valor') -> Decimal:
    """
    Coerce a JSON/form value to Decimal without going through float.

    Accepts Decimal, int, float (via ``str``) and strings in either Brazilian
    format (``1.234,56`` / ``12,5``) or plain format (``1234.56``).

    Raises:
        ValueError: if the value is missing or not numeric.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} é obrigatório')

    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = str(value).strip()
    negative = cleaned.startswith('-')
    if negative:
        cleaned = cleaned[1:]

    if BR_DECIMAL_PATTERN.match(cleaned):
        normalized = cleaned.replace('.', '').replace(',', '.')
    elif PLAIN_DECIMAL_PATTERN.match(cleaned):
        normalized = cleaned
    else:
        raise ValueError(f'{field} inválido: {value}')

    try:
        result = Decimal(normalized)
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} inválido: {value}')

    return -result if negative else result


def parse_quantity(value) -> int:
    """
    Parse an item quantity. Quantities are whole units >= 1.

    Raises:
        ValueError: for fractional, non-numeric or non-positive values.
    """
    try:
        qty = to_decimal(value, 'quantidade')
    except ValueError:
        raise ValueError('Quantidade inválida')

    if qty != qty.to_integral_value():
        raise ValueError('A quantidade deve ser um número inteiro')
    if qty < 1:
        raise ValueError('A quantidade deve ser maior que zero')

    return int(qty)
