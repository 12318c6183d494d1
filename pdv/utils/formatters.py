"""
Utilitários de formatação para mensagens e respostas.
Formatos de números e datas no estilo brasileiro.
"""
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Union


def _group_thousands(integer_part: str) -> str:
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]


def money_br(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formata um valor monetário com exatamente 2 decimais.
    Ponto para milhares e vírgula para decimais.

    Examples:
        money_br(1500) -> "1.500,00"
        money_br(12.5) -> "12,50"
        money_br(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    integer_part, decimal_part = f"{abs(num):.2f}".split(".")
    return f"{sign}{_group_thousands(integer_part)},{decimal_part}"


def num_br(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formata um número sem zeros decimais à direita.

    Examples:
        num_br(10) -> "10"
        num_br(Decimal('12.50')) -> "12,5"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    num = abs(num)
    if num == num.to_integral_value():
        return f"{sign}{_group_thousands(str(int(num)))}"

    integer_part, decimal_part = f"{num:f}".split(".")
    return f"{sign}{_group_thousands(integer_part)},{decimal_part.rstrip('0')}"


def date_br(value: Union[date, datetime, None]) -> str:
    """
    Formata uma data: DD/MM/AAAA

    Examples:
        date_br(date(2026, 1, 12)) -> "12/01/2026"
    """
    if value is None:
        return "-"

    if isinstance(value, datetime):
        value = value.date()

    if not isinstance(value, date):
        return "-"

    return value.strftime("%d/%m/%Y")

