"""
Pricing service - subtotal aggregation, discount resolution and totals.

Pure functions shared by the comanda close and direct sale flows. No
database access; callers pass line items (SaleItem rows or dicts) and
discount descriptors.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Any

from flask import current_app, has_app_context

from pdv.exceptions import ValidationError
from pdv.models import DiscountType
from pdv.utils.number_format import quantize_money, to_decimal

ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class DiscountDescriptor:
    """A discount to apply: percentage of the subtotal or a fixed amount."""
    kind: DiscountType
    value: Decimal

    @classmethod
    def from_values(cls, kind, value) -> 'DiscountDescriptor':
        """
        Build a descriptor from raw request values.

        Raises:
            ValidationError: unknown kind or non-numeric value
        """
        if isinstance(kind, DiscountType):
            discount_kind = kind
        else:
            try:
                discount_kind = DiscountType(str(kind or '').strip().lower())
            except ValueError:
                raise ValidationError(f'Tipo de desconto inválido: {kind}')

        try:
            discount_value = to_decimal(value, 'Valor do desconto')
        except (ValueError, InvalidOperation) as e:
            raise ValidationError(str(e))

        return cls(kind=discount_kind, value=discount_value)

    @classmethod
    def from_coupon(cls, coupon) -> 'DiscountDescriptor':
        return cls(kind=coupon.discount_type, value=Decimal(str(coupon.discount_value)))


@dataclass(frozen=True)
class DiscountPolicy:
    """How out-of-range discounts and coupon + manual combinations are handled."""
    clamp_percentage: bool = True
    allow_stacking: bool = True

    @classmethod
    def from_config(cls, config=None) -> 'DiscountPolicy':
        if config is None:
            config = current_app.config if has_app_context() else {}
        return cls(
            clamp_percentage=bool(config.get('DISCOUNT_CLAMP_PERCENTAGE', True)),
            allow_stacking=bool(config.get('DISCOUNT_ALLOW_STACKING', True)),
        )


@dataclass(frozen=True)
class PricingPreview:
    """Result of pricing a set of line items with optional discounts."""
    subtotal: Decimal
    coupon_discount: Decimal
    manual_discount_amount: Decimal
    total_discount: Decimal
    total: Decimal

    def to_dict(self):
        return {
            'subtotal': str(self.subtotal),
            'coupon_discount': str(self.coupon_discount),
            'manual_discount_amount': str(self.manual_discount_amount),
            'total_discount': str(self.total_discount),
            'total': str(self.total),
        }


def _item_field(item: Any, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def calculate_subtotal(items: Iterable[Any]) -> Decimal:
    """
    Sum of line amounts.

    Uses each item's persisted ``subtotal`` when present (custom priced items
    keep their own amount), else ``unit_price * quantity``.
    """
    subtotal = ZERO
    for item in items or []:
        line_amount = _item_field(item, 'subtotal')
        if line_amount is None:
            unit_price = Decimal(str(_item_field(item, 'unit_price') or 0))
            quantity = Decimal(str(_item_field(item, 'quantity') or 0))
            line_amount = unit_price * quantity
        subtotal += Decimal(str(line_amount))
    return quantize_money(subtotal)


def resolve_discount(
    subtotal: Decimal,
    descriptor: Optional[DiscountDescriptor],
    policy: Optional[DiscountPolicy] = None
) -> Decimal:
    """
    Discount amount for one descriptor.

    Percentage -> subtotal * value / 100, fixed -> value, none -> 0. A fixed
    amount larger than the subtotal is not reduced here; the total floors at 0.
    """
    if descriptor is None:
        return ZERO

    policy = policy or DiscountPolicy()
    value = descriptor.value

    if descriptor.kind == DiscountType.PERCENTAGE:
        if policy.clamp_percentage:
            value = min(max(value, Decimal('0')), HUNDRED)
        return quantize_money(Decimal(str(subtotal)) * value / HUNDRED)

    if policy.clamp_percentage and value < 0:
        value = Decimal('0')
    return quantize_money(value)


def calculate_total(subtotal: Decimal, total_discount: Decimal) -> Decimal:
    """Final payable amount, never negative."""
    return quantize_money(max(Decimal('0'), Decimal(str(subtotal)) - Decimal(str(total_discount))))


def preview_pricing(
    items: Iterable[Any],
    coupon=None,
    manual_discount: Optional[DiscountDescriptor] = None,
    policy: Optional[DiscountPolicy] = None
) -> PricingPreview:
    """
    Price a set of line items without side effects.

    Args:
        items: SaleItem rows or dicts with subtotal / unit_price + quantity
        coupon: Coupon row or DiscountDescriptor (optional)
        manual_discount: DiscountDescriptor (optional)
        policy: DiscountPolicy (defaults to clamping and stacking enabled)

    Raises:
        ValidationError: both discounts given while stacking is disabled
    """
    policy = policy or DiscountPolicy()

    if coupon is not None and not isinstance(coupon, DiscountDescriptor):
        coupon = DiscountDescriptor.from_coupon(coupon)

    if coupon is not None and manual_discount is not None and not policy.allow_stacking:
        raise ValidationError('Não é permitido combinar cupom e desconto manual')

    subtotal = calculate_subtotal(items)
    coupon_discount = resolve_discount(subtotal, coupon, policy)
    manual_amount = resolve_discount(subtotal, manual_discount, policy)
    total_discount = coupon_discount + manual_amount

    return PricingPreview(
        subtotal=subtotal,
        coupon_discount=coupon_discount,
        manual_discount_amount=manual_amount,
        total_discount=total_discount,
        total=calculate_total(subtotal, total_discount),
    )
