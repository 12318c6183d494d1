"""
Settlement service - closes comandas and checks out direct sales.

Everything a settlement writes (stock decrements and movements, coupon
consumption, the income ledger entry and the sale's final state) commits in
one transaction or not at all. The loyalty reward is issued afterwards in
its own transaction and never undoes a committed settlement.

State machine: open -> completed, exactly once.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Iterable, Dict, Any

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from pdv.models import (
    Sale, SaleStatus, Coupon, FinancialTransaction, TransactionType,
    SALES_CATEGORY, PENDING_PAYMENT, normalize_payment_method
)
from pdv.exceptions import PdvError, ValidationError, SaleAlreadySettledError, PartialFailureError
from pdv.services.pricing_service import DiscountDescriptor, DiscountPolicy, PricingPreview, preview_pricing
from pdv.services.stock_service import reconcile_stock
from pdv.services.coupon_service import get_selectable_coupon, consume_coupon
from pdv.services.loyalty_service import LoyaltyPolicy, LoyaltyOffer, evaluate_loyalty, issue_loyalty_coupon
from pdv.services.comanda_service import lock_sale, build_sale_items, ensure_customer
from pdv.utils.number_format import quantize_money

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    sale: Sale
    pricing: PricingPreview
    loyalty_offer: Optional[LoyaltyOffer] = None
    loyalty_coupon: Optional[Coupon] = None

    def to_dict(self):
        return {
            'sale': self.sale.to_dict(),
            'pricing': self.pricing.to_dict(),
            'loyalty_offer': self.loyalty_offer.to_dict() if self.loyalty_offer else None,
            'loyalty_coupon': self.loyalty_coupon.to_dict() if self.loyalty_coupon else None,
        }


def _allow_negative_stock(value: Optional[bool]) -> bool:
    if value is not None:
        return value
    if has_app_context():
        return bool(current_app.config.get('STOCK_ALLOW_NEGATIVE', False))
    return False


def _validate_payment_method(payment_method) -> str:
    if payment_method is None or str(payment_method).strip().lower() in ('', PENDING_PAYMENT):
        raise ValidationError('Selecione a forma de pagamento')
    try:
        return normalize_payment_method(payment_method)
    except ValueError:
        raise ValidationError(f'Forma de pagamento inválida: {payment_method}')


def _apply_settlement(
    session,
    sale: Sale,
    payment_method,
    coupon_id: Optional[int],
    manual_discount: Optional[DiscountDescriptor],
    user_id: Optional[str],
    discount_policy: DiscountPolicy,
    allow_negative_stock: bool,
    description: str,
    now: datetime
) -> PricingPreview:
    """Write every settlement side effect into the current transaction (no commit)."""
    method = _validate_payment_method(payment_method)

    items = list(sale.items)
    if not items:
        raise ValidationError('A venda não possui itens')

    coupon = None
    if coupon_id is not None:
        coupon = get_selectable_coupon(session, coupon_id, sale.customer_id, now)

    pricing = preview_pricing(items, coupon=coupon, manual_discount=manual_discount, policy=discount_policy)

    reconcile_stock(session, sale, items, user_id=user_id, allow_negative=allow_negative_stock)

    if coupon is not None:
        consume_coupon(session, coupon, now)

    session.add(FinancialTransaction(
        transaction_type=TransactionType.INCOME,
        category=SALES_CATEGORY,
        description=description,
        amount=pricing.total,
        payment_method=method,
        reference_id=sale.id,
        transaction_date=now,
        created_by=user_id
    ))

    sale.subtotal = pricing.subtotal
    sale.discount_amount = quantize_money(pricing.total_discount)
    sale.total = pricing.total
    sale.payment_method = method
    sale.coupon_id = coupon.id if coupon is not None else None
    sale.completed_at = now
    sale.status = SaleStatus.COMPLETED
    return pricing


def _run_loyalty(session, sale: Sale, policy: LoyaltyPolicy, user_id: Optional[str], now: datetime):
    offer = evaluate_loyalty(sale.total, sale.customer_id, policy)
    coupon = None
    if offer is not None and policy.auto_issue:
        try:
            coupon = issue_loyalty_coupon(session, sale.id, policy, user_id=user_id, now=now)
        except Exception as e:
            logger.error(f"[LOYALTY] Could not issue coupon for sale #{sale.id}: {e}", exc_info=True)
    return offer, coupon


def _invalidate_sales_cache():
    """Gracefully attempt to invalidate the sales summary cache."""
    try:
        from pdv.services.cache_service import get_cache
        get_cache().invalidate_module('sales')
    except Exception as e:
        logger.debug(f"[CACHE] Sales invalidation skipped: {e}")


def settle_sale(
    session,
    sale_id: int,
    payment_method,
    coupon_id: Optional[int] = None,
    manual_discount: Optional[DiscountDescriptor] = None,
    user_id: Optional[str] = None,
    discount_policy: Optional[DiscountPolicy] = None,
    loyalty_policy: Optional[LoyaltyPolicy] = None,
    allow_negative_stock: Optional[bool] = None,
    now: Optional[datetime] = None
) -> SettlementResult:
    """
    Settle an open sale in a single transaction.

    Steps:
    1. Lock the sale row (unknown -> NotFoundError, completed -> SaleAlreadySettledError)
    2. Validate payment method and items
    3. Resolve coupon and price the sale
    4. Reconcile stock
    5. Consume coupon
    6. Insert income ledger entry
    7. Freeze totals and mark completed; commit
    8. Loyalty trigger (separate transaction)

    Raises:
        PdvError subclasses for domain failures (rolled back, nothing persisted)
        PartialFailureError: any other failure while writing (rolled back)
    """
    discount_policy = discount_policy or DiscountPolicy.from_config()
    loyalty_policy = loyalty_policy or LoyaltyPolicy.from_config()
    allow_negative = _allow_negative_stock(allow_negative_stock)
    now = now or datetime.now()

    try:
        sale = lock_sale(session, sale_id)
        if sale.status != SaleStatus.OPEN:
            raise SaleAlreadySettledError(sale.id)

        pricing = _apply_settlement(
            session, sale, payment_method, coupon_id, manual_discount, user_id,
            discount_policy, allow_negative,
            description=f"Venda - {sale.notes or 'Comanda'}",
            now=now
        )
        session.commit()

    except PdvError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"[SETTLEMENT] Sale #{sale_id} failed and was rolled back: {e}", exc_info=True)
        raise PartialFailureError(payload={'sale_id': sale_id}) from e

    logger.info(
        f"[SETTLEMENT] Sale #{sale.id} completed: total={sale.total} "
        f"discount={sale.discount_amount} method={sale.payment_method}"
    )
    _invalidate_sales_cache()

    offer, loyalty_coupon = _run_loyalty(session, sale, loyalty_policy, user_id, now)
    return SettlementResult(sale=sale, pricing=pricing, loyalty_offer=offer, loyalty_coupon=loyalty_coupon)


def close_comanda(
    session,
    sale_id: int,
    payment_method,
    coupon_id: Optional[int] = None,
    manual_discount: Optional[DiscountDescriptor] = None,
    user_id: Optional[str] = None,
    **options
) -> SettlementResult:
    """Close a comanda: settle its items with the chosen payment and discounts."""
    return settle_sale(
        session, sale_id, payment_method,
        coupon_id=coupon_id, manual_discount=manual_discount, user_id=user_id, **options
    )


def _existing_sale_for_key(session, idempotency_key: Optional[str]) -> Optional[Sale]:
    if not idempotency_key:
        return None
    return session.query(Sale).filter(Sale.idempotency_key == idempotency_key).first()


def checkout_direct_sale(
    session,
    items: Iterable[Dict[str, Any]],
    payment_method,
    customer_id: Optional[int] = None,
    coupon_id: Optional[int] = None,
    manual_discount: Optional[DiscountDescriptor] = None,
    idempotency_key: Optional[str] = None,
    user_id: Optional[str] = None,
    discount_policy: Optional[DiscountPolicy] = None,
    loyalty_policy: Optional[LoyaltyPolicy] = None,
    allow_negative_stock: Optional[bool] = None,
    now: Optional[datetime] = None
) -> SettlementResult:
    """
    Create and settle a sale from a cart in one transaction.

    Raises:
        SaleAlreadySettledError: ``idempotency_key`` was already used
        same errors as settle_sale otherwise
    """
    discount_policy = discount_policy or DiscountPolicy.from_config()
    loyalty_policy = loyalty_policy or LoyaltyPolicy.from_config()
    allow_negative = _allow_negative_stock(allow_negative_stock)
    now = now or datetime.now()
    idempotency_key = (idempotency_key or '').strip() or None

    try:
        existing = _existing_sale_for_key(session, idempotency_key)
        if existing is not None:
            raise SaleAlreadySettledError(existing.id, f'Esta venda já foi processada (#{existing.id})')

        sale = Sale(
            status=SaleStatus.OPEN,
            customer_id=ensure_customer(session, customer_id),
            payment_method=PENDING_PAYMENT,
            idempotency_key=idempotency_key,
            created_by=user_id
        )
        sale.items = build_sale_items(session, items)
        session.add(sale)
        session.flush()

        pricing = _apply_settlement(
            session, sale, payment_method, coupon_id, manual_discount, user_id,
            discount_policy, allow_negative,
            description=f'Venda #{sale.id}',
            now=now
        )
        session.commit()

    except PdvError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        existing = _existing_sale_for_key(session, idempotency_key)
        if existing is not None:
            raise SaleAlreadySettledError(existing.id, f'Esta venda já foi processada (#{existing.id})')
        logger.error(f"[SETTLEMENT] Direct sale failed and was rolled back: {e}", exc_info=True)
        raise PartialFailureError() from e
    except Exception as e:
        session.rollback()
        logger.error(f"[SETTLEMENT] Direct sale failed and was rolled back: {e}", exc_info=True)
        raise PartialFailureError() from e

    logger.info(
        f"[SETTLEMENT] Direct sale #{sale.id} completed: total={sale.total} "
        f"discount={sale.discount_amount} method={sale.payment_method}"
    )
    _invalidate_sales_cache()

    offer, loyalty_coupon = _run_loyalty(session, sale, loyalty_policy, user_id, now)
    return SettlementResult(sale=sale, pricing=pricing, loyalty_offer=offer, loyalty_coupon=loyalty_coupon)
