"""
Loyalty service - post-settlement reward coupons.

One policy drives both the comanda close and the direct sale flow. A sale
with a customer and a total at or above the threshold earns one coupon.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from pdv.models import Sale, SaleStatus, Coupon, DiscountType
from pdv.exceptions import BusinessLogicError, NotFoundError
from pdv.services.coupon_service import build_coupon, generate_coupon_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoyaltyPolicy:
    threshold_amount: Decimal = Decimal('50.00')
    reward_kind: DiscountType = DiscountType.PERCENTAGE
    low_value: Decimal = Decimal('10')
    high_value: Decimal = Decimal('15')
    high_tier_amount: Decimal = Decimal('100.00')
    expiry_days: int = 30
    code_prefix: str = 'FIDELIDADE'
    min_purchase: Decimal = Decimal('30.00')
    high_min_purchase: Decimal = Decimal('50.00')
    enabled: bool = True
    auto_issue: bool = True

    @classmethod
    def from_config(cls, config=None) -> 'LoyaltyPolicy':
        if config is None:
            config = current_app.config if has_app_context() else {}
        defaults = cls()
        return cls(
            threshold_amount=Decimal(str(config.get('LOYALTY_THRESHOLD', defaults.threshold_amount))),
            reward_kind=DiscountType(str(config.get('LOYALTY_REWARD_KIND', defaults.reward_kind.value)).lower()),
            low_value=Decimal(str(config.get('LOYALTY_LOW_VALUE', defaults.low_value))),
            high_value=Decimal(str(config.get('LOYALTY_HIGH_VALUE', defaults.high_value))),
            high_tier_amount=Decimal(str(config.get('LOYALTY_HIGH_TIER_AMOUNT', defaults.high_tier_amount))),
            expiry_days=int(config.get('LOYALTY_EXPIRY_DAYS', defaults.expiry_days)),
            code_prefix=config.get('LOYALTY_CODE_PREFIX', defaults.code_prefix),
            min_purchase=Decimal(str(config.get('LOYALTY_MIN_PURCHASE', defaults.min_purchase))),
            high_min_purchase=Decimal(str(config.get('LOYALTY_HIGH_MIN_PURCHASE', defaults.high_min_purchase))),
            enabled=bool(config.get('LOYALTY_ENABLED', defaults.enabled)),
            auto_issue=bool(config.get('LOYALTY_AUTO_ISSUE', defaults.auto_issue)),
        )

    def reward_value(self, total: Decimal) -> Decimal:
        """Higher reward from ``high_tier_amount`` up."""
        return self.high_value if total >= self.high_tier_amount else self.low_value

    def min_purchase_for(self, value) -> Decimal:
        """Minimum purchase to redeem a reward of ``value``; high-tier rewards ask for more."""
        return self.high_min_purchase if Decimal(str(value)) >= self.high_value else self.min_purchase


@dataclass(frozen=True)
class LoyaltyOffer:
    """A reward coupon the customer is entitled to."""
    customer_id: int
    total: Decimal
    discount_type: DiscountType
    discount_value: Decimal
    expiry_days: int
    min_purchase: Decimal

    def to_dict(self):
        return {
            'customer_id': self.customer_id,
            'total': str(self.total),
            'discount_type': self.discount_type.value,
            'discount_value': str(self.discount_value),
            'expiry_days': self.expiry_days,
            'min_purchase': str(self.min_purchase),
        }


def evaluate_loyalty(total, customer_id: Optional[int], policy: Optional[LoyaltyPolicy] = None) -> Optional[LoyaltyOffer]:
    """
    Decide whether a settled total earns a coupon.

    Eligible iff the policy is enabled, a customer is attached and
    ``total >= threshold_amount``.
    """
    policy = policy or LoyaltyPolicy()
    total = Decimal(str(total))

    if not policy.enabled or customer_id is None:
        return None
    if total < policy.threshold_amount:
        return None

    discount_value = policy.reward_value(total)
    return LoyaltyOffer(
        customer_id=customer_id,
        total=total,
        discount_type=policy.reward_kind,
        discount_value=discount_value,
        expiry_days=policy.expiry_days,
        min_purchase=policy.min_purchase_for(discount_value),
    )


def _existing_reward(session, sale_id: int) -> Optional[Coupon]:
    return session.query(Coupon).filter(Coupon.source_sale_id == sale_id).first()


def issue_loyalty_coupon(
    session,
    sale_id: int,
    policy: Optional[LoyaltyPolicy] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Coupon:
    """
    Issue the reward coupon earned by a completed sale and commit.

    Idempotent per sale: when a coupon with ``source_sale_id == sale_id``
    already exists it is returned unchanged.

    Raises:
        NotFoundError: unknown sale
        BusinessLogicError: sale still open or not eligible
    """
    policy = policy or LoyaltyPolicy()
    now = now or datetime.now()

    sale = session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f'Venda #{sale_id} não encontrada')
    if sale.status != SaleStatus.COMPLETED:
        raise BusinessLogicError(f'A venda #{sale_id} ainda não foi finalizada')

    existing = _existing_reward(session, sale.id)
    if existing is not None:
        return existing

    offer = evaluate_loyalty(sale.total, sale.customer_id, policy)
    if offer is None:
        raise BusinessLogicError(f'A venda #{sale_id} não é elegível para cupom de fidelidade')

    try:
        coupon = build_coupon(
            session,
            customer_id=offer.customer_id,
            discount_type=offer.discount_type,
            discount_value=offer.discount_value,
            expire_at=now + timedelta(days=offer.expiry_days),
            code=generate_coupon_code(policy.code_prefix),
            user_id=user_id,
            source_sale_id=sale.id,
            now=now
        )
        session.commit()
    except IntegrityError:
        # Another request issued the reward for this sale first
        session.rollback()
        existing = _existing_reward(session, sale_id)
        if existing is not None:
            return existing
        raise
    except Exception:
        session.rollback()
        raise

    logger.info(f"[LOYALTY] Coupon {coupon.code} issued for sale #{sale_id} (customer {offer.customer_id})")
    return coupon
