"""
Coupon service - selection, single-use consumption and management of customer coupons.
"""
import logging
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.attributes import set_committed_value

from pdv.models import Coupon, Customer, DiscountType
from pdv.exceptions import (
    BusinessLogicError, NotFoundError, ValidationError, CouponUnavailableError
)
from pdv.services.pricing_service import DiscountDescriptor

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def generate_coupon_code(prefix: Optional[str] = None, length: int = CODE_LENGTH) -> str:
    """Random uppercase alphanumeric code, optionally ``PREFIX-TOKEN``."""
    token = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    if prefix:
        return f"{prefix.strip().upper()}-{token}"
    return token


def get_available_coupons(session, customer_id: int, now: Optional[datetime] = None) -> List[Coupon]:
    """Active, unused, unexpired coupons of a customer, soonest expiry first."""
    now = now or datetime.now()
    return (
        session.query(Coupon)
        .filter(
            Coupon.customer_id == customer_id,
            Coupon.is_active.is_(True),
            Coupon.is_used.is_(False),
            Coupon.expire_at > now
        )
        .order_by(Coupon.expire_at)
        .all()
    )


def get_selectable_coupon(
    session,
    coupon_id: int,
    customer_id: Optional[int],
    now: Optional[datetime] = None
) -> Coupon:
    """
    Load a coupon that may be applied to a sale of ``customer_id``.

    Raises:
        CouponUnavailableError: unknown, used, inactive, expired or owned by
            another customer (also when the sale has no customer)
    """
    now = now or datetime.now()
    coupon = session.get(Coupon, coupon_id)

    if coupon is None:
        raise CouponUnavailableError('Cupom não encontrado', payload={'coupon_id': coupon_id})
    if customer_id is None or coupon.customer_id != int(customer_id):
        raise CouponUnavailableError('Este cupom não pertence ao cliente da venda', payload={'coupon_id': coupon_id})
    if coupon.is_used:
        raise CouponUnavailableError(f'O cupom {coupon.code} já foi utilizado', payload={'coupon_id': coupon_id})
    if not coupon.is_active:
        raise CouponUnavailableError(f'O cupom {coupon.code} está inativo', payload={'coupon_id': coupon_id})
    if coupon.expire_at <= now:
        raise CouponUnavailableError(f'O cupom {coupon.code} expirou', payload={'coupon_id': coupon_id})

    return coupon


def consume_coupon(session, coupon: Coupon, now: Optional[datetime] = None) -> Coupon:
    """
    Mark a coupon as used inside the caller's transaction (no commit).

    The UPDATE only matches an active, unused row, so a coupon consumed by a
    concurrent settlement yields zero rows and the second settlement fails.

    Raises:
        CouponUnavailableError: coupon no longer consumable
    """
    now = now or datetime.now()
    result = session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.is_used.is_(False),
            Coupon.is_active.is_(True)
        )
        .values(is_used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CouponUnavailableError(
            f'O cupom {coupon.code} não está mais disponível',
            payload={'coupon_id': coupon.id}
        )

    set_committed_value(coupon, 'is_used', True)
    set_committed_value(coupon, 'used_at', now)
    return coupon


def build_coupon(
    session,
    customer_id: int,
    discount_type,
    discount_value,
    expire_at: datetime,
    code: Optional[str] = None,
    user_id: Optional[str] = None,
    source_sale_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> Coupon:
    """
    Validate and add a coupon to the session (flush, no commit).

    Raises:
        ValidationError: invalid discount or expiry
        NotFoundError: unknown customer
        BusinessLogicError: duplicated code
    """
    now = now or datetime.now()
    descriptor = DiscountDescriptor.from_values(discount_type, discount_value)

    if descriptor.kind == DiscountType.PERCENTAGE:
        if descriptor.value <= 0 or descriptor.value > 100:
            raise ValidationError('O percentual do cupom deve estar entre 0 e 100')
    elif descriptor.value <= 0:
        raise ValidationError('O valor do cupom deve ser maior que zero')

    if expire_at is None or expire_at <= now:
        raise ValidationError('A validade do cupom deve ser uma data futura')

    if session.get(Customer, customer_id) is None:
        raise NotFoundError(f'Cliente #{customer_id} não encontrado')

    code = (code or '').strip().upper() or generate_coupon_code()
    if session.query(Coupon.id).filter(Coupon.code == code).first():
        raise BusinessLogicError(f'Já existe um cupom com o código {code}', status_code=409)

    coupon = Coupon(
        code=code,
        customer_id=customer_id,
        discount_type=descriptor.kind,
        discount_value=descriptor.value.quantize(Decimal('0.01')),
        expire_at=expire_at,
        is_active=True,
        is_used=False,
        source_sale_id=source_sale_id,
        created_by=user_id
    )
    session.add(coupon)
    session.flush()
    return coupon


def create_coupon(
    session,
    customer_id: int,
    discount_type,
    discount_value,
    expire_at: datetime,
    code: Optional[str] = None,
    user_id: Optional[str] = None,
    source_sale_id: Optional[int] = None
) -> Coupon:
    """Create a coupon for a customer and commit."""
    try:
        coupon = build_coupon(
            session, customer_id, discount_type, discount_value, expire_at,
            code=code, user_id=user_id, source_sale_id=source_sale_id
        )
        session.commit()
        logger.info(f"Coupon {coupon.code} created for customer {customer_id}")
        return coupon
    except IntegrityError:
        session.rollback()
        raise BusinessLogicError('Já existe um cupom com este código', status_code=409)
    except Exception:
        session.rollback()
        raise


def deactivate_coupon(session, coupon_id: int) -> Coupon:
    """Deactivate a coupon. Used coupons stay used."""
    coupon = session.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError(f'Cupom #{coupon_id} não encontrado')

    coupon.is_active = False
    session.commit()
    logger.info(f"Coupon {coupon.code} deactivated")
    return coupon


def get_expiring_coupons(session, within_days: int = 3, now: Optional[datetime] = None) -> List[Coupon]:
    """Active unused coupons expiring within ``within_days``."""
    now = now or datetime.now()
    limit = now + timedelta(days=within_days)
    return (
        session.query(Coupon)
        .options(joinedload(Coupon.customer))
        .filter(
            Coupon.is_active.is_(True),
            Coupon.is_used.is_(False),
            Coupon.expire_at > now,
            Coupon.expire_at <= limit
        )
        .order_by(Coupon.expire_at)
        .all()
    )


def expire_coupons(session, now: Optional[datetime] = None) -> int:
    """Deactivate unused coupons past their expiry. Returns how many were changed."""
    now = now or datetime.now()
    try:
        result = session.execute(
            update(Coupon)
            .where(
                Coupon.is_active.is_(True),
                Coupon.is_used.is_(False),
                Coupon.expire_at <= now
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    if result.rowcount:
        logger.info(f"{result.rowcount} expired coupon(s) deactivated")
    return result.rowcount
