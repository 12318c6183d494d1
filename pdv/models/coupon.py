"""Coupon model."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, expression
from pdv.database import Base, BigIntPK
import enum


class DiscountType(enum.Enum):
    """Discount kind shared by coupons and manual discounts."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    """
    Coupon (cupom de desconto).

    Consumable while active, unused and not expired. Once ``is_used`` is set
    at settlement it is never cleared.
    """

    __tablename__ = 'coupons'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(40), nullable=False, unique=True, index=True)
    customer_id = Column(BigInteger, ForeignKey('customers.id'), nullable=False, index=True)
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    discount_value = Column(Numeric(10, 2), nullable=False)
    expire_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=expression.true())
    is_used = Column(Boolean, nullable=False, default=False, server_default=expression.false())
    used_at = Column(DateTime, nullable=True)

    # Sale that earned this coupon (loyalty rewards only); one reward per sale
    source_sale_id = Column(BigInteger, nullable=True, unique=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='coupons')

    def __repr__(self):
        return f"<Coupon(id={self.id}, code='{self.code}', is_used={self.is_used})>"

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'customer_id': self.customer_id,
            'discount_type': self.discount_type.value,
            'discount_value': str(self.discount_value),
            'expire_at': self.expire_at.isoformat() if self.expire_at else None,
            'is_active': self.is_active,
            'is_used': self.is_used,
            'used_at': self.used_at.isoformat() if self.used_at else None,
            'source_sale_id': self.source_sale_id,
        }
