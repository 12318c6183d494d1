"""Sale model (direct sales and comandas)."""
from sqlalchemy import Column, BigInteger, String, Text, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pdv.database import Base, BigIntPK
import enum


class SaleStatus(enum.Enum):
    """Sale status enum. A sale moves from OPEN to COMPLETED exactly once."""
    OPEN = "open"
    COMPLETED = "completed"


class PaymentMethod(enum.Enum):
    """Payment methods accepted at settlement."""
    CASH = "cash"
    PIX = "pix"
    DEBIT = "debit"
    CREDIT = "credit"


# Stored on open sales until settlement picks a real method
PENDING_PAYMENT = 'pending'


def normalize_payment_method(value) -> str:
    """
    Normalize payment method value to string for DB storage.

    Args:
        value: PaymentMethod enum or string (case-insensitive)

    Returns:
        str: 'cash', 'pix', 'debit' or 'credit'

    Raises:
        ValueError: If value is missing or invalid
    """
    if value is None:
        raise ValueError("Payment method is required")

    if isinstance(value, PaymentMethod):
        return value.value

    normalized = str(value).lower().strip()
    valid = [m.value for m in PaymentMethod]
    if normalized in valid:
        return normalized

    raise ValueError(f"Invalid payment method: {value}. Must be one of {', '.join(valid)}.")


class Sale(Base):
    """Sale (venda). An open sale is a comanda; settlement completes it."""

    __tablename__ = 'sales'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    status = Column(
        Enum(SaleStatus, name='sale_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SaleStatus.OPEN
    )
    customer_id = Column(BigInteger, ForeignKey('customers.id'), nullable=True)
    coupon_id = Column(BigInteger, ForeignKey('coupons.id'), nullable=True)
    notes = Column(Text, nullable=True)
    payment_method = Column(String(20), nullable=False, default=PENDING_PAYMENT, server_default=PENDING_PAYMENT)

    subtotal = Column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    total = Column(Numeric(10, 2), nullable=False, default=0, server_default='0')

    # Idempotency key to prevent duplicate direct sales on double-submit
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    customer = relationship('Customer', back_populates='sales')
    coupon = relationship('Coupon', foreign_keys=[coupon_id])
    items = relationship(
        'SaleItem',
        back_populates='sale',
        cascade='all, delete-orphan',
        order_by='SaleItem.id'
    )

    @property
    def is_open(self) -> bool:
        return self.status == SaleStatus.OPEN

    def __repr__(self):
        return f"<Sale(id={self.id}, total={self.total}, status={self.status.value})>"

    def to_dict(self, include_items: bool = True):
        data = {
            'id': self.id,
            'status': self.status.value,
            'customer': self.customer.to_dict() if self.customer else None,
            'coupon_id': self.coupon_id,
            'notes': self.notes,
            'payment_method': self.payment_method,
            'subtotal': str(self.subtotal),
            'discount_amount': str(self.discount_amount),
            'total': str(self.total),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data
