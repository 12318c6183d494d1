"""Stock Movement model."""
from sqlalchemy import Column, BigInteger, String, Integer, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pdv.database import Base, BigIntPK
import enum


class MovementType(enum.Enum):
    """Stock movement type enum."""
    SALE = "sale"
    ENTRY = "entry"
    ADJUSTMENT = "adjustment"


class StockMovement(Base):
    """Stock Movement (movimentação de estoque). Insert-only audit row."""

    __tablename__ = 'stock_movements'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('products.id'), nullable=False, index=True)
    movement_type = Column(
        Enum(MovementType, name='movement_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    quantity = Column(Integer, nullable=False)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    reference_id = Column(BigInteger, nullable=True, index=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return (
            f"<StockMovement(id={self.id}, type={self.movement_type.value}, "
            f"{self.previous_stock}->{self.new_stock})>"
        )

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'movement_type': self.movement_type.value,
            'quantity': self.quantity,
            'previous_stock': self.previous_stock,
            'new_stock': self.new_stock,
            'reason': self.reason,
            'reference_id': self.reference_id,
        }
