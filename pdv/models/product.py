"""Product model."""
from sqlalchemy import Column, String, Text, Boolean, Integer, Numeric, DateTime
from sqlalchemy.sql import func, expression
from pdv.database import Base, BigIntPK


class Product(Base):
    """
    Product model.

    Only products with ``controls_stock`` have their ``current_stock``
    decremented at settlement. Products sold by weight usually have no
    fixed ``price`` and get a custom unit price per line item.
    """

    __tablename__ = 'products'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=expression.true())
    controls_stock = Column(Boolean, nullable=False, default=False, server_default=expression.false())
    current_stock = Column(Integer, nullable=True)
    low_stock_threshold = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', current_stock={self.current_stock})>"

    @property
    def on_hand_qty(self) -> int:
        """Current stock treating an unset value as zero."""
        return self.current_stock or 0

    @property
    def is_low_stock(self) -> bool:
        if not self.controls_stock or self.low_stock_threshold is None:
            return False
        return self.on_hand_qty <= self.low_stock_threshold

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'price': str(self.price) if self.price is not None else None,
            'is_active': self.is_active,
            'controls_stock': self.controls_stock,
            'current_stock': self.current_stock,
            'low_stock_threshold': self.low_stock_threshold,
            'is_low_stock': self.is_low_stock,
        }
