"""Models package - exports all SQLAlchemy models."""
from pdv.models.customer import Customer
from pdv.models.product import Product
from pdv.models.sale import Sale, SaleStatus, PaymentMethod, PENDING_PAYMENT, normalize_payment_method
from pdv.models.sale_item import SaleItem
from pdv.models.coupon import Coupon, DiscountType
from pdv.models.stock_movement import StockMovement, MovementType
from pdv.models.financial_transaction import FinancialTransaction, TransactionType, SALES_CATEGORY

__all__ = [
    'Customer', 'Product',
    'Sale', 'SaleStatus', 'PaymentMethod', 'PENDING_PAYMENT', 'normalize_payment_method',
    'SaleItem', 'Coupon', 'DiscountType',
    'StockMovement', 'MovementType',
    'FinancialTransaction', 'TransactionType', 'SALES_CATEGORY',
]
