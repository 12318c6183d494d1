"""Financial Transaction model."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Text, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from pdv.database import Base, BigIntPK
import enum


class TransactionType(enum.Enum):
    """Ledger entry type enum."""
    INCOME = "income"
    EXPENSE = "expense"


SALES_CATEGORY = 'Vendas'


class FinancialTransaction(Base):
    """Financial Transaction (lançamento financeiro)."""

    __tablename__ = 'financial_transactions'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_type = Column(
        Enum(TransactionType, name='transaction_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(20), nullable=True)
    reference_id = Column(BigInteger, nullable=True, index=True)
    transaction_date = Column(DateTime, nullable=False, default=datetime.now)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<FinancialTransaction(id={self.id}, type={self.transaction_type.value}, amount={self.amount})>"
