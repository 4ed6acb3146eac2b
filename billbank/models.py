"""
Entity Module

ORM entities for users, currencies, bills, transactions and the seeded
reference data (languages, message keys).
"""

from decimal import Decimal
from typing import List

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, false, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .storage import Base, StorageRecord


MONEY = Numeric(13, 2)
EXCHANGE_RATE = Numeric(14, 6)


class User(StorageRecord, Base):
    __tablename__ = "users"
    
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    
    bills: Mapped[List["Bill"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    
    def __repr__(self) -> str:
        return f"User(uuid={self.uuid!r}, email={self.email!r})"


class Currency(StorageRecord, Base):
    __tablename__ = "currencies"

    name: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)
    current_exchange_rate: Mapped[Decimal] = mapped_column(EXCHANGE_RATE, nullable=False)
    base: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    
    def __repr__(self) -> str:
        return f"Currency(name={self.name!r}, rate={self.current_exchange_rate}, base={self.base})"


# Exactly one row may carry the base flag
Index(
    "uq_currencies_base",
    Currency.base,
    unique=True,
    sqlite_where=Currency.base == true(),
    postgresql_where=Currency.base == true(),
)


class Bill(StorageRecord, Base):
    __tablename__ = "bills"
    
    account_bill_number: Mapped[str] = mapped_column(String(26), unique=True, nullable=False)
    # Display cache only; the available balance is computed from transactions
    amount_money: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    currency_id: Mapped[int] = mapped_column(ForeignKey("currencies.id"), nullable=False)
    
    user: Mapped[User] = relationship(back_populates="bills")
    currency: Mapped[Currency] = relationship()
    sent_transactions: Mapped[List["Transaction"]] = relationship(
        back_populates="sender_bill", foreign_keys="Transaction.sender_bill_id"
    )
    received_transactions: Mapped[List["Transaction"]] = relationship(
        back_populates="recipient_bill", foreign_keys="Transaction.recipient_bill_id"
    )
    
    def __repr__(self) -> str:
        return f"Bill(uuid={self.uuid!r}, number={self.account_bill_number!r})"


class Transaction(StorageRecord, Base):
    __tablename__ = "transactions"
    
    amount_money: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    transfer_title: Mapped[str] = mapped_column(String(255), nullable=False)
    authorization_key: Mapped[str] = mapped_column(String(32), nullable=False)
    authorization_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sender_bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True)
    
    sender_bill: Mapped[Bill] = relationship(
        back_populates="sent_transactions", foreign_keys=[sender_bill_id]
    )
    recipient_bill: Mapped[Bill] = relationship(
        back_populates="received_transactions", foreign_keys=[recipient_bill_id]
    )
    
    @property
    def is_pending(self) -> bool:
        return not self.authorization_status
    
    def __repr__(self) -> str:
        return f"Transaction(uuid={self.uuid!r}, amount={self.amount_money}, confirmed={self.authorization_status})"


# A key identifies at most one pending transaction
Index(
    "uq_transactions_pending_authorization_key",
    Transaction.authorization_key,
    unique=True,
    sqlite_where=Transaction.authorization_status == false(),
    postgresql_where=Transaction.authorization_status == false(),
)


class Language(StorageRecord, Base):
    __tablename__ = "languages"
    
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(5), unique=True, nullable=False)


class MessageKey(StorageRecord, Base):
    __tablename__ = "message_keys"
    
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
