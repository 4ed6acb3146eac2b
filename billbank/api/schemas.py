"""
Pydantic schemas for API requests and responses
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from ..bills import BillBalance
from ..currency import convert_amount
from ..models import Bill, Currency, Language, Transaction, User
from ..pagination import Page, PageMeta


class CurrencyModel(BaseModel):
    uuid: str
    name: str
    current_exchange_rate: str = Field(..., description="Decimal rate against the base currency")
    base: bool
    
    @classmethod
    def from_currency(cls, currency: Currency) -> 'CurrencyModel':
        return cls(
            uuid=currency.uuid,
            name=currency.name,
            current_exchange_rate=str(currency.current_exchange_rate),
            base=currency.base
        )


class UserModel(BaseModel):
    uuid: str
    first_name: str
    last_name: str
    
    @classmethod
    def from_user(cls, user: User) -> 'UserModel':
        return cls(uuid=user.uuid, first_name=user.first_name, last_name=user.last_name)


class BillModel(BaseModel):
    uuid: str
    account_bill_number: str
    currency: CurrencyModel
    user: UserModel
    
    @classmethod
    def from_bill(cls, bill: Bill) -> 'BillModel':
        return cls(
            uuid=bill.uuid,
            account_bill_number=bill.account_bill_number,
            currency=CurrencyModel.from_currency(bill.currency),
            user=UserModel.from_user(bill.user)
        )


class BillBalanceModel(BillModel):
    amount_money: str = Field(..., description="Computed available balance")
    
    @classmethod
    def from_bill_balance(cls, bill_balance: BillBalance) -> 'BillBalanceModel':
        base = BillModel.from_bill(bill_balance.bill)
        return cls(amount_money=str(bill_balance.amount_money), **base.model_dump())


class AmountMoneyModel(BaseModel):
    bill: str
    amount_money: str


class TransactionModel(BaseModel):
    uuid: str
    amount_money: str = Field(..., description="Amount in the sender bill's currency")
    recipient_amount_money: str = Field(..., description="Amount credited in the recipient bill's currency")
    transfer_title: str
    authorization_status: bool
    created_at: datetime
    updated_at: datetime
    sender_bill: BillModel
    recipient_bill: BillModel
    
    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionModel':
        return cls(**cls._fields_from(transaction))
    
    @staticmethod
    def _fields_from(transaction: Transaction) -> dict:
        sender_bill = transaction.sender_bill
        recipient_bill = transaction.recipient_bill
        return dict(
            uuid=transaction.uuid,
            amount_money=str(transaction.amount_money),
            recipient_amount_money=str(convert_amount(
                transaction.amount_money, sender_bill.currency, recipient_bill.currency
            )),
            transfer_title=transaction.transfer_title,
            authorization_status=transaction.authorization_status,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
            sender_bill=BillModel.from_bill(sender_bill),
            recipient_bill=BillModel.from_bill(recipient_bill)
        )


class CreatedTransactionModel(TransactionModel):
    authorization_key: str
    
    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'CreatedTransactionModel':
        return cls(authorization_key=transaction.authorization_key, **cls._fields_from(transaction))


class PageMetaModel(BaseModel):
    page: int
    take: int
    item_count: int
    page_count: int
    has_previous_page: bool
    has_next_page: bool
    
    @classmethod
    def from_page_meta(cls, meta: PageMeta) -> 'PageMetaModel':
        return cls(
            page=meta.page,
            take=meta.take,
            item_count=meta.item_count,
            page_count=meta.page_count,
            has_previous_page=meta.has_previous_page,
            has_next_page=meta.has_next_page
        )


class TransactionsPageModel(BaseModel):
    data: List[TransactionModel]
    meta: PageMetaModel
    
    @classmethod
    def from_page(cls, page: Page) -> 'TransactionsPageModel':
        return cls(
            data=[TransactionModel.from_transaction(t) for t in page.items],
            meta=PageMetaModel.from_page_meta(page.meta)
        )


class LanguageModel(BaseModel):
    uuid: str
    name: str
    code: str
    
    @classmethod
    def from_language(cls, language: Language) -> 'LanguageModel':
        return cls(uuid=language.uuid, name=language.name, code=language.code)


# Transaction requests
class CreateTransactionRequest(BaseModel):
    sender_bill: str = Field(..., description="UUID of the sender's bill")
    recipient_bill: str = Field(..., description="UUID of the recipient's bill")
    amount_money: str = Field(..., description="Decimal amount as string")
    transfer_title: str = Field(..., max_length=255)


class ConfirmTransactionRequest(BaseModel):
    authorization_key: str
