"""
Balance Computation Module

A bill's available balance is never read from storage: it is the signed sum
of every confirmed transaction the bill takes part in, converted into the
bill's currency. The sum is one correlated aggregate subquery so it can be
attached as a column to any query over bills.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import Float, Numeric, case, func, literal, or_, select, true, type_coerce
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import TypeDecorator

from .currency import truncate_money
from .models import Bill, Currency, Transaction


class AggregateAmount(TypeDecorator):
    """
    Unrounded balance sum.
    
    Server databases return an exact Decimal. SQLite computes the sum in
    doubles, which are handed over untouched so no digits are rounded away
    before truncation.
    """
    
    impl = Numeric
    cache_ok = True
    
    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(Float(asdecimal=False))
        return dialect.type_descriptor(Numeric(38, 10))


_AGGREGATE_TYPE = AggregateAmount()


class BalanceCalculator:
    """Builds and evaluates the computed-balance expression"""

    def amount_money_expression(self, bill: Any = Bill) -> ColumnElement:
        """
        Untruncated balance of ``bill`` as a correlated scalar subquery.

        Args:
            bill: The Bill entity, or an alias of it, used by the outer query
        """
        sender_bill = aliased(Bill, name="sender_bill")
        recipient_bill = aliased(Bill, name="recipient_bill")
        sender_currency = aliased(Currency, name="sender_currency")
        recipient_currency = aliased(Currency, name="recipient_currency")

        # Amounts are in the sender's currency; only credits need converting
        factor = case(
            (sender_currency.id == recipient_currency.id, literal(1)),
            (recipient_currency.base == true(), sender_currency.current_exchange_rate),
            else_=sender_currency.current_exchange_rate * recipient_currency.current_exchange_rate,
        )
        signed_amount = case(
            (Transaction.recipient_bill_id == bill.id, factor),
            else_=literal(-1),
        ) * Transaction.amount_money

        subquery = (
            select(func.coalesce(func.sum(signed_amount), 0))
            .select_from(Transaction)
            .join(sender_bill, Transaction.sender_bill_id == sender_bill.id)
            .join(recipient_bill, Transaction.recipient_bill_id == recipient_bill.id)
            .join(sender_currency, sender_bill.currency_id == sender_currency.id)
            .join(recipient_currency, recipient_bill.currency_id == recipient_currency.id)
            .where(
                or_(
                    Transaction.sender_bill_id == bill.id,
                    Transaction.recipient_bill_id == bill.id,
                ),
                Transaction.authorization_status == true(),
            )
            .correlate(bill)
            .scalar_subquery()
        )
        return type_coerce(subquery, _AGGREGATE_TYPE)

    def get_amount_money(self, session: Session, bill_id: int) -> Decimal:
        """Truncated balance of one bill, evaluated inside ``session``"""
        value = session.scalar(
            select(self.amount_money_expression(Bill)).where(Bill.id == bill_id)
        )
        return truncate_money(value)
