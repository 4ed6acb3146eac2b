"""
Bill Management Module

Bills are the users' monetary accounts. Each bill is held in one currency;
its available balance comes from the balance calculator, while the stored
``amount_money`` is only a display snapshot.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Union
import secrets

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from .balances import BalanceCalculator
from .currency import quantize_money, to_decimal, truncate_money
from .exceptions import BillNotFoundError
from .models import Bill, Currency, User
from .storage import Database
from .logging_config import get_logger, log_action


ACCOUNT_BILL_NUMBER_LENGTH = 26


@dataclass
class BillBalance:
    """A bill with its computed available balance"""
    bill: Bill
    amount_money: Decimal


class BillService:
    """Creates bills, resolves them for transfers and reports their balances"""
    
    def __init__(self, database: Database, balance_calculator: Optional[BalanceCalculator] = None):
        self.database = database
        self.balance_calculator = balance_calculator or BalanceCalculator()
        self.logger = get_logger("billbank.bills")
    
    def create_bill(
        self,
        user: User,
        currency_name: str,
        amount_money: Union[Decimal, int, str] = Decimal('0.00')
    ) -> Bill:
        """
        Open a bill for a user
        
        Args:
            user: Owner of the bill
            currency_name: ISO code of an existing currency
            amount_money: Initial display snapshot
            
        Raises:
            ValueError: If the currency does not exist
        """
        with self.database.atomic() as session:
            currency = session.scalar(select(Currency).where(Currency.name == currency_name.upper()))
            if currency is None:
                raise ValueError(f"Currency {currency_name} not found")
            
            bill = Bill(
                account_bill_number=self._generate_account_bill_number(session),
                amount_money=quantize_money(to_decimal(amount_money)),
                user_id=user.id,
                currency=currency
            )
            session.add(bill)
            session.flush()
            # Load the owner so the returned bill is complete outside the session
            bill.user
        
        log_action(
            self.logger, "info", "Bill created",
            user_id=user.uuid, action="create_bill", resource=f"bill:{bill.uuid}",
            extra={"currency": currency.name, "account_bill_number": bill.account_bill_number}
        )
        return bill
    
    def find_bill(
        self,
        bill_uuid: str,
        owner: Optional[User] = None,
        session: Optional[Session] = None
    ) -> Optional[Bill]:
        """
        Resolve a bill, optionally only among the bills of ``owner``
        
        Returns:
            The bill with its user and currency loaded, or None
        """
        statement = (
            select(Bill)
            .options(joinedload(Bill.user), joinedload(Bill.currency))
            .where(Bill.uuid == bill_uuid)
        )
        if owner is not None:
            statement = statement.where(Bill.user_id == owner.id)
        
        with self.database.scope(session) as scoped:
            return scoped.scalar(statement)
    
    def get_bills(self, user: User) -> List[BillBalance]:
        """All bills of a user with their computed balances, in one query"""
        statement = (
            select(Bill, self.balance_calculator.amount_money_expression(Bill))
            .options(joinedload(Bill.currency), joinedload(Bill.user))
            .where(Bill.user_id == user.id)
            .order_by(Bill.id)
        )
        with self.database.atomic() as session:
            rows = session.execute(statement).all()
        return [BillBalance(bill=bill, amount_money=truncate_money(value)) for bill, value in rows]
    
    def get_amount_money(self, bill_uuid: str, owner: User) -> Decimal:
        """
        Computed balance of one of the owner's bills
        
        Raises:
            BillNotFoundError: If the owner has no such bill
        """
        with self.database.atomic() as session:
            bill = self.find_bill(bill_uuid, owner, session=session)
            if bill is None:
                raise BillNotFoundError()
            return self.balance_calculator.get_amount_money(session, bill.id)
    
    def refresh_amount_money(self, bill_uuid: str) -> Decimal:
        """
        Copy the computed balance into the bill's display snapshot
        
        Raises:
            BillNotFoundError: If the bill does not exist
        """
        with self.database.atomic() as session:
            bill = self.find_bill(bill_uuid, session=session)
            if bill is None:
                raise BillNotFoundError()
            amount_money = self.balance_calculator.get_amount_money(session, bill.id)
            bill.amount_money = amount_money
        
        self.logger.debug("Refreshed amount money of bill %s to %s", bill_uuid, amount_money)
        return amount_money
    
    @staticmethod
    def _generate_account_bill_number(session: Session) -> str:
        while True:
            number = "".join(secrets.choice("0123456789") for _ in range(ACCOUNT_BILL_NUMBER_LENGTH))
            exists = session.scalar(select(Bill.id).where(Bill.account_bill_number == number))
            if exists is None:
                return number
