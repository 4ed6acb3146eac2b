"""
Transaction Processing Module

Transfers between bills run in two phases. ``create_transaction`` validates
the request and stores a pending transaction guarded by a random
authorization key; ``confirm_transaction`` takes that key back from the
sender, re-checks the computed balance and confirms the transfer. Only
confirmed transactions count towards balances.
"""

from decimal import Decimal
from typing import Optional, Union
import secrets
import string

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, joinedload
from sqlalchemy.orm.attributes import set_committed_value

from .balances import BalanceCalculator
from .bills import BillService
from .config import get_config
from .currency import quantize_money, to_decimal
from .exceptions import (
    AmountNotEnoughError,
    BillNotFoundError,
    CreateFailedError,
    SelfTransferNotAllowedError,
    TransactionNotFoundError,
)
from .models import Bill, Transaction, User
from .pagination import Order, Page, PageMeta, PageOptions, paginate
from .storage import Database, utcnow
from .logging_config import get_logger, log_action


AUTHORIZATION_KEY_ALPHABET = string.ascii_letters + string.digits

BALANCE_CHECK_COMPUTED = "computed"
BALANCE_CHECK_SNAPSHOT = "snapshot"

# Both counterparties with their owners and currencies
_COUNTERPARTY_OPTIONS = (
    joinedload(Transaction.sender_bill).joinedload(Bill.user),
    joinedload(Transaction.sender_bill).joinedload(Bill.currency),
    joinedload(Transaction.recipient_bill).joinedload(Bill.user),
    joinedload(Transaction.recipient_bill).joinedload(Bill.currency),
)


class TransactionService:
    """
    Creates, confirms and lists transfers between bills
    """

    def __init__(
        self,
        database: Database,
        bill_service: BillService,
        balance_calculator: Optional[BalanceCalculator] = None,
        authorization_key_length: Optional[int] = None,
        authorization_key_max_attempts: Optional[int] = None,
        creation_balance_check: Optional[str] = None
    ):
        config = get_config()
        self.database = database
        self.bill_service = bill_service
        self.balance_calculator = balance_calculator or BalanceCalculator()
        self.authorization_key_length = authorization_key_length or config.authorization_key_length
        self.authorization_key_max_attempts = (
            authorization_key_max_attempts or config.authorization_key_max_attempts
        )
        self.creation_balance_check = creation_balance_check or config.creation_balance_check
        if self.creation_balance_check not in (BALANCE_CHECK_COMPUTED, BALANCE_CHECK_SNAPSHOT):
            raise ValueError(f"Unknown creation balance check: {self.creation_balance_check}")
        self.logger = get_logger("billbank.transactions")

    def get_transactions(self, user: User, page_options: PageOptions) -> Page[Transaction]:
        """
        Confirmed transactions the user sent or received, most recent first

        Args:
            user: User on either side of the transfer
            page_options: Requested page

        Returns:
            Page of transactions with both counterparties' users and
            currencies loaded, plus the total count
        """
        sender_bill = aliased(Bill)
        recipient_bill = aliased(Bill)

        if page_options.order == Order.DESC:
            ordering = (Transaction.updated_at.desc(), Transaction.id.desc())
        else:
            ordering = (Transaction.updated_at.asc(), Transaction.id.asc())

        statement = (
            select(Transaction)
            .join(sender_bill, Transaction.sender_bill_id == sender_bill.id)
            .join(recipient_bill, Transaction.recipient_bill_id == recipient_bill.id)
            .where(
                or_(sender_bill.user_id == user.id, recipient_bill.user_id == user.id),
                Transaction.authorization_status.is_(True)
            )
            .order_by(*ordering)
        )

        with self.database.atomic() as session:
            transactions, total_count = paginate(
                session, statement, page_options, loader_options=_COUNTERPARTY_OPTIONS
            )

        return Page(items=transactions, meta=PageMeta.build(page_options, total_count))

    def get_pending_transaction(self, transaction_uuid: str, user: User) -> Optional[Transaction]:
        """Pending transaction by uuid, visible only to its sender"""
        statement = (
            select(Transaction)
            .join(Transaction.sender_bill)
            .options(*_COUNTERPARTY_OPTIONS)
            .where(
                Transaction.uuid == transaction_uuid,
                Bill.user_id == user.id,
                Transaction.authorization_status.is_(False)
            )
            .order_by(Transaction.id.desc())
        )
        with self.database.atomic() as session:
            return session.scalars(statement).first()

    def create_transaction(
        self,
        user: User,
        sender_bill: str,
        recipient_bill: str,
        amount_money: Union[Decimal, int, str],
        transfer_title: str
    ) -> Transaction:
        """
        Create a pending transfer

        Args:
            user: Sender; must own the sender bill
            sender_bill: UUID of the bill to debit
            recipient_bill: UUID of the bill to credit
            amount_money: Amount in the sender bill's currency
            transfer_title: Free-text title

        Returns:
            Pending Transaction carrying its authorization key

        Raises:
            BillNotFoundError: Either bill is missing or the sender bill is not the user's
            SelfTransferNotAllowedError: Both sides are the same bill
            AmountNotEnoughError: Non-positive amount or insufficient balance
            CreateFailedError: The transaction could not be stored
            ValueError: The amount is not a number
        """
        with self.database.atomic() as session:
            recipient = self.bill_service.find_bill(recipient_bill, session=session)
            sender = self.bill_service.find_bill(sender_bill, user, session=session)

            if recipient is None or sender is None:
                self._reject(user, "create_transaction", "bill not found",
                             sender_bill=sender_bill, recipient_bill=recipient_bill)
                raise BillNotFoundError()

            if sender.id == recipient.id:
                self._reject(user, "create_transaction", "self transfer", sender_bill=sender_bill)
                raise SelfTransferNotAllowedError()

            amount = quantize_money(to_decimal(amount_money))
            if amount <= 0:
                self._reject(user, "create_transaction", "non-positive amount", amount=str(amount))
                raise AmountNotEnoughError()

            available = self._creation_balance(session, sender)
            if amount > available:
                self._reject(user, "create_transaction", "insufficient balance",
                             amount=str(amount), available=str(available))
                raise AmountNotEnoughError()

            transaction = self._save_pending_transaction(
                session, sender, recipient, amount, transfer_title
            )

        log_action(
            self.logger, "info", "Transaction created",
            user_id=user.uuid, action="create_transaction",
            resource=f"transaction:{transaction.uuid}",
            extra={
                "sender_bill": sender.uuid,
                "recipient_bill": recipient.uuid,
                "amount_money": str(amount),
                "currency": sender.currency.name
            }
        )
        return transaction

    def confirm_transaction(self, user: User, authorization_key: str) -> int:
        """
        Confirm a pending transfer with its authorization key

        The pending transaction and its sender bill stay locked from lookup to
        update, so concurrent confirmations against one bill are serialized
        and each sees the balance left by the previous one.

        Returns:
            Number of confirmed rows (always 1)

        Raises:
            TransactionNotFoundError: No pending transaction of this user has the key
            AmountNotEnoughError: The computed balance no longer covers the amount
        """
        with self.database.atomic() as session:
            transaction = self._find_transaction_by_authorization_key(session, authorization_key, user)
            if transaction is None:
                self._reject(user, "confirm_transaction", "unknown authorization key")
                raise TransactionNotFoundError()

            available = self.balance_calculator.get_amount_money(session, transaction.sender_bill_id)
            if available < transaction.amount_money:
                self._reject(user, "confirm_transaction", "insufficient balance",
                             transaction=transaction.uuid,
                             amount=str(transaction.amount_money), available=str(available))
                raise AmountNotEnoughError()

            affected = self._update_transaction_authorization_status(session, transaction)
            if affected == 0:
                # Confirmed by someone else between lookup and update
                raise TransactionNotFoundError()

        log_action(
            self.logger, "info", "Transaction confirmed",
            user_id=user.uuid, action="confirm_transaction",
            resource=f"transaction:{transaction.uuid}",
            extra={"amount_money": str(transaction.amount_money), "available_before": str(available)}
        )
        return affected

    def _creation_balance(self, session: Session, sender: Bill) -> Decimal:
        if self.creation_balance_check == BALANCE_CHECK_SNAPSHOT:
            return sender.amount_money
        return self.balance_calculator.get_amount_money(session, sender.id)

    def _save_pending_transaction(
        self,
        session: Session,
        sender: Bill,
        recipient: Bill,
        amount: Decimal,
        transfer_title: str
    ) -> Transaction:
        """Insert with a fresh key, retrying while keys collide"""
        for attempt in range(1, self.authorization_key_max_attempts + 1):
            transaction = Transaction(
                sender_bill_id=sender.id,
                recipient_bill_id=recipient.id,
                amount_money=amount,
                transfer_title=transfer_title,
                authorization_key=self._generate_authorization_key(),
                authorization_status=False
            )
            try:
                with session.begin_nested():
                    session.add(transaction)
                    session.flush()
                # Identity map lookups, the bills are already in this session
                transaction.sender_bill
                transaction.recipient_bill
                return transaction
            except IntegrityError as e:
                if self._is_authorization_key_conflict(e) and attempt < self.authorization_key_max_attempts:
                    self.logger.warning("Authorization key collision, retrying (attempt %d)", attempt)
                    continue
                raise CreateFailedError(e) from e
            except SQLAlchemyError as e:
                raise CreateFailedError(e) from e

        raise CreateFailedError(message="Could not generate a unique authorization key")

    def _update_transaction_authorization_status(self, session: Session, transaction: Transaction) -> int:
        confirmed_at = utcnow()
        result = session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.authorization_status.is_(False)
            )
            .values(authorization_status=True, updated_at=confirmed_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            set_committed_value(transaction, "authorization_status", True)
            set_committed_value(transaction, "updated_at", confirmed_at)
        return result.rowcount

    def _find_transaction_by_authorization_key(
        self,
        session: Session,
        authorization_key: str,
        user: User
    ) -> Optional[Transaction]:
        """Pending transaction sent from one of the user's bills, row-locked"""
        statement = (
            select(Transaction)
            .join(Transaction.sender_bill)
            .where(
                Transaction.authorization_key == authorization_key,
                Bill.user_id == user.id,
                Transaction.authorization_status.is_(False)
            )
            .order_by(Transaction.id.desc())
            .limit(1)
            .with_for_update()
        )
        return session.scalars(statement).first()

    def _generate_authorization_key(self) -> str:
        return "".join(
            secrets.choice(AUTHORIZATION_KEY_ALPHABET) for _ in range(self.authorization_key_length)
        )

    @staticmethod
    def _is_authorization_key_conflict(error: IntegrityError) -> bool:
        return "authorization_key" in str(error.orig)

    def _reject(self, user: User, action: str, reason: str, **details) -> None:
        log_action(
            self.logger, "warning", f"Rejected {action}: {reason}",
            user_id=user.uuid, action=action, extra=details or None
        )
