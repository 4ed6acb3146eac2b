"""
Test suite for the transaction workflow

Creation validates the request and stores a pending transfer under a random
authorization key; confirmation re-checks the computed balance and flips the
transfer to confirmed exactly once.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
import threading

from sqlalchemy.exc import IntegrityError

from billbank.exceptions import (
    AmountNotEnoughError,
    BillNotFoundError,
    CreateFailedError,
    SelfTransferNotAllowedError,
    TransactionNotFoundError,
)
from billbank.pagination import Order, PageOptions
from billbank.storage import generate_uuid
from billbank.transactions import AUTHORIZATION_KEY_ALPHABET, TransactionService


class TestCreateTransaction:
    """Test validation and storage of pending transfers"""
    
    @pytest.fixture(autouse=True)
    def setup(self, bank):
        self.bank = bank
        self.service = bank.system.transaction_service
        bank.fund(bank.alice_usd, "100.00")
    
    def create(self, amount="50", sender=None, recipient=None, user=None):
        return self.service.create_transaction(
            user or self.bank.alice,
            (sender or self.bank.alice_usd).uuid,
            (recipient or self.bank.bob_usd).uuid,
            amount,
            "Rent"
        )
    
    def test_create_pending_transaction(self):
        transaction = self.create("50")
        
        assert transaction.uuid
        assert transaction.authorization_status is False
        assert transaction.is_pending
        assert transaction.amount_money == Decimal("50.00")
        assert transaction.transfer_title == "Rent"
        assert transaction.sender_bill.uuid == self.bank.alice_usd.uuid
        assert transaction.recipient_bill.uuid == self.bank.bob_usd.uuid
    
    def test_authorization_key_format(self):
        transaction = self.create("1")
        
        assert len(transaction.authorization_key) == 5
        assert all(c in AUTHORIZATION_KEY_ALPHABET for c in transaction.authorization_key)
    
    def test_configured_authorization_key_length(self):
        service = TransactionService(
            self.bank.system.database,
            self.bank.system.bill_service,
            authorization_key_length=12
        )
        transaction = service.create_transaction(
            self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "1", "Long key"
        )
        
        assert len(transaction.authorization_key) == 12
    
    def test_unknown_recipient_bill(self):
        with pytest.raises(BillNotFoundError):
            self.service.create_transaction(
                self.bank.alice, self.bank.alice_usd.uuid, generate_uuid(), "10", "Nowhere"
            )
    
    def test_unknown_sender_bill(self):
        with pytest.raises(BillNotFoundError):
            self.service.create_transaction(
                self.bank.alice, generate_uuid(), self.bank.bob_usd.uuid, "10", "Nowhere"
            )
    
    def test_sender_bill_of_another_user(self):
        with pytest.raises(BillNotFoundError):
            self.create("10", user=self.bank.bob)
    
    def test_self_transfer_rejected(self):
        with pytest.raises(SelfTransferNotAllowedError):
            self.create("10", recipient=self.bank.alice_usd)
    
    def test_transfer_between_own_bills_allowed(self):
        transaction = self.create("10", recipient=self.bank.alice_pln)
        
        assert transaction.recipient_bill.uuid == self.bank.alice_pln.uuid
    
    @pytest.mark.parametrize("amount", ["0", "-5", "0.001"])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(AmountNotEnoughError):
            self.create(amount)
    
    def test_amount_above_balance_rejected(self):
        with pytest.raises(AmountNotEnoughError):
            self.create("100.01")
    
    def test_whole_balance_allowed(self):
        transaction = self.create("100.00")
        
        assert transaction.amount_money == Decimal("100.00")
    
    def test_amount_is_rounded_to_cents(self):
        transaction = self.create("10.005")
        
        assert transaction.amount_money == Decimal("10.01")
    
    def test_unparseable_amount(self):
        with pytest.raises(ValueError):
            self.create("ten")
    
    def test_bills_are_checked_before_the_amount(self):
        with pytest.raises(BillNotFoundError):
            self.service.create_transaction(
                self.bank.alice, self.bank.alice_usd.uuid, generate_uuid(), "ten", "Nowhere"
            )
        with pytest.raises(SelfTransferNotAllowedError):
            self.create("ten", recipient=self.bank.alice_usd)
    
    def test_missing_title_fails_storage(self):
        with pytest.raises(CreateFailedError) as exc_info:
            self.service.create_transaction(
                self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "10", None
            )
        
        assert isinstance(exc_info.value.cause, IntegrityError)
        assert self.service.get_transactions(self.bank.alice, PageOptions()).meta.item_count == 1
    
    def test_pending_transactions_do_not_reserve_balance(self):
        self.create("60")
        second = self.create("60")
        
        assert second.is_pending
    
    def test_snapshot_balance_check(self):
        service = TransactionService(
            self.bank.system.database,
            self.bank.system.bill_service,
            creation_balance_check="snapshot"
        )
        
        with pytest.raises(AmountNotEnoughError):
            service.create_transaction(
                self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "10", "Stale"
            )
        
        self.bank.system.bill_service.refresh_amount_money(self.bank.alice_usd.uuid)
        transaction = service.create_transaction(
            self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "10", "Fresh"
        )
        assert transaction.is_pending
    
    def test_unknown_balance_check_mode(self):
        with pytest.raises(ValueError):
            TransactionService(
                self.bank.system.database,
                self.bank.system.bill_service,
                creation_balance_check="optimistic"
            )


class TestAuthorizationKeys:
    """Test key collisions against pending transactions"""
    
    @pytest.fixture(autouse=True)
    def setup(self, bank, monkeypatch):
        self.bank = bank
        self.service = bank.system.transaction_service
        self.monkeypatch = monkeypatch
        bank.fund(bank.alice_usd, "100.00")
    
    def use_keys(self, *keys):
        generated = iter(keys)
        self.monkeypatch.setattr(self.service, "_generate_authorization_key", lambda: next(generated))
    
    def create(self):
        return self.service.create_transaction(
            self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "10", "Keyed"
        )
    
    def test_collision_is_retried_with_new_key(self):
        self.use_keys("AAAAA", "AAAAA", "BBBBB")
        
        first = self.create()
        second = self.create()
        
        assert first.authorization_key == "AAAAA"
        assert second.authorization_key == "BBBBB"
        assert self.service.get_pending_transaction(second.uuid, self.bank.alice) is not None
    
    def test_exhausted_retries(self):
        self.use_keys(*["AAAAA"] * 10)
        self.create()
        
        with pytest.raises(CreateFailedError) as exc_info:
            self.create()
        
        assert isinstance(exc_info.value.cause, IntegrityError)
    
    def test_key_reusable_after_confirmation(self):
        self.use_keys("AAAAA", "AAAAA")
        first = self.create()
        self.service.confirm_transaction(self.bank.alice, "AAAAA")
        
        second = self.create()
        
        assert second.authorization_key == "AAAAA"
        assert second.uuid != first.uuid
        assert self.service.confirm_transaction(self.bank.alice, "AAAAA") == 1


class TestConfirmTransaction:
    """Test confirmation of pending transfers"""
    
    @pytest.fixture(autouse=True)
    def setup(self, bank):
        self.bank = bank
        self.service = bank.system.transaction_service
        self.bills = bank.system.bill_service
        bank.fund(bank.alice_usd, "100.00")
    
    def create(self, amount, recipient=None):
        return self.service.create_transaction(
            self.bank.alice,
            self.bank.alice_usd.uuid,
            (recipient or self.bank.bob_usd).uuid,
            amount,
            "Transfer"
        )
    
    def test_create_then_confirm(self):
        transaction = self.create("50")
        
        affected = self.service.confirm_transaction(self.bank.alice, transaction.authorization_key)
        
        assert affected == 1
        assert self.bills.get_amount_money(self.bank.alice_usd.uuid, self.bank.alice) == Decimal("50.00")
        assert self.bills.get_amount_money(self.bank.bob_usd.uuid, self.bank.bob) == Decimal("50.00")
    
    def test_confirmed_transfer_is_converted_for_recipient(self):
        transaction = self.create("40", recipient=self.bank.bob_pln)
        self.service.confirm_transaction(self.bank.alice, transaction.authorization_key)
        
        assert self.bills.get_amount_money(self.bank.bob_pln.uuid, self.bank.bob) == Decimal("160.00")
        assert self.bills.get_amount_money(self.bank.alice_usd.uuid, self.bank.alice) == Decimal("60.00")
    
    def test_unknown_key(self):
        with pytest.raises(TransactionNotFoundError):
            self.service.confirm_transaction(self.bank.alice, "ZZZZZ")
    
    def test_confirm_twice(self):
        transaction = self.create("10")
        self.service.confirm_transaction(self.bank.alice, transaction.authorization_key)
        
        with pytest.raises(TransactionNotFoundError):
            self.service.confirm_transaction(self.bank.alice, transaction.authorization_key)
    
    def test_only_sender_can_confirm(self):
        transaction = self.create("10")
        
        with pytest.raises(TransactionNotFoundError):
            self.service.confirm_transaction(self.bank.bob, transaction.authorization_key)
        
        assert self.service.confirm_transaction(self.bank.alice, transaction.authorization_key) == 1
    
    def test_balance_rechecked_on_confirm(self):
        first = self.create("60")
        second = self.create("60")
        
        self.service.confirm_transaction(self.bank.alice, first.authorization_key)
        
        with pytest.raises(AmountNotEnoughError):
            self.service.confirm_transaction(self.bank.alice, second.authorization_key)
        
        assert self.service.get_pending_transaction(second.uuid, self.bank.alice) is not None
        assert self.bills.get_amount_money(self.bank.alice_usd.uuid, self.bank.alice) == Decimal("40.00")


class TestConcurrentConfirmation:
    """Test confirmations of one bill racing on separate connections"""
    
    @pytest.fixture(autouse=True)
    def setup(self, file_bank):
        self.bank = file_bank
        self.service = file_bank.system.transaction_service
        file_bank.fund(file_bank.alice_usd, "100.00")
    
    def test_only_one_of_two_overdrawing_confirmations_succeeds(self):
        keys = [
            self.service.create_transaction(
                self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "80.00", "Race"
            ).authorization_key
            for _ in range(2)
        ]
        barrier = threading.Barrier(len(keys))
        
        def confirm(key):
            barrier.wait()
            try:
                return self.service.confirm_transaction(self.bank.alice, key)
            except AmountNotEnoughError as e:
                return e
        
        with ThreadPoolExecutor(max_workers=len(keys)) as executor:
            results = list(executor.map(confirm, keys))
        
        assert results.count(1) == 1
        assert sum(isinstance(result, AmountNotEnoughError) for result in results) == 1
        
        balance = self.bank.system.bill_service.get_amount_money(self.bank.alice_usd.uuid, self.bank.alice)
        assert balance == Decimal("20.00")
        assert self.bank.system.bill_service.get_amount_money(self.bank.bob_usd.uuid, self.bank.bob) == Decimal("80.00")


class TestPendingTransaction:
    """Test visibility of pending transfers"""
    
    @pytest.fixture(autouse=True)
    def setup(self, bank):
        self.bank = bank
        self.service = bank.system.transaction_service
        bank.fund(bank.alice_usd, "100.00")
        self.transaction = self.service.create_transaction(
            bank.alice, bank.alice_usd.uuid, bank.bob_pln.uuid, "25", "Dinner"
        )
    
    def test_visible_to_sender(self):
        pending = self.service.get_pending_transaction(self.transaction.uuid, self.bank.alice)
        
        assert pending is not None
        assert pending.uuid == self.transaction.uuid
        assert pending.sender_bill.user.email == "alice@billbank.test"
        assert pending.recipient_bill.currency.name == "PLN"
    
    def test_hidden_from_recipient(self):
        assert self.service.get_pending_transaction(self.transaction.uuid, self.bank.bob) is None
    
    def test_unknown_uuid(self):
        assert self.service.get_pending_transaction(generate_uuid(), self.bank.alice) is None
    
    def test_gone_after_confirmation(self):
        self.service.confirm_transaction(self.bank.alice, self.transaction.authorization_key)
        
        assert self.service.get_pending_transaction(self.transaction.uuid, self.bank.alice) is None


class TestGetTransactions:
    """Test listing of confirmed transfers"""
    
    @pytest.fixture(autouse=True)
    def setup(self, bank):
        self.bank = bank
        self.service = bank.system.transaction_service
        self.funding = bank.fund(bank.alice_usd, "100.00", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.to_bob = bank.transfer(
            bank.alice_usd, bank.bob_pln, "40.00", updated_at=datetime(2024, 1, 2, tzinfo=timezone.utc)
        )
        self.from_bob = bank.transfer(
            bank.bob_pln, bank.alice_pln, "10.00", updated_at=datetime(2024, 1, 3, tzinfo=timezone.utc)
        )
        self.unrelated = bank.fund(bank.bob_usd, "5.00", updated_at=datetime(2024, 1, 4, tzinfo=timezone.utc))
    
    def uuids(self, page):
        return [transaction.uuid for transaction in page.items]
    
    def test_newest_first(self):
        page = self.service.get_transactions(self.bank.alice, PageOptions())
        
        assert self.uuids(page) == [self.from_bob.uuid, self.to_bob.uuid, self.funding.uuid]
    
    def test_oldest_first(self):
        page = self.service.get_transactions(self.bank.alice, PageOptions(order=Order.ASC))
        
        assert self.uuids(page) == [self.funding.uuid, self.to_bob.uuid, self.from_bob.uuid]
    
    def test_both_sides_are_listed(self):
        page = self.service.get_transactions(self.bank.bob, PageOptions())
        
        assert self.uuids(page) == [self.unrelated.uuid, self.from_bob.uuid, self.to_bob.uuid]
    
    def test_pending_not_listed(self):
        self.service.create_transaction(
            self.bank.alice, self.bank.alice_usd.uuid, self.bank.bob_usd.uuid, "1", "Pending"
        )
        
        page = self.service.get_transactions(self.bank.alice, PageOptions())
        
        assert page.meta.item_count == 3
    
    def test_paging_meta(self):
        page = self.service.get_transactions(self.bank.alice, PageOptions(page=2, take=2))
        
        assert self.uuids(page) == [self.funding.uuid]
        assert page.meta.page == 2
        assert page.meta.take == 2
        assert page.meta.item_count == 3
        assert page.meta.page_count == 2
        assert page.meta.has_previous_page is True
        assert page.meta.has_next_page is False
    
    def test_counterparties_loaded(self):
        page = self.service.get_transactions(self.bank.alice, PageOptions(take=1))
        transaction = page.items[0]
        
        assert transaction.sender_bill.user.first_name == "Bob"
        assert transaction.sender_bill.currency.name == "PLN"
        assert transaction.recipient_bill.user.first_name == "Alice"
        assert transaction.recipient_bill.currency.name == "PLN"
    
    def test_user_without_transactions(self):
        stranger = self.bank.system.user_service.create_user("Carol", "Lis", "carol@billbank.test")
        
        page = self.service.get_transactions(stranger, PageOptions())
        
        assert page.items == []
        assert page.meta.item_count == 0
        assert page.meta.page_count == 0
