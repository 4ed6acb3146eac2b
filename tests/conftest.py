"""
Shared fixtures: an in-memory billbank with currencies, users and bills.

PLN is the base currency, USD is worth 4 PLN and EUR 4.5 PLN. Money enters
the system from treasury bills, whose balances are allowed to go negative.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from billbank.api.auth import BankingSystem
from billbank.models import Bill, Transaction, User


@dataclass
class Bank:
    system: BankingSystem
    treasury: User
    alice: User
    bob: User
    treasury_pln: Bill
    treasury_usd: Bill
    treasury_eur: Bill
    alice_usd: Bill
    alice_pln: Bill
    bob_pln: Bill
    bob_usd: Bill
    
    def treasury_bill_for(self, bill: Bill) -> Bill:
        return {
            "PLN": self.treasury_pln,
            "USD": self.treasury_usd,
            "EUR": self.treasury_eur,
        }[bill.currency.name]
    
    def fund(self, bill: Bill, amount: str, updated_at: Optional[datetime] = None) -> Transaction:
        """Store a confirmed transfer from the treasury bill of the same currency"""
        return self.transfer(self.treasury_bill_for(bill), bill, amount, updated_at=updated_at)
    
    def transfer(self, sender: Bill, recipient: Bill, amount: str,
                 updated_at: Optional[datetime] = None) -> Transaction:
        """Store a confirmed transfer directly, bypassing the workflow"""
        values = dict(
            sender_bill_id=sender.id,
            recipient_bill_id=recipient.id,
            amount_money=Decimal(amount),
            transfer_title="Funding",
            authorization_key="FUNDS",
            authorization_status=True
        )
        if updated_at is not None:
            values["updated_at"] = updated_at
        with self.system.database.atomic() as session:
            transaction = Transaction(**values)
            session.add(transaction)
        return transaction


@pytest.fixture
def system():
    banking_system = BankingSystem("sqlite://")
    banking_system.database.create_all()
    yield banking_system
    banking_system.close()


def open_bank(system: BankingSystem) -> Bank:
    """Currencies, users and bills on top of an empty schema"""
    currencies = system.currency_service
    currencies.create_currency("PLN", base=True)
    currencies.create_currency("USD", "4")
    currencies.create_currency("EUR", "4.5")
    
    users = system.user_service
    treasury = users.create_user("Central", "Treasury", "treasury@billbank.test")
    alice = users.create_user("Alice", "Nowak", "alice@billbank.test")
    bob = users.create_user("Bob", "Kowalski", "bob@billbank.test")
    
    bills = system.bill_service
    return Bank(
        system=system,
        treasury=treasury,
        alice=alice,
        bob=bob,
        treasury_pln=bills.create_bill(treasury, "PLN"),
        treasury_usd=bills.create_bill(treasury, "USD"),
        treasury_eur=bills.create_bill(treasury, "EUR"),
        alice_usd=bills.create_bill(alice, "USD"),
        alice_pln=bills.create_bill(alice, "PLN"),
        bob_pln=bills.create_bill(bob, "PLN"),
        bob_usd=bills.create_bill(bob, "USD"),
    )


@pytest.fixture
def bank(system):
    return open_bank(system)


@pytest.fixture
def file_bank(tmp_path):
    """Bank on a database file, so concurrent sessions use separate connections"""
    banking_system = BankingSystem(f"sqlite:///{tmp_path / 'billbank.db'}")
    banking_system.database.create_all()
    yield open_bank(banking_system)
    banking_system.close()
