"""
Service container and request dependencies

Authentication is not handled here: the caller is identified by the
``X-User-Id`` header carrying a user uuid.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..balances import BalanceCalculator
from ..bills import BillService
from ..config import get_config
from ..currency import CurrencyService
from ..languages import LanguageService
from ..messages import MessageKeyService
from ..models import User
from ..storage import Database
from ..transactions import TransactionService
from ..users import UserService


class BankingSystem:
    """Billbank system with all services initialized"""
    
    def __init__(self, database_url: Optional[str] = None):
        self.database = Database(database_url)
        
        self.balance_calculator = BalanceCalculator()
        self.user_service = UserService(self.database)
        self.currency_service = CurrencyService(self.database)
        self.bill_service = BillService(self.database, self.balance_calculator)
        self.transaction_service = TransactionService(
            self.database, self.bill_service, self.balance_calculator
        )
        self.language_service = LanguageService(self.database)
        self.message_key_service = MessageKeyService(self.database)
    
    def initialize(self) -> None:
        """Create the schema and seed reference data as configured"""
        config = get_config()
        if config.auto_create_schema:
            self.database.create_all()
        if config.seed_reference_data:
            self.seed_reference_data()
    
    def seed_reference_data(self) -> None:
        self.language_service.set_languages()
        self.message_key_service.set_message_keys()
    
    def close(self) -> None:
        self.database.close()


# Global banking system instance, created on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    system: BankingSystem = Depends(get_banking_system)
) -> User:
    """Resolve the calling user from the X-User-Id header"""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    
    user = system.user_service.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user
