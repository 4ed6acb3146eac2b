"""
Domain Exceptions Module

Errors raised by the transfer workflow. Every error is user-facing and
recoverable by retrying with different input; the HTTP layer maps them to
status codes through ``status_code``.
"""

from typing import Optional


class BankingError(Exception):
    """Base class for billbank domain errors"""
    
    status_code = 400
    code = "banking_error"
    default_message = "Banking operation failed"
    
    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BillNotFoundError(BankingError):
    status_code = 404
    code = "bill_not_found"
    default_message = "Bill not found"


class SelfTransferNotAllowedError(BankingError):
    code = "self_transfer_not_allowed"
    default_message = "Cannot transfer money to the same bill"


class AmountNotEnoughError(BankingError):
    """Non-positive amount or insufficient available balance"""
    code = "amount_not_enough"
    default_message = "Amount of money is not enough"


class TransactionNotFoundError(BankingError):
    status_code = 404
    code = "transaction_not_found"
    default_message = "Transaction not found"


class CreateFailedError(BankingError):
    """Persistence failure while creating a record; keeps the original error"""
    code = "create_failed"
    default_message = "Create failed"
    
    def __init__(self, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.cause = cause
        if message is None and cause is not None:
            message = f"{self.default_message}: {cause}"
        super().__init__(message)
