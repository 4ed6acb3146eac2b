"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .auth import BankingSystem, get_banking_system, get_current_user
from .schemas import (
    ConfirmTransactionRequest,
    CreatedTransactionModel,
    CreateTransactionRequest,
    TransactionModel,
    TransactionsPageModel,
)
from ..exceptions import BankingError
from ..models import User
from ..pagination import MAX_TAKE, Order, PageOptions


router = APIRouter()


@router.get("", response_model=TransactionsPageModel)
async def get_transactions(
    page: int = Query(1, ge=1),
    take: int = Query(10, ge=1, le=MAX_TAKE),
    order: Order = Query(Order.DESC),
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """List confirmed transactions of the current user"""
    result = system.transaction_service.get_transactions(
        user, PageOptions(page=page, take=take, order=order)
    )
    return TransactionsPageModel.from_page(result)


@router.get("/{transaction_uuid}", response_model=TransactionModel)
async def get_pending_transaction(
    transaction_uuid: str,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get one of the current user's pending transactions"""
    transaction = system.transaction_service.get_pending_transaction(transaction_uuid, user)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionModel.from_transaction(transaction)


@router.post("/create", response_model=CreatedTransactionModel, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a pending transfer"""
    try:
        transaction = system.transaction_service.create_transaction(
            user,
            sender_bill=request.sender_bill,
            recipient_bill=request.recipient_bill,
            amount_money=request.amount_money,
            transfer_title=request.transfer_title
        )
    except BankingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    return CreatedTransactionModel.from_transaction(transaction)


@router.patch("/confirm")
async def confirm_transaction(
    request: ConfirmTransactionRequest,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Confirm a pending transfer with its authorization key"""
    try:
        affected = system.transaction_service.confirm_transaction(user, request.authorization_key)
    except BankingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return {"affected": affected}
