"""
Bill endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from .auth import BankingSystem, get_banking_system, get_current_user
from .schemas import AmountMoneyModel, BillBalanceModel
from ..exceptions import BankingError
from ..models import User


router = APIRouter()


@router.get("", response_model=List[BillBalanceModel])
async def get_bills(
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the current user's bills with computed balances"""
    return [BillBalanceModel.from_bill_balance(b) for b in system.bill_service.get_bills(user)]


@router.get("/{bill_uuid}/amount-money", response_model=AmountMoneyModel)
async def get_amount_money(
    bill_uuid: str,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Computed available balance of one bill"""
    try:
        amount_money = system.bill_service.get_amount_money(bill_uuid, user)
    except BankingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return AmountMoneyModel(bill=bill_uuid, amount_money=str(amount_money))
