"""
Account management endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from .auth import BankingSystem, ensure, get_banking_system, get_current_caller
from .schemas import AccountResponse, CreateAccountRequest, MessageResponse, UpdateAccountRequest
from ..access_policy import CallerIdentity
from ..accounts import Account


router = APIRouter()


def _to_response(system: BankingSystem, account: Account) -> AccountResponse:
    customer = system.customer_manager.get_customer(account.customer_id)
    return AccountResponse.from_account(account, customer.full_name if customer else None)


@router.get("", response_model=List[AccountResponse])
def list_accounts(
    page: int = Query(0),
    size: Optional[int] = Query(None),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """List all accounts"""
    ensure(system.access_policy.is_admin(caller))
    accounts = system.ledger.list_accounts(
        page, system.config.default_page_size if size is None else size
    ).unwrap()
    return [_to_response(system, a) for a in accounts]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def create_account(
    request: CreateAccountRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a new account for a customer"""
    ensure(system.access_policy.can_access_customer(caller, request.customer_id))
    initial_balance = request.initial_balance if request.initial_balance is not None else "0"
    account = system.ledger.create_account(
        request.customer_id, request.account_type, initial_balance
    ).unwrap()
    return _to_response(system, account)


@router.get("/number/{account_number}", response_model=AccountResponse)
def get_account_by_number(
    account_number: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account by account number"""
    ensure(system.access_policy.can_access_account_by_number(caller, account_number))
    return _to_response(system, system.ledger.get_account_by_number(account_number).unwrap())


@router.get("/customer/{customer_id}", response_model=List[AccountResponse])
def get_customer_accounts(
    customer_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get all accounts of a customer"""
    ensure(system.access_policy.can_access_customer(caller, customer_id))
    accounts = system.ledger.list_customer_accounts(customer_id).unwrap()
    return [_to_response(system, a) for a in accounts]


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    ensure(system.access_policy.can_access_account(caller, account_id))
    return _to_response(system, system.ledger.get_account(account_id).unwrap())


@router.put("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Change account number or type"""
    ensure(system.access_policy.is_admin(caller))
    account = system.ledger.update_account(
        account_id, account_number=request.account_number, account_type=request.account_type
    ).unwrap()
    return _to_response(system, account)


@router.delete("/{account_id}", response_model=MessageResponse)
def delete_account(
    account_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Delete an account with zero balance"""
    ensure(system.access_policy.is_admin(caller))
    system.ledger.delete_account(account_id).unwrap()
    return MessageResponse(message="Account deleted successfully")
