"""
Transaction endpoints
"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from .auth import BankingSystem, ensure, get_banking_system, get_current_caller
from .schemas import DepositRequest, TransactionResponse, TransferRequest, WithdrawRequest
from ..access_policy import CallerIdentity
from ..transactions import Transaction


router = APIRouter()


def _to_response(system: BankingSystem, transaction: Transaction) -> TransactionResponse:
    return TransactionResponse.from_summary(system.queries.summarize(transaction))


def _to_responses(system: BankingSystem, transactions: List[Transaction]) -> List[TransactionResponse]:
    return [_to_response(system, t) for t in transactions]


@router.post("/deposit", status_code=status.HTTP_201_CREATED, response_model=TransactionResponse)
def deposit(
    request: DepositRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a deposit"""
    ensure(system.access_policy.can_access_account_by_number(caller, request.account_number))
    transaction = system.ledger.deposit(
        request.account_number, request.amount, request.description
    ).unwrap()
    return _to_response(system, transaction)


@router.post("/withdraw", status_code=status.HTTP_201_CREATED, response_model=TransactionResponse)
def withdraw(
    request: WithdrawRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a withdrawal"""
    ensure(system.access_policy.can_access_account_by_number(caller, request.account_number))
    transaction = system.ledger.withdraw(
        request.account_number, request.amount, request.description
    ).unwrap()
    return _to_response(system, transaction)


@router.post("/transfer", status_code=status.HTTP_201_CREATED, response_model=TransactionResponse)
def transfer(
    request: TransferRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a transfer between accounts"""
    ensure(system.access_policy.can_access_account_by_number(caller, request.source_account_number))
    transaction = system.ledger.transfer(
        request.source_account_number, request.target_account_number,
        request.amount, request.description
    ).unwrap()
    return _to_response(system, transaction)


@router.get("", response_model=List[TransactionResponse])
def list_transactions(
    page: int = Query(0),
    size: Optional[int] = Query(None),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """List all transactions, newest first"""
    ensure(system.access_policy.is_admin(caller))
    return _to_responses(system, system.queries.list_all(page, size).unwrap())


@router.get("/account/{account_number}", response_model=List[TransactionResponse])
def get_account_transactions(
    account_number: str,
    page: int = Query(0),
    size: Optional[int] = Query(None),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history for an account"""
    ensure(system.access_policy.can_access_account_by_number(caller, account_number))
    result = system.queries.list_for_account(account_number, page=page, size=size)
    return _to_responses(system, result.unwrap())


@router.get("/account/{account_number}/date-range", response_model=List[TransactionResponse])
def get_account_transactions_between(
    account_number: str,
    start: datetime = Query(..., alias="startDate"),
    end: datetime = Query(..., alias="endDate"),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Account transactions within an inclusive date range"""
    ensure(system.access_policy.can_access_account_by_number(caller, account_number))
    result = system.queries.list_for_account_between(start, end, account_number=account_number)
    return _to_responses(system, result.unwrap())


@router.get("/account/{account_number}/type/{transaction_type}",
            response_model=List[TransactionResponse])
def get_account_transactions_by_type(
    account_number: str,
    transaction_type: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Account transactions of one type"""
    ensure(system.access_policy.can_access_account_by_number(caller, account_number))
    result = system.queries.list_for_account_by_type(transaction_type, account_number=account_number)
    return _to_responses(system, result.unwrap())


@router.get("/customer/{customer_id}", response_model=List[TransactionResponse])
def get_customer_transactions(
    customer_id: str,
    page: int = Query(0),
    size: Optional[int] = Query(None),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transactions across all accounts of a customer"""
    ensure(system.access_policy.can_access_customer(caller, customer_id))
    return _to_responses(system, system.queries.list_for_customer(customer_id, page, size).unwrap())


@router.get("/customer/{customer_id}/date-range", response_model=List[TransactionResponse])
def get_customer_transactions_between(
    customer_id: str,
    start: datetime = Query(..., alias="startDate"),
    end: datetime = Query(..., alias="endDate"),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Customer transactions within an inclusive date range"""
    ensure(system.access_policy.can_access_customer(caller, customer_id))
    result = system.queries.list_for_customer_between(customer_id, start, end)
    return _to_responses(system, result.unwrap())


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get transaction by ID"""
    ensure(system.access_policy.can_access_transaction(caller, transaction_id))
    return _to_response(system, system.queries.get_transaction(transaction_id).unwrap())
