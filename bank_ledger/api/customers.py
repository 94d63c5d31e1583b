"""
Customer management endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, Query, status

from .auth import BankingSystem, ensure, get_banking_system, get_current_caller
from .schemas import CreateCustomerRequest, CustomerResponse, MessageResponse, UpdateCustomerRequest
from ..access_policy import CallerIdentity
from ..errors import NotFoundError
from ..pagination import paginate


router = APIRouter()


@router.get("", response_model=List[CustomerResponse])
def list_customers(
    page: int = Query(0),
    size: int = Query(20),
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """List customers ordered by first name"""
    ensure(system.access_policy.is_admin(caller))
    customers = paginate(system.customer_manager.list_customers(), page, size,
                         system.config.max_page_size)
    return [CustomerResponse.from_customer(c) for c in customers]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CustomerResponse)
def create_customer(
    request: CreateCustomerRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a new customer"""
    ensure(system.access_policy.is_admin(caller))
    customer = system.customer_manager.create_customer(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone_number=request.phone_number,
        address=request.address,
        roles=request.roles,
        password=request.password
    )
    return CustomerResponse.from_customer(customer)


@router.get("/email/{email}", response_model=CustomerResponse)
def get_customer_by_email(
    email: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get customer by email address"""
    ensure(system.access_policy.can_access_customer_email(caller, email))
    customer = system.customer_manager.get_customer_by_email(email)
    if not customer:
        raise NotFoundError("Customer", "email", email)
    return CustomerResponse.from_customer(customer)


@router.get("/{customer_id}", response_model=CustomerResponse)
def get_customer(
    customer_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get customer by ID"""
    ensure(system.access_policy.can_access_customer(caller, customer_id))
    customer = system.customer_manager.get_customer(customer_id)
    if not customer:
        raise NotFoundError("Customer", "id", customer_id)
    return CustomerResponse.from_customer(customer)


@router.put("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Update customer information"""
    ensure(system.access_policy.can_access_customer(caller, customer_id))
    roles = request.roles
    if roles and not system.access_policy.is_admin(caller):
        # Only administrators change role grants
        roles = None
    customer = system.customer_manager.update_customer(
        customer_id,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone_number=request.phone_number,
        address=request.address,
        roles=roles
    )
    return CustomerResponse.from_customer(customer)


@router.delete("/{customer_id}", response_model=MessageResponse)
def delete_customer(
    customer_id: str,
    caller: CallerIdentity = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Delete a customer who owns no accounts"""
    ensure(system.access_policy.is_admin(caller))
    system.ledger.delete_customer(customer_id).unwrap()
    return MessageResponse(message="Customer deleted successfully")
