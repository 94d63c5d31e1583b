"""
Pydantic schemas for API requests and responses

Amounts travel as decimal strings in both directions.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..customers import Customer
from ..money import format_amount
from ..queries import TransactionSummary


# Customer schemas
class CreateCustomerRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    roles: Optional[List[str]] = Field(None, description="Requested roles (USER, ADMIN)")
    password: Optional[str] = None


class UpdateCustomerRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    roles: Optional[List[str]] = None


class CustomerResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    roles: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_customer(cls, customer: Customer) -> 'CustomerResponse':
        return cls(
            id=customer.id,
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
            phone_number=customer.phone_number,
            address=customer.address,
            roles=[role.value for role in customer.roles],
            created_at=customer.created_at,
            updated_at=customer.updated_at
        )


# Account schemas
class CreateAccountRequest(BaseModel):
    customer_id: str
    account_type: str = Field(..., description="Account type (CHECKING, SAVINGS, CREDIT)")
    initial_balance: Optional[str] = Field(None, description="Decimal amount as string")


class UpdateAccountRequest(BaseModel):
    account_number: Optional[str] = None
    account_type: Optional[str] = None


class AccountResponse(BaseModel):
    id: str
    account_number: str
    account_type: str
    balance: str = Field(..., description="Decimal amount as string")
    customer_id: str
    customer_name: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account, customer_name: Optional[str] = None) -> 'AccountResponse':
        return cls(
            id=account.id,
            account_number=account.account_number,
            account_type=account.account_type.value,
            balance=format_amount(account.balance),
            customer_id=account.customer_id,
            customer_name=customer_name,
            version=account.version,
            created_at=account.created_at,
            updated_at=account.updated_at
        )


# Transaction schemas
class DepositRequest(BaseModel):
    account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class WithdrawRequest(BaseModel):
    account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class TransferRequest(BaseModel):
    source_account_number: str
    target_account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


class TransactionResponse(BaseModel):
    id: str
    transaction_type: str
    amount: str
    transaction_date: datetime
    description: str
    source_account_number: Optional[str] = None
    target_account_number: Optional[str] = None
    customer_name: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: TransactionSummary) -> 'TransactionResponse':
        return cls(
            id=summary.id,
            transaction_type=summary.transaction_type.value,
            amount=format_amount(summary.amount),
            transaction_date=summary.transaction_date,
            description=summary.description,
            source_account_number=summary.source_account_number,
            target_account_number=summary.target_account_number,
            customer_name=summary.customer_name
        )


class MessageResponse(BaseModel):
    message: str
