"""
Customer Management Module

Manages customer profiles: names, unique email, contact details, hashed
credentials and role grants. Every customer holds the USER role; ADMIN is
granted on request.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Iterable
from enum import Enum
import hashlib
import hmac
import secrets
import uuid
import re

from .errors import BusinessRuleViolation, DuplicateResourceError, NotFoundError
from .storage import StorageInterface, StorageRecord, UniqueConstraintError


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^[0-9]{10,11}$')


class Role(Enum):
    """Role grants carried in caller identities"""
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class Customer(StorageRecord):
    """
    Customer profile
    """
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    roles: List[Role] = field(default_factory=lambda: [Role.USER])
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    def __post_init__(self):
        for label, value in (("First name", self.first_name), ("Last name", self.last_name)):
            if not value or not 2 <= len(value.strip()) <= 50:
                raise BusinessRuleViolation(f"{label} must be between 2 and 50 characters")

        if not EMAIL_PATTERN.match(self.email or ""):
            raise BusinessRuleViolation("Invalid email format")

        if self.phone_number and not PHONE_PATTERN.match(self.phone_number):
            raise BusinessRuleViolation("Phone number must be 10-11 digits")

        if self.address and len(self.address) > 255:
            raise BusinessRuleViolation("Address is too long")

        if Role.USER not in self.roles:
            self.roles = [Role.USER] + list(self.roles)

    @property
    def full_name(self) -> str:
        """Get customer's full name"""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


def _resolve_roles(requested: Optional[Iterable[str]]) -> List[Role]:
    roles = [Role.USER]
    if requested and Role.ADMIN.value in {r.upper() for r in requested}:
        roles.append(Role.ADMIN)
    return roles


class CustomerManager:
    """
    Manages customer lifecycle and credentials
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "customers"
        self.storage.add_unique_index(self.table_name, "email")

    def create_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        roles: Optional[Iterable[str]] = None,
        password: Optional[str] = None
    ) -> Customer:
        """
        Create a new customer

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            email: Customer's email address, unique across customers
            phone_number: Optional 10-11 digit phone number
            address: Optional postal address
            roles: Requested roles; USER is always granted, ADMIN if listed
            password: Optional initial password, stored as a scrypt hash

        Returns:
            Created Customer object

        Raises:
            DuplicateResourceError: If the email is already registered
            BusinessRuleViolation: If a field fails validation
        """
        if self.exists_by_email(email):
            raise DuplicateResourceError("Customer", "email", email)

        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone_number=phone_number,
            address=address,
            roles=_resolve_roles(roles)
        )
        if password is not None:
            self._set_password(customer, password)

        self._save_customer(customer)
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            return self._customer_from_dict(customer_dict)
        return None

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Get customer by email address"""
        customers = self.storage.find(self.table_name, {"email": email})
        if customers:
            return self._customer_from_dict(customers[0])
        return None

    def exists(self, customer_id: str) -> bool:
        return self.storage.exists(self.table_name, customer_id)

    def exists_by_email(self, email: str) -> bool:
        return bool(self.storage.find(self.table_name, {"email": email}))

    def list_customers(self) -> List[Customer]:
        """All customers ordered by first name"""
        customers = [self._customer_from_dict(data) for data in self.storage.load_all(self.table_name)]
        customers.sort(key=lambda c: (c.first_name, c.last_name, c.id))
        return customers

    def update_customer(
        self,
        customer_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        roles: Optional[Iterable[str]] = None
    ) -> Customer:
        """Update customer information; None leaves a field unchanged"""
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFoundError("Customer", "id", customer_id)

        if email is not None and email != customer.email and self.exists_by_email(email):
            raise DuplicateResourceError("Customer", "email", email)

        updated = Customer(
            id=customer.id,
            created_at=customer.created_at,
            updated_at=datetime.now(timezone.utc),
            first_name=first_name if first_name is not None else customer.first_name,
            last_name=last_name if last_name is not None else customer.last_name,
            email=email if email is not None else customer.email,
            phone_number=phone_number if phone_number is not None else customer.phone_number,
            address=address if address is not None else customer.address,
            roles=_resolve_roles(roles) if roles else customer.roles,
            password_hash=customer.password_hash,
            password_salt=customer.password_salt
        )

        self._save_customer(updated)
        return updated

    def delete_customer(self, customer_id: str, owned_accounts: int = 0) -> None:
        """
        Delete a customer

        Raises:
            NotFoundError: If the customer does not exist
            BusinessRuleViolation: If the customer still owns accounts
        """
        if not self.exists(customer_id):
            raise NotFoundError("Customer", "id", customer_id)
        if owned_accounts:
            raise BusinessRuleViolation(
                f"Customer {customer_id} still owns {owned_accounts} account(s)"
            )
        self.storage.delete(self.table_name, customer_id)

    def verify_password(self, customer: Customer, password: str) -> bool:
        """Verify password against stored hash"""
        if not customer.password_hash or not customer.password_salt:
            return False
        expected = self._hash_password(password, customer.password_salt)
        return hmac.compare_digest(customer.password_hash, expected)

    def _set_password(self, customer: Customer, password: str) -> None:
        if len(password) < 6:
            raise BusinessRuleViolation("Password must be at least 6 characters")
        customer.password_salt = secrets.token_hex(16)
        customer.password_hash = self._hash_password(password, customer.password_salt)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _save_customer(self, customer: Customer) -> None:
        """Save customer to storage"""
        try:
            self.storage.save(self.table_name, customer.id, self._customer_to_dict(customer))
        except UniqueConstraintError:
            raise DuplicateResourceError("Customer", "email", customer.email)

    def _customer_to_dict(self, customer: Customer) -> Dict:
        """Convert Customer to dictionary for storage"""
        result = customer.to_dict()
        result['roles'] = [role.value for role in customer.roles]
        return result

    def _customer_from_dict(self, data: Dict) -> Customer:
        """Convert dictionary to Customer"""
        return Customer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            phone_number=data.get('phone_number'),
            address=data.get('address'),
            roles=[Role(r) for r in data.get('roles', [Role.USER.value])],
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt')
        )
