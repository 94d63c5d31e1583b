"""
Test suite for the account store

Covers account number generation and format, record serialization and the
version-checked update path.
"""

import pytest
import tempfile
from dataclasses import replace
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path

from bank_ledger.accounts import (
    Account, AccountNumberGenerator, AccountStore, AccountType, is_valid_account_number
)
from bank_ledger.storage import (
    InMemoryStorage, SQLiteStorage, UniqueConstraintError, VersionConflictError
)


def make_account(account_id="acc-1", number="TR0000000001", customer_id="cust-1",
                 balance=Decimal("0.00")):
    now = datetime.now(timezone.utc)
    return Account(
        id=account_id,
        created_at=now,
        updated_at=now,
        account_number=number,
        account_type=AccountType.CHECKING,
        customer_id=customer_id,
        balance=balance,
    )


class TestAccountNumbers:
    """Account number format and generation"""

    @pytest.mark.parametrize("number", ["TR0000000001", "ABCDEF1234", "1234567890123456"])
    def test_valid_numbers(self, number):
        assert is_valid_account_number(number)

    @pytest.mark.parametrize("number", [
        "", None, "TR123", "tr0000000001", "TR-000000001", "12345678901234567"
    ])
    def test_invalid_numbers(self, number):
        assert not is_valid_account_number(number)

    def test_generated_candidates_are_valid(self):
        generator = AccountNumberGenerator()
        candidates = {generator.candidate() for _ in range(50)}

        assert len(candidates) == 50
        for candidate in candidates:
            assert candidate.startswith("TR")
            assert len(candidate) == 12
            assert is_valid_account_number(candidate)

    def test_custom_prefix_and_length(self):
        candidate = AccountNumberGenerator(prefix="BANK", length=16).candidate()
        assert candidate.startswith("BANK")
        assert len(candidate) == 16

    @pytest.mark.parametrize("prefix,length", [("tr", 12), ("TR", 9), ("TR", 17), ("ABCDEFGHIJ", 10)])
    def test_generator_rejects_bad_settings(self, prefix, length):
        with pytest.raises(ValueError):
            AccountNumberGenerator(prefix=prefix, length=length)


class TestAccount:
    """Account record invariants"""

    def test_balance_is_quantized(self):
        account = make_account(balance=Decimal("10"))
        assert str(account.balance) == "10.00"
        assert account.version == 0

    def test_float_balance_rejected(self):
        with pytest.raises(TypeError):
            make_account(balance=10.0)

    def test_with_balance_keeps_identity(self):
        account = make_account(balance=Decimal("10.00"))
        later = datetime.now(timezone.utc)
        changed = account.with_balance(Decimal("25.5"), later)

        assert changed.id == account.id
        assert changed.balance == Decimal("25.50")
        assert changed.updated_at == later
        assert changed.version == account.version
        assert account.balance == Decimal("10.00")


class TestAccountStore:
    """Keyed access and version-checked writes"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = AccountStore(self.storage)

    def test_insert_and_get(self):
        account = self.store.insert(make_account(balance=Decimal("5000.00")))

        loaded = self.store.get(account.id)
        assert loaded == account
        assert loaded.balance == Decimal("5000.00")
        assert isinstance(loaded.balance, Decimal)
        assert loaded.account_type == AccountType.CHECKING

    def test_get_missing(self):
        assert self.store.get("missing") is None
        assert self.store.get_by_number("TR9999999999") is None
        assert not self.store.exists("missing")
        assert not self.store.exists_by_number("TR9999999999")

    def test_get_by_number(self):
        account = self.store.insert(make_account())

        assert self.store.get_by_number("TR0000000001").id == account.id
        assert self.store.exists_by_number("TR0000000001")

    def test_duplicate_number_rejected(self):
        self.store.insert(make_account())

        with pytest.raises(UniqueConstraintError):
            self.store.insert(make_account(account_id="acc-2"))

    def test_list_for_customer(self):
        self.store.insert(make_account("a1", "TR0000000001", "cust-1"))
        self.store.insert(make_account("a2", "TR0000000002", "cust-2"))
        self.store.insert(make_account("a3", "TR0000000003", "cust-1"))

        owned = self.store.list_for_customer("cust-1")
        assert sorted(a.id for a in owned) == ["a1", "a3"]
        assert len(self.store.list_all()) == 3

    def test_update_increments_version(self):
        account = self.store.insert(make_account(balance=Decimal("100.00")))

        stored = self.store.update(account.with_balance(Decimal("150.00"), account.updated_at))

        assert stored.version == 1
        reloaded = self.store.get(account.id)
        assert reloaded.version == 1
        assert reloaded.balance == Decimal("150.00")

    def test_stale_update_rejected(self):
        account = self.store.insert(make_account(balance=Decimal("100.00")))
        first = self.store.get(account.id)
        second = self.store.get(account.id)

        self.store.update(first.with_balance(Decimal("200.00"), first.updated_at))

        with pytest.raises(VersionConflictError) as exc_info:
            self.store.update(second.with_balance(Decimal("50.00"), second.updated_at))

        assert exc_info.value.record_id == account.id
        assert exc_info.value.expected_version == 0
        assert self.store.get(account.id).balance == Decimal("200.00")

    def test_update_of_deleted_account_rejected(self):
        account = self.store.insert(make_account())
        assert self.store.delete(account.id)

        with pytest.raises(VersionConflictError):
            self.store.update(replace(account, account_type=AccountType.SAVINGS))

    def test_sqlite_round_trip(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "accounts.db")
            try:
                store = AccountStore(storage)
                account = store.insert(make_account(balance=Decimal("12.34")))
                store.update(account.with_balance(Decimal("56.78"), account.updated_at))

                loaded = store.get_by_number(account.account_number)
                assert loaded.balance == Decimal("56.78")
                assert loaded.version == 1
            finally:
                storage.close()
