"""
Test suite for transaction records and the append-only log
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from bank_ledger.errors import BusinessRuleViolation, InvalidAmountError
from bank_ledger.storage import InMemoryStorage
from bank_ledger.transactions import (
    Transaction, TransactionLog, TransactionType, newest_first
)


BASE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_transaction(transaction_id, transaction_type=TransactionType.DEPOSIT,
                     amount=Decimal("100.00"), when=BASE_TIME, description=None,
                     source=None, target="acc-1"):
    def owner(account_id):
        return f"owner-of-{account_id}" if account_id else None

    return Transaction(
        id=transaction_id,
        created_at=when,
        updated_at=when,
        transaction_type=transaction_type,
        amount=amount,
        transaction_date=when,
        description=description,
        source_account_id=source,
        source_account_number=f"NUM-{source}" if source else None,
        source_customer_id=owner(source),
        target_account_id=target,
        target_account_number=f"NUM-{target}" if target else None,
        target_customer_id=owner(target),
    )


class TestTransactionRecord:
    """Shape invariants of a transaction"""

    def test_default_descriptions(self):
        deposit = make_transaction("t1")
        withdrawal = make_transaction("t2", TransactionType.WITHDRAWAL, source="acc-1", target=None)
        transfer = make_transaction("t3", TransactionType.TRANSFER, source="acc-1", target="acc-2")

        assert deposit.description == "Deposit"
        assert withdrawal.description == "Withdrawal"
        assert transfer.description == "Transfer"

    def test_explicit_description_kept(self):
        assert make_transaction("t1", description="Salary").description == "Salary"

    @pytest.mark.parametrize("amount", [Decimal("0.00"), Decimal("-5.00")])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(InvalidAmountError):
            make_transaction("t1", amount=amount)

    def test_deposit_shape(self):
        with pytest.raises(ValueError):
            make_transaction("t1", TransactionType.DEPOSIT, source="acc-1", target="acc-2")
        with pytest.raises(ValueError):
            make_transaction("t1", TransactionType.DEPOSIT, source=None, target=None)

    def test_withdrawal_shape(self):
        with pytest.raises(ValueError):
            make_transaction("t1", TransactionType.WITHDRAWAL, source=None, target="acc-1")

    def test_transfer_needs_both_sides(self):
        with pytest.raises(ValueError):
            make_transaction("t1", TransactionType.TRANSFER, source="acc-1", target=None)

    def test_transfer_to_same_account_rejected(self):
        with pytest.raises(BusinessRuleViolation):
            make_transaction("t1", TransactionType.TRANSFER, source="acc-1", target="acc-1")

    def test_involvement(self):
        transfer = make_transaction("t1", TransactionType.TRANSFER, source="acc-1", target="acc-2")

        assert transfer.involves_account("acc-1")
        assert transfer.involves_account("acc-2")
        assert not transfer.involves_account("acc-3")
        assert transfer.involves_customer("owner-of-acc-2")
        assert not transfer.involves_customer("someone-else")


class TestNewestFirst:

    def test_orders_by_date_then_id_descending(self):
        older = make_transaction("a", when=BASE_TIME)
        tie_low = make_transaction("b", when=BASE_TIME + timedelta(minutes=1))
        tie_high = make_transaction("c", when=BASE_TIME + timedelta(minutes=1))

        ordered = newest_first([older, tie_low, tie_high])
        assert [t.id for t in ordered] == ["c", "b", "a"]


class TestTransactionLog:
    """Append-only storage"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.log = TransactionLog(self.storage)

    def test_append_and_get(self):
        transaction = make_transaction("t1", amount=Decimal("12.34"))
        self.log.append(transaction)

        loaded = self.log.get("t1")
        assert loaded == transaction
        assert loaded.amount == Decimal("12.34")
        assert loaded.transaction_type == TransactionType.DEPOSIT
        assert self.log.count() == 1

    def test_get_missing(self):
        assert self.log.get("missing") is None

    def test_ids_are_never_reused(self):
        self.log.append(make_transaction("t1"))

        with pytest.raises(ValueError, match="already recorded"):
            self.log.append(make_transaction("t1", amount=Decimal("1.00")))

        assert self.log.get("t1").amount == Decimal("100.00")

    def test_list_for_account_covers_both_sides(self):
        self.log.append(make_transaction("t1", target="acc-1", when=BASE_TIME))
        self.log.append(make_transaction("t2", TransactionType.WITHDRAWAL, source="acc-1",
                                         target=None, when=BASE_TIME + timedelta(hours=1)))
        self.log.append(make_transaction("t3", TransactionType.TRANSFER, source="acc-2",
                                         target="acc-1", when=BASE_TIME + timedelta(hours=2)))
        self.log.append(make_transaction("t4", target="acc-2", when=BASE_TIME + timedelta(hours=3)))

        assert [t.id for t in self.log.list_for_account("acc-1")] == ["t3", "t2", "t1"]
        assert [t.id for t in self.log.list_for_account("acc-2")] == ["t4", "t3"]

    def test_list_for_customer(self):
        self.log.append(make_transaction("t1", target="acc-1"))
        self.log.append(make_transaction("t2", target="acc-2"))

        found = self.log.list_for_customer("owner-of-acc-1")
        assert [t.id for t in found] == ["t1"]

    def test_list_all_newest_first(self):
        self.log.append(make_transaction("t1", when=BASE_TIME))
        self.log.append(make_transaction("t2", when=BASE_TIME + timedelta(days=1)))

        assert [t.id for t in self.log.list_all()] == ["t2", "t1"]
