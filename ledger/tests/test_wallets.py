import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.errors import InsufficientFundsError, LedgerValidationError, WalletNotFoundError
from ledger.storage import InMemoryStorage
from ledger.wallets import WalletStore


class TestWalletIncrements:
    """Atomic named-bucket increments."""

    def test_new_wallet_starts_at_zero(self):
        """A freshly created wallet has every bucket and counter at zero."""
        store = WalletStore(InMemoryStorage())
        user_id = uuid4()

        wallet = store.create(user_id)

        assert wallet.user_id == user_id
        assert wallet.total_balance == Decimal("0")
        assert wallet.total_deposited == wallet.total_withdrawn == wallet.total_profit == Decimal("0")

    def test_increment_and_decrement(self):
        store = WalletStore(InMemoryStorage())
        user_id = uuid4()
        store.create(user_id)

        store.increment(user_id, principal=Decimal("500.00"), total_deposited=Decimal("500.00"))
        wallet = store.increment(user_id, principal=Decimal("-120.50"))

        assert wallet.principal == Decimal("379.50")
        assert wallet.total_deposited == Decimal("500.00")

    def test_overdraw_is_rejected_and_nothing_applied(self):
        """A decrement below zero fails and leaves every field untouched."""
        store = WalletStore(InMemoryStorage())
        user_id = uuid4()
        store.create(user_id)
        store.increment(user_id, principal=Decimal("100.00"))

        with pytest.raises(InsufficientFundsError):
            store.increment(user_id, principal=Decimal("-100.01"), total_withdrawn=Decimal("100.01"))

        wallet = store.get(user_id)
        assert wallet.principal == Decimal("100.00")
        assert wallet.total_withdrawn == Decimal("0")

    def test_unknown_wallet(self):
        store = WalletStore(InMemoryStorage())

        with pytest.raises(WalletNotFoundError):
            store.increment(uuid4(), principal=Decimal("1"))
        with pytest.raises(WalletNotFoundError):
            store.get(uuid4())

    def test_unknown_field(self):
        store = WalletStore(InMemoryStorage())
        user_id = uuid4()
        store.create(user_id)

        with pytest.raises(LedgerValidationError):
            store.increment(user_id, balance=Decimal("1"))

    def test_concurrent_increments_do_not_lose_updates(self):
        """Fifty threads adding 1.00 each end at exactly 50.00."""
        store = WalletStore(InMemoryStorage())
        user_id = uuid4()
        store.create(user_id)

        threads = [
            threading.Thread(target=store.increment, args=(user_id,), kwargs={"principal": Decimal("1.00")})
            for _ in range(50)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get(user_id).principal == Decimal("50.00")


class TestBulkIncrement:
    """All-or-nothing bulk writes."""

    def test_bulk_applies_every_op(self):
        store = WalletStore(InMemoryStorage())
        a, b = uuid4(), uuid4()
        store.create(a)
        store.create(b)

        applied = store.bulk_increment([
            (a, {"principal": Decimal("10")}),
            (b, {"profit": Decimal("20")}),
            (a, {"principal": Decimal("5")}),
        ])

        assert applied == 3
        assert store.get(a).principal == Decimal("15")
        assert store.get(b).profit == Decimal("20")

    def test_bulk_failure_applies_nothing(self):
        """One bad op in the batch keeps every wallet as it was."""
        store = WalletStore(InMemoryStorage())
        a, b = uuid4(), uuid4()
        store.create(a)
        store.create(b)

        with pytest.raises(InsufficientFundsError):
            store.bulk_increment([
                (a, {"principal": Decimal("10")}),
                (b, {"profit": Decimal("-1")}),
            ])

        assert store.get(a).principal == Decimal("0")
        assert store.get(b).profit == Decimal("0")

    def test_bulk_with_missing_wallet_applies_nothing(self):
        store = WalletStore(InMemoryStorage())
        a = uuid4()
        store.create(a)

        with pytest.raises(WalletNotFoundError):
            store.bulk_increment([
                (a, {"principal": Decimal("10")}),
                (uuid4(), {"principal": Decimal("10")}),
            ])

        assert store.get(a).principal == Decimal("0")
