from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.models import TransactionStatus, TransactionType
from ledger.storage import InMemoryStorage
from ledger.transactions import TransactionLedger
from ledger.wallets import WalletStore


class TestAtomic:
    """Blocks commit together or leave no trace."""

    def test_failed_block_undoes_updates_and_inserts(self):
        storage = InMemoryStorage()
        wallets = WalletStore(storage)
        ledger = TransactionLedger(storage)
        user_id = uuid4()
        wallets.create(user_id)

        with pytest.raises(RuntimeError):
            with storage.atomic():
                wallets.increment(user_id, principal=Decimal("250.00"))
                ledger.append(user_id, TransactionType.DEPOSIT, Decimal("250.00"), TransactionStatus.SUCCESS)
                raise RuntimeError("connection dropped")

        assert wallets.get(user_id).principal == Decimal("0")
        assert storage.transactions == {}

    def test_inner_failure_keeps_outer_writes(self):
        storage = InMemoryStorage()
        wallets = WalletStore(storage)
        user_id = uuid4()
        wallets.create(user_id)

        with storage.atomic():
            wallets.increment(user_id, principal=Decimal("100"))
            with pytest.raises(RuntimeError):
                with storage.atomic():
                    wallets.increment(user_id, principal=Decimal("50"))
                    raise RuntimeError("inner")

        assert wallets.get(user_id).principal == Decimal("100")

    def test_outer_failure_undoes_committed_inner_block(self):
        storage = InMemoryStorage()
        wallets = WalletStore(storage)
        user_id = uuid4()
        wallets.create(user_id)

        with pytest.raises(RuntimeError):
            with storage.atomic():
                wallets.increment(user_id, principal=Decimal("100"))
                with storage.atomic():
                    wallets.increment(user_id, principal=Decimal("50"))
                raise RuntimeError("outer")

        assert wallets.get(user_id).principal == Decimal("0")

    def test_only_touched_records_are_journaled(self):
        """History that a block never touches is not copied."""
        storage = InMemoryStorage()
        wallets = WalletStore(storage)
        ledger = TransactionLedger(storage)
        user_id = uuid4()
        wallets.create(user_id)
        for _ in range(500):
            ledger.append(user_id, TransactionType.DEPOSIT, Decimal("1"), TransactionStatus.SUCCESS)

        with storage.atomic():
            wallets.increment(user_id, principal=Decimal("1"))
            journaled = set(storage._journals[-1])

        assert journaled == {("wallets", user_id)}
        assert storage._journals == []
