from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from rules import ZERO, to_decimal

from .errors import InsufficientFundsError, LedgerValidationError, WalletNotFoundError
from .models import BUCKETS, COUNTERS, Wallet
from .storage import InMemoryStorage


FIELDS = BUCKETS + COUNTERS


class WalletStore:
    """Four-bucket wallets with atomic increments.

    There is no absolute setter here; ``ledger.migrations`` is the one
    place that writes absolute values.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create(self, user_id: UUID) -> Wallet:
        now = datetime.now(timezone.utc)
        wallet_data = {"user_id": user_id, "created_at": now, "updated_at": now}
        wallet_data.update({name: ZERO for name in FIELDS})
        with self.storage.lock:
            self.storage.insert("wallets", user_id, wallet_data)
        return Wallet(**wallet_data)

    def get(self, user_id: UUID) -> Wallet:
        wallet_data = self.storage.wallets.get(user_id)
        if not wallet_data:
            raise WalletNotFoundError(f"Wallet for user {user_id} not found")
        return Wallet(**wallet_data)

    def find(self, predicate: Optional[Callable[[Wallet], bool]] = None) -> list[Wallet]:
        with self.storage.lock:
            wallets = [Wallet(**w) for w in self.storage.wallets.values()]
        if predicate is None:
            return wallets
        return [w for w in wallets if predicate(w)]

    def increment(self, user_id: UUID, **deltas) -> Wallet:
        """Apply signed deltas to named fields in one step.

        Raises InsufficientFundsError, leaving the wallet untouched, if any
        field would end up below zero.
        """
        deltas = self._normalize(deltas)
        with self.storage.lock:
            wallet_data = self._require(user_id)
            updated = self._apply(user_id, wallet_data, deltas)
            wallet_data.update(updated)
            return Wallet(**wallet_data)

    def bulk_increment(self, ops: list[tuple[UUID, dict]]) -> int:
        """Apply many increments all-or-nothing. Returns the number applied."""
        normalized = [(user_id, self._normalize(deltas)) for user_id, deltas in ops]
        with self.storage.lock:
            staged: dict[UUID, dict] = {}
            for user_id, deltas in normalized:
                current = staged.get(user_id) or dict(self._require(user_id))
                current.update(self._apply(user_id, current, deltas))
                staged[user_id] = current
            for user_id, wallet_data in staged.items():
                self.storage.for_update("wallets", user_id).update(wallet_data)
        return len(normalized)

    def _require(self, user_id: UUID) -> dict:
        wallet_data = self.storage.for_update("wallets", user_id)
        if wallet_data is None:
            raise WalletNotFoundError(f"Wallet for user {user_id} not found")
        return wallet_data

    @staticmethod
    def _normalize(deltas: dict) -> dict[str, Decimal]:
        unknown = set(deltas) - set(FIELDS)
        if unknown:
            raise LedgerValidationError(f"Unknown wallet field(s): {', '.join(sorted(unknown))}")
        return {name: to_decimal(delta) for name, delta in deltas.items()}

    @staticmethod
    def _apply(user_id: UUID, wallet_data: dict, deltas: dict[str, Decimal]) -> dict:
        updated = {}
        for name, delta in deltas.items():
            new_value = wallet_data[name] + delta
            if new_value < 0:
                raise InsufficientFundsError(
                    f"Insufficient {name} for user {user_id}: "
                    f"available {wallet_data[name]}, requested {-delta}"
                )
            updated[name] = new_value
        updated["updated_at"] = datetime.now(timezone.utc)
        return updated
