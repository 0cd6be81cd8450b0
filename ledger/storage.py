import copy
import itertools
import threading
from contextlib import contextmanager
from typing import Any, Hashable, Optional
from uuid import UUID


_MISSING = object()


class InMemoryStorage:
    """Authoritative store for every ledger collection.

    Records are plain dicts keyed by id. All mutations go through ``lock``;
    ``atomic()`` is the transaction boundary for multi-record writes.

    Writers must go through ``insert`` or ``for_update`` so that
    an enclosing ``atomic()`` block can undo them. Only the records a block
    touches are journaled, never whole collections.
    """

    def __init__(self):
        self.users: dict[UUID, dict] = {}
        self.wallets: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self.deposits: dict[UUID, dict] = {}
        self.distributions: dict[UUID, dict] = {}
        self.notifications: dict[UUID, dict] = {}
        self.email_index: dict[str, UUID] = {}
        self.referral_code_index: dict[str, UUID] = {}
        self.deposit_order_index: dict[str, UUID] = {}
        self.lock = threading.RLock()
        self._sequence = itertools.count(1)
        # One undo journal per open atomic() block, innermost last.
        # Only the thread holding ``lock`` ever touches it.
        self._journals: list[dict[tuple[str, Hashable], Any]] = []

    def next_sequence(self) -> int:
        return next(self._sequence)

    def insert(self, collection: str, key: Hashable, value: Any) -> Any:
        with self.lock:
            self._remember(collection, key)
            getattr(self, collection)[key] = value
            return value

    def for_update(self, collection: str, key: Hashable) -> Optional[dict]:
        """Return the live record for in-place changes, or None if absent."""
        with self.lock:
            record = getattr(self, collection).get(key)
            if record is not None:
                self._remember(collection, key)
            return record

    @contextmanager
    def atomic(self):
        """Hold the lock for the block and undo every write if it raises."""
        with self.lock:
            journal: dict[tuple[str, Hashable], Any] = {}
            self._journals.append(journal)
            try:
                yield self
            except BaseException:
                self._journals.pop()
                self._undo(journal)
                raise
            self._journals.pop()
            if self._journals:
                # Inner commit: the outer block still owns the earliest prior value
                outer = self._journals[-1]
                for entry, prior in journal.items():
                    outer.setdefault(entry, prior)

    def _remember(self, collection: str, key: Hashable) -> None:
        if not self._journals:
            return
        journal = self._journals[-1]
        if (collection, key) in journal:
            return
        current = getattr(self, collection).get(key, _MISSING)
        journal[(collection, key)] = current if current is _MISSING else copy.deepcopy(current)

    def _undo(self, journal: dict[tuple[str, Hashable], Any]) -> None:
        for (collection, key), prior in journal.items():
            table = getattr(self, collection)
            if prior is _MISSING:
                table.pop(key, None)
            else:
                table[key] = prior
