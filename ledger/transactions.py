import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from rules import ZERO, round2

from .errors import InvalidStateTransitionError, LedgerValidationError, TransactionNotFoundError
from .models import (
    Pagination,
    Transaction,
    TransactionPage,
    TransactionReport,
    TransactionReportRow,
    TransactionStatus,
    TransactionType,
)
from .storage import InMemoryStorage


DURATIONS = {
    "1m": timedelta(days=30),
    "3m": timedelta(days=91),
    "6m": timedelta(days=182),
    "all": None,
}


class TransactionLedger:
    """Append-only log of monetary events. Never touches wallets."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def append(
        self,
        user_id: UUID,
        type: TransactionType,
        amount: Decimal,
        status: TransactionStatus,
        reference_id: Optional[UUID] = None,
        description: str = "",
        tax_deducted: Decimal = ZERO,
        created_at: Optional[datetime] = None,
    ) -> Transaction:
        entry_data = {
            "id": uuid4(),
            "user_id": user_id,
            "type": type,
            "amount": round2(amount),
            "tax_deducted": round2(tax_deducted),
            "status": status,
            "reference_id": reference_id,
            "description": description,
            "created_at": created_at or datetime.now(timezone.utc),
        }
        with self.storage.lock:
            entry_data["sequence"] = self.storage.next_sequence()
            self.storage.insert("transactions", entry_data["id"], entry_data)
        return Transaction(**entry_data)

    def append_many(self, entries: list[dict]) -> list[Transaction]:
        with self.storage.atomic():
            return [self.append(**entry) for entry in entries]

    def get(self, transaction_id: UUID) -> Transaction:
        entry_data = self.storage.transactions.get(transaction_id)
        if not entry_data:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**entry_data)

    def transition(self, transaction_id: UUID, new_status: TransactionStatus) -> Transaction:
        new_status = TransactionStatus(new_status)
        if not new_status.is_terminal:
            raise InvalidStateTransitionError(f"Cannot move a transaction back to {new_status.value}")
        with self.storage.lock:
            entry_data = self.storage.for_update("transactions", transaction_id)
            if not entry_data:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            current = TransactionStatus(entry_data["status"])
            if current.is_terminal:
                raise InvalidStateTransitionError(
                    f"Transaction {transaction_id} is already {current.value}"
                )
            entry_data["status"] = new_status
            return Transaction(**entry_data)

    def find_by_reference(self, reference_id: UUID, type: Optional[TransactionType] = None) -> Optional[Transaction]:
        with self.storage.lock:
            for entry in self.storage.transactions.values():
                if entry["reference_id"] == reference_id and (type is None or entry["type"] == type):
                    return Transaction(**entry)
        return None

    def list_by_user(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: int = 20,
        duration: str = "all",
    ) -> TransactionPage:
        page, page_size = self._check_page(page, page_size)
        if duration not in DURATIONS:
            raise LedgerValidationError(f"Unknown duration {duration!r}; use one of {', '.join(DURATIONS)}")
        window = DURATIONS[duration]
        since = datetime.now(timezone.utc) - window if window else None

        with self.storage.lock:
            entries = [
                Transaction(**e) for e in self.storage.transactions.values()
                if e["user_id"] == user_id and (since is None or e["created_at"] >= since)
            ]
        entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        offset = (page - 1) * page_size
        return TransactionPage(
            user_id=user_id,
            entries=entries[offset:offset + page_size],
            total_count=len(entries),
            page=page,
            page_size=page_size,
        )

    def list_all(self, page: int = 1, page_size: int = 10) -> TransactionReport:
        page, page_size = self._check_page(page, page_size)
        with self.storage.lock:
            rows = []
            for entry in self.storage.transactions.values():
                user = self.storage.users.get(entry["user_id"]) or {}
                rows.append(TransactionReportRow(
                    **entry, user_name=user.get("name"), user_email=user.get("email"),
                ))
        rows.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        offset = (page - 1) * page_size
        return TransactionReport(
            data=rows[offset:offset + page_size],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(len(rows) / page_size),
                total_documents=len(rows),
                limit=page_size,
            ),
        )

    @staticmethod
    def _check_page(page: int, page_size: int) -> tuple[int, int]:
        if page < 1 or page_size < 1:
            raise LedgerValidationError("page and page_size must be at least 1")
        return page, page_size
