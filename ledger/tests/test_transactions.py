from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.errors import InvalidStateTransitionError, LedgerValidationError, TransactionNotFoundError
from ledger.models import TransactionStatus, TransactionType
from ledger.storage import InMemoryStorage
from ledger.transactions import TransactionLedger


def _pending(ledger, user_id, amount="100.00", **kwargs):
    return ledger.append(
        user_id=user_id,
        type=TransactionType.WITHDRAWAL,
        amount=Decimal(amount),
        status=TransactionStatus.PENDING,
        **kwargs,
    )


class TestTransitions:
    """PENDING moves to exactly one terminal status."""

    def test_pending_to_success(self):
        ledger = TransactionLedger(InMemoryStorage())
        entry = _pending(ledger, uuid4())

        settled = ledger.transition(entry.id, TransactionStatus.SUCCESS)

        assert settled.status == TransactionStatus.SUCCESS
        assert ledger.get(entry.id).status == TransactionStatus.SUCCESS

    def test_terminal_status_is_final(self):
        """A SUCCESS entry can never be moved again."""
        ledger = TransactionLedger(InMemoryStorage())
        entry = _pending(ledger, uuid4())
        ledger.transition(entry.id, TransactionStatus.SUCCESS)

        with pytest.raises(InvalidStateTransitionError):
            ledger.transition(entry.id, TransactionStatus.REJECTED)

        assert ledger.get(entry.id).status == TransactionStatus.SUCCESS

    def test_cannot_transition_back_to_pending(self):
        ledger = TransactionLedger(InMemoryStorage())
        entry = _pending(ledger, uuid4())

        with pytest.raises(InvalidStateTransitionError):
            ledger.transition(entry.id, TransactionStatus.PENDING)

    def test_unknown_transaction(self):
        ledger = TransactionLedger(InMemoryStorage())

        with pytest.raises(TransactionNotFoundError):
            ledger.transition(uuid4(), TransactionStatus.FAILED)

    def test_find_by_reference(self):
        ledger = TransactionLedger(InMemoryStorage())
        reference = uuid4()
        entry = _pending(ledger, uuid4(), reference_id=reference)

        assert ledger.find_by_reference(reference, TransactionType.WITHDRAWAL).id == entry.id
        assert ledger.find_by_reference(reference, TransactionType.DEPOSIT) is None


class TestListing:
    """Newest-first history and the admin report."""

    def test_list_by_user_newest_first_with_pagination(self):
        ledger = TransactionLedger(InMemoryStorage())
        user_id = uuid4()
        entries = [_pending(ledger, user_id, amount=f"{i}.00") for i in range(1, 6)]
        _pending(ledger, uuid4())

        first = ledger.list_by_user(user_id, page=1, page_size=2)
        last = ledger.list_by_user(user_id, page=3, page_size=2)

        assert first.total_count == 5
        assert [e.id for e in first.entries] == [entries[4].id, entries[3].id]
        assert [e.id for e in last.entries] == [entries[0].id]

    def test_duration_window(self):
        """Entries older than the window are left out."""
        ledger = TransactionLedger(InMemoryStorage())
        user_id = uuid4()
        old = _pending(ledger, user_id, created_at=datetime.now(timezone.utc) - timedelta(days=60))
        recent = _pending(ledger, user_id)

        one_month = ledger.list_by_user(user_id, duration="1m")
        three_months = ledger.list_by_user(user_id, duration="3m")

        assert [e.id for e in one_month.entries] == [recent.id]
        assert {e.id for e in three_months.entries} == {old.id, recent.id}

    def test_bad_duration_and_page(self):
        ledger = TransactionLedger(InMemoryStorage())

        with pytest.raises(LedgerValidationError):
            ledger.list_by_user(uuid4(), duration="2y")
        with pytest.raises(LedgerValidationError):
            ledger.list_by_user(uuid4(), page=0)

    def test_report_joins_user_fields(self, service, admin):
        """The admin report carries the owner's name and email."""
        _pending(service.transactions, admin.user_id)
        _pending(service.transactions, admin.user_id)
        _pending(service.transactions, admin.user_id)

        report = service.transactions.list_all(page=1, page_size=2)

        assert report.pagination.total_documents == 3
        assert report.pagination.total_pages == 2
        assert report.pagination.limit == 2
        assert len(report.data) == 2
        assert report.data[0].user_name == "Admin Root"
        assert report.data[0].user_email == "admin@example.com"

    def test_append_rounds_amounts(self):
        ledger = TransactionLedger(InMemoryStorage())

        entry = ledger.append(
            user_id=uuid4(),
            type=TransactionType.PROFIT,
            amount=Decimal("10.005"),
            status=TransactionStatus.SUCCESS,
            tax_deducted=Decimal("1.115"),
        )

        assert entry.amount == Decimal("10.01")
        assert entry.tax_deducted == Decimal("1.12")
