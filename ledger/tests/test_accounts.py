import re
from decimal import Decimal

import pytest

from ledger.errors import (
    AlreadyExistsError,
    AlreadyProcessedError,
    AuthorizationError,
    LedgerValidationError,
)
from ledger.models import ClosureAction, ClosureStatus, UserRole, UserStatus
from rules import PayoutPreference


class TestRegistration:
    def test_first_user_is_admin(self, service):
        first = service.accounts.register("Admin Root", "admin@example.com")
        second = service.accounts.register("Ravi Kumar", "ravi@example.com")

        assert first.role == UserRole.ADMIN
        assert second.role == UserRole.USER
        assert service.wallets.get(second.id).total_balance == Decimal("0")

    def test_email_is_unique_ignoring_case(self, service):
        service.accounts.register("Ravi Kumar", "ravi@example.com")

        with pytest.raises(AlreadyExistsError):
            service.accounts.register("Ravi Again", "  RAVI@Example.com ")

    def test_referral_code_shape(self, service):
        user = service.accounts.register("Ravi Kumar", "ravi@example.com")

        assert re.fullmatch(r"RAV\d{4}", user.referral_code)

    def test_referral_link(self, service, admin):
        referrer = service.accounts.register("Meera Shah", "meera@example.com")
        referred = service.accounts.register("Arjun Rao", "arjun@example.com", referrer.referral_code)

        assert referred.referred_by == referrer.id

    def test_unknown_referral_code_is_ignored(self, service, admin):
        user = service.accounts.register("Arjun Rao", "arjun@example.com", "NOPE0000")

        assert user.referred_by is None


class TestPayoutPreference:
    def test_switch_preference(self, service, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")

        user = service.accounts.set_payout_preference(investor, "PAYOUT")

        assert user.payout_preference == PayoutPreference.PAYOUT
        assert service.accounts.get(investor.user_id).payout_preference == PayoutPreference.PAYOUT


class TestAccountClosure:
    """REQUESTED -> CLOSED | NONE, only with an empty wallet."""

    def test_request_with_funds_is_refused(self, service, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com", amount="100")

        with pytest.raises(LedgerValidationError) as exc_info:
            service.accounts.request_closure(investor, "done investing")

        assert "remaining funds" in str(exc_info.value)
        assert service.accounts.get(investor.user_id).closure_status == ClosureStatus.NONE

    def test_dust_is_tolerated(self, service, make_investor, email_sender):
        investor = make_investor("Ravi Kumar", "ravi@example.com", amount="0.50")

        user = service.accounts.request_closure(investor, "done investing")

        assert user.closure_status == ClosureStatus.REQUESTED
        assert user.closure_reason == "done investing"
        assert user.closure_requested_at is not None
        assert email_sender.sent[-1]["subject"] == "Account Closure Request Received"

    def test_duplicate_request(self, service, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")
        service.accounts.request_closure(investor)

        with pytest.raises(AlreadyProcessedError):
            service.accounts.request_closure(investor)

    def test_cancel(self, service, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")
        service.accounts.request_closure(investor, "mistake")

        user = service.accounts.cancel_closure(investor)

        assert user.closure_status == ClosureStatus.NONE
        assert user.closure_reason is None
        with pytest.raises(LedgerValidationError):
            service.accounts.cancel_closure(investor)

    def test_approve_blocks_the_account(self, service, admin, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")
        service.accounts.request_closure(investor)

        user = service.accounts.resolve_closure(admin, investor.user_id, ClosureAction.APPROVE)

        assert user.closure_status == ClosureStatus.CLOSED
        assert user.status == UserStatus.BLOCKED
        # Wallet is kept for the audit trail
        assert service.wallets.get(investor.user_id) is not None
        with pytest.raises(AuthorizationError):
            service.accounts.ensure_active(investor.user_id)
        with pytest.raises(AlreadyProcessedError):
            service.accounts.request_closure(investor)

    def test_reject_reopens(self, service, admin, make_investor, email_sender):
        investor = make_investor("Ravi Kumar", "ravi@example.com")
        service.accounts.request_closure(investor)

        user = service.accounts.resolve_closure(admin, investor.user_id, "REJECT")

        assert user.closure_status == ClosureStatus.NONE
        assert user.status == UserStatus.ACTIVE
        assert email_sender.sent[-1]["subject"] == "Closure Request Rejected"

    def test_resolve_without_request(self, service, admin, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")

        with pytest.raises(AlreadyProcessedError):
            service.accounts.resolve_closure(admin, investor.user_id, ClosureAction.APPROVE)

    def test_resolve_is_admin_only(self, service, make_investor):
        investor = make_investor("Ravi Kumar", "ravi@example.com")
        service.accounts.request_closure(investor)

        with pytest.raises(AuthorizationError):
            service.accounts.resolve_closure(investor, investor.user_id, ClosureAction.APPROVE)
