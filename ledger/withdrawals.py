import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from rules import has_cent_precision, round2

from .accounts import AccountService, require_admin
from .config import Settings
from .errors import (
    AlreadyProcessedError,
    InsufficientFundsError,
    LedgerServiceError,
    LedgerValidationError,
    WalletNotFoundError,
    WithdrawalNotFoundError,
)
from .models import (
    Actor,
    TransactionStatus,
    TransactionType,
    Withdrawal,
    WithdrawalAction,
    WithdrawalCreated,
    WithdrawalStatus,
)
from .notifications import Notifier
from .storage import InMemoryStorage
from .transactions import TransactionLedger
from .wallets import WalletStore

log = logging.getLogger(__name__)


class WithdrawalService:
    """PENDING -> APPROVED | REJECTED, with the funds held from request time."""

    def __init__(
        self,
        storage: InMemoryStorage,
        wallets: WalletStore,
        transactions: TransactionLedger,
        accounts: AccountService,
        notifier: Notifier,
        settings: Settings,
    ):
        self.storage = storage
        self.wallets = wallets
        self.transactions = transactions
        self.accounts = accounts
        self.notifier = notifier
        self.settings = settings

    def request(self, actor: Actor, amount: Decimal) -> WithdrawalCreated:
        if not has_cent_precision(amount):
            raise LedgerValidationError("Withdrawal amount can have at most 2 decimal places")
        if amount < self.settings.MIN_WITHDRAWAL:
            raise LedgerValidationError(
                f"Withdrawal amount must be at least {self.settings.MIN_WITHDRAWAL}"
            )
        amount = round2(amount)
        self.accounts.ensure_active(actor.user_id)

        try:
            with self.storage.atomic():
                # Conditional decrement: fails with InsufficientFundsError
                # against the live balance, nothing read beforehand
                self.wallets.increment(actor.user_id, principal=-amount, total_withdrawn=amount)
                withdrawal = self.create_hold(actor.user_id, amount, amount, "principal", None)
                self.transactions.append(
                    user_id=actor.user_id,
                    type=TransactionType.WITHDRAWAL,
                    amount=amount,
                    status=TransactionStatus.PENDING,
                    reference_id=withdrawal.id,
                    description="Withdrawal Request",
                )
        except (InsufficientFundsError, WalletNotFoundError):
            raise
        except Exception:
            log.exception("Withdrawal request for user %s failed after the hold; wallet restored", actor.user_id)
            raise

        log.info("Withdrawal %s of %s requested by %s", withdrawal.id, amount, actor.user_id)
        return WithdrawalCreated(withdrawal_id=withdrawal.id)

    def manage(
        self,
        actor: Actor,
        withdrawal_id: UUID,
        action: WithdrawalAction,
        remark: Optional[str] = None,
        utr_number: Optional[str] = None,
    ) -> Withdrawal:
        action = WithdrawalAction(action)
        if action == WithdrawalAction.APPROVE:
            return self.approve(actor, withdrawal_id, utr_number, remark)
        return self.reject(actor, withdrawal_id, remark)

    def approve(self, actor: Actor, withdrawal_id: UUID, utr_number: Optional[str], remark: Optional[str] = None) -> Withdrawal:
        require_admin(actor)
        if not utr_number or len(utr_number) != self.settings.UTR_LENGTH:
            raise LedgerValidationError(
                f"A valid {self.settings.UTR_LENGTH}-digit UTR Number is required for approval."
            )

        with self.storage.atomic():
            withdrawal_data = self._claim(withdrawal_id, WithdrawalStatus.APPROVED)
            withdrawal_data["admin_remark"] = remark or "Approved by Admin"
            withdrawal_data["utr_number"] = utr_number
            self._settle_transaction(withdrawal_id, TransactionStatus.SUCCESS)
            withdrawal = Withdrawal(**withdrawal_data)

        log.info("Withdrawal %s approved by %s (UTR %s)", withdrawal_id, actor.user_id, utr_number)
        self.notifier.safe_notify(
            withdrawal.user_id,
            "Withdrawal Approved",
            f"Your withdrawal of {withdrawal.amount} has been successfully processed.",
        )
        self.notifier.send_email(
            withdrawal.user_id,
            "Withdrawal Approved",
            f"Your withdrawal request has been approved and credited to your bank account.\n"
            f"Amount: {withdrawal.amount}\nUTR Number: {utr_number}\n"
            f"Processed On: {withdrawal.processed_at:%d %b %Y %H:%M} UTC",
        )
        return withdrawal

    def reject(self, actor: Actor, withdrawal_id: UUID, remark: Optional[str] = None) -> Withdrawal:
        require_admin(actor)

        with self.storage.atomic():
            withdrawal_data = self._claim(withdrawal_id, WithdrawalStatus.REJECTED)
            withdrawal_data["admin_remark"] = remark or "Rejected by Admin"
            self._settle_transaction(withdrawal_id, TransactionStatus.REJECTED)
            # Reverse the hold exactly, into the bucket it came from
            held = withdrawal_data["held_amount"]
            self.wallets.increment(
                withdrawal_data["user_id"],
                **{withdrawal_data["hold_bucket"]: held, "total_withdrawn": -held},
            )
            withdrawal = Withdrawal(**withdrawal_data)

        log.info(
            "Withdrawal %s rejected by %s, refunded %s to %s",
            withdrawal_id, actor.user_id, withdrawal.held_amount, withdrawal.hold_bucket,
        )
        self.notifier.safe_notify(
            withdrawal.user_id,
            "Withdrawal Rejected",
            f"Your withdrawal request was rejected. Remark: {remark or 'N/A'}. Refund initiated.",
        )
        self.notifier.send_email(
            withdrawal.user_id,
            "Withdrawal Request Update",
            f"Your withdrawal request has been declined and the amount refunded to your wallet.\n"
            f"Amount: {withdrawal.amount}\nReason: {remark or 'Administrative Decision'}",
        )
        return withdrawal

    def get(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal_data = self.storage.withdrawals.get(withdrawal_id)
        if not withdrawal_data:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return Withdrawal(**withdrawal_data)

    def list_by_user(self, user_id: UUID) -> list[Withdrawal]:
        return self._list(lambda w: w["user_id"] == user_id)

    def list_pending(self, actor: Actor) -> list[Withdrawal]:
        require_admin(actor)
        return self._list(lambda w: w["status"] == WithdrawalStatus.PENDING)

    def create_hold(
        self,
        user_id: UUID,
        amount: Decimal,
        held_amount: Decimal,
        hold_bucket: str,
        remark: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> Withdrawal:
        """Insert a PENDING withdrawal for funds the caller already debited."""
        withdrawal_data = {
            "id": uuid4(),
            "user_id": user_id,
            "amount": round2(amount),
            "held_amount": round2(held_amount),
            "hold_bucket": hold_bucket,
            "status": WithdrawalStatus.PENDING,
            "admin_remark": remark,
            "utr_number": None,
            "processed_at": None,
            "created_at": created_at or datetime.now(timezone.utc),
        }
        with self.storage.lock:
            self.storage.insert("withdrawals", withdrawal_data["id"], withdrawal_data)
        return Withdrawal(**withdrawal_data)

    def _claim(self, withdrawal_id: UUID, new_status: WithdrawalStatus) -> dict:
        # Compare-and-set under the storage lock: only one admin wins
        withdrawal_data = self.storage.for_update("withdrawals", withdrawal_id)
        if not withdrawal_data:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        if withdrawal_data["status"] != WithdrawalStatus.PENDING:
            raise AlreadyProcessedError(
                f"Request already processed (status {WithdrawalStatus(withdrawal_data['status']).value})"
            )
        withdrawal_data["status"] = new_status
        withdrawal_data["processed_at"] = datetime.now(timezone.utc)
        return withdrawal_data

    def _settle_transaction(self, withdrawal_id: UUID, status: TransactionStatus) -> None:
        txn = self.transactions.find_by_reference(withdrawal_id, TransactionType.WITHDRAWAL)
        if txn is None:
            log.error("Withdrawal %s has no ledger entry to mark %s", withdrawal_id, status.value)
            raise LedgerServiceError(f"Withdrawal {withdrawal_id} has no ledger entry to mark {status.value}")
        self.transactions.transition(txn.id, status)

    def _list(self, predicate) -> list[Withdrawal]:
        with self.storage.lock:
            items = [Withdrawal(**w) for w in self.storage.withdrawals.values() if predicate(w)]
        items.sort(key=lambda w: w.created_at, reverse=True)
        return items
