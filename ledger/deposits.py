import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from rules import has_cent_precision, round2

from .accounts import AccountService
from .config import Settings
from .errors import (
    AlreadyExistsError,
    DepositNotFoundError,
    LedgerServiceError,
    LedgerValidationError,
    PaymentVerificationError,
)
from .models import (
    Actor,
    Deposit,
    DepositStatus,
    PaymentVerificationResult,
    TransactionStatus,
    TransactionType,
)
from .storage import InMemoryStorage
from .transactions import TransactionLedger
from .wallets import WalletStore

log = logging.getLogger(__name__)


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over ``order_id|payment_id``, hex encoded, as the gateway signs it."""
    payload = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class DepositService:
    def __init__(
        self,
        storage: InMemoryStorage,
        wallets: WalletStore,
        transactions: TransactionLedger,
        accounts: AccountService,
        settings: Settings,
    ):
        self.storage = storage
        self.wallets = wallets
        self.transactions = transactions
        self.accounts = accounts
        self.settings = settings

    def create_order(self, actor: Actor, amount: Decimal, order_id: Optional[str] = None) -> Deposit:
        """Register the pending deposit a later payment confirmation settles."""
        if not has_cent_precision(amount):
            raise LedgerValidationError("Deposit amount can have at most 2 decimal places")
        if amount <= 0:
            raise LedgerValidationError("Deposit amount must be positive")
        amount = round2(amount)
        self.accounts.ensure_active(actor.user_id)

        deposit_data = {
            "id": uuid4(),
            "user_id": actor.user_id,
            "amount": amount,
            "order_id": order_id or f"order_{uuid4().hex[:14]}",
            "payment_id": None,
            "signature": None,
            "status": DepositStatus.PENDING,
            "created_at": datetime.now(timezone.utc),
        }
        with self.storage.lock:
            if deposit_data["order_id"] in self.storage.deposit_order_index:
                raise AlreadyExistsError(f"Deposit order {deposit_data['order_id']} already exists")
            self.storage.insert("deposits", deposit_data["id"], deposit_data)
            self.storage.insert("deposit_order_index", deposit_data["order_id"], deposit_data["id"])
        return Deposit(**deposit_data)

    def get_by_order(self, order_id: str) -> Deposit:
        deposit_id = self.storage.deposit_order_index.get(order_id)
        if deposit_id is None:
            raise DepositNotFoundError(f"Deposit record for order {order_id} not found")
        return Deposit(**self.storage.deposits[deposit_id])

    def confirm(self, order_id: str, payment_id: str, signature: str) -> PaymentVerificationResult:
        if not self.settings.PAYMENT_KEY_SECRET:
            raise LedgerServiceError("PAYMENT_KEY_SECRET is not configured")

        expected = sign_payment(self.settings.PAYMENT_KEY_SECRET, order_id, payment_id)
        is_authentic = hmac.compare_digest(expected.encode(), (signature or "").encode("utf-8", "replace"))

        with self.storage.atomic():
            deposit_id = self.storage.deposit_order_index.get(order_id)
            if deposit_id is None:
                raise DepositNotFoundError(f"Deposit record for order {order_id} not found")
            deposit_data = self.storage.for_update("deposits", deposit_id)

            if deposit_data["status"] == DepositStatus.SUCCESS:
                log.info("Deposit %s already credited, ignoring replay", deposit_id)
                return PaymentVerificationResult(
                    verified=True, already_processed=True, deposit=Deposit(**deposit_data),
                )

            if is_authentic:
                self.accounts.ensure_active(deposit_data["user_id"])
                deposit_data["status"] = DepositStatus.SUCCESS
                deposit_data["payment_id"] = payment_id
                deposit_data["signature"] = signature
                self.wallets.increment(
                    deposit_data["user_id"],
                    principal=deposit_data["amount"],
                    total_deposited=deposit_data["amount"],
                )
                self.transactions.append(
                    user_id=deposit_data["user_id"],
                    type=TransactionType.DEPOSIT,
                    amount=deposit_data["amount"],
                    status=TransactionStatus.SUCCESS,
                    reference_id=deposit_id,
                    description=f"Deposit via payment gateway (Order: {order_id})",
                )
            else:
                deposit_data["status"] = DepositStatus.FAILED
            deposit = Deposit(**deposit_data)

        if not is_authentic:
            log.warning("Signature mismatch for deposit %s (order %s)", deposit.id, order_id)
            raise PaymentVerificationError("Invalid Signature")

        log.info("Deposit %s credited %s to user %s", deposit.id, deposit.amount, deposit.user_id)
        self._credit_referrer(deposit)
        return PaymentVerificationResult(verified=True, deposit=deposit)

    def _credit_referrer(self, deposit: Deposit) -> None:
        # Runs after the deposit commit; a failure here is a reconciliation item
        try:
            depositor = self.accounts.get(deposit.user_id)
            if depositor.referred_by is None:
                return
            bonus = round2(deposit.amount * self.settings.REFERRAL_RATE)
            if bonus <= 0:
                return
            with self.storage.atomic():
                self.wallets.increment(depositor.referred_by, principal=bonus, total_profit=bonus)
                self.transactions.append(
                    user_id=depositor.referred_by,
                    type=TransactionType.REFERRAL_BONUS,
                    amount=bonus,
                    status=TransactionStatus.SUCCESS,
                    reference_id=deposit.id,
                    description=f"Referral Bonus ({self.settings.REFERRAL_RATE:.0%}) from {depositor.name}'s deposit",
                )
            log.info("Referral bonus %s credited to %s for deposit %s", bonus, depositor.referred_by, deposit.id)
        except Exception:
            log.exception(
                "Referral bonus for deposit %s was not credited; deposit itself stands, reconcile manually",
                deposit.id,
            )

    def list_by_user(self, user_id: UUID) -> list[Deposit]:
        with self.storage.lock:
            items = [Deposit(**d) for d in self.storage.deposits.values() if d["user_id"] == user_id]
        items.sort(key=lambda d: d.created_at, reverse=True)
        return items
