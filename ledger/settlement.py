import logging
from datetime import datetime, timezone
from decimal import Decimal

from rules import ZERO, has_cent_precision, round2, surcharge_rule

from .accounts import require_admin
from .config import Settings
from .errors import LedgerValidationError, PartialBatchFailure
from .models import Actor, SettlementResult, TransactionStatus, TransactionType, Withdrawal
from .notifications import Notifier
from .storage import InMemoryStorage
from .transactions import TransactionLedger
from .wallets import WalletStore
from .withdrawals import WithdrawalService

log = logging.getLogger(__name__)


class SettlementEngine:
    """Sweeps profit above a floor out of every wallet into pending withdrawals."""

    def __init__(
        self,
        storage: InMemoryStorage,
        wallets: WalletStore,
        transactions: TransactionLedger,
        withdrawals: WithdrawalService,
        notifier: Notifier,
        settings: Settings,
    ):
        self.storage = storage
        self.wallets = wallets
        self.transactions = transactions
        self.withdrawals = withdrawals
        self.notifier = notifier
        self.tax_rule = surcharge_rule(settings.SURCHARGE_THRESHOLD, settings.SURCHARGE_RATE)

    def settle(self, actor: Actor, min_balance: Decimal) -> SettlementResult:
        require_admin(actor)
        if not has_cent_precision(min_balance):
            raise LedgerValidationError("min_balance can have at most 2 decimal places")
        if min_balance < 0:
            raise LedgerValidationError("min_balance must be zero or more")
        min_balance = round2(min_balance)

        created: list[tuple[Withdrawal, Decimal, Decimal]] = []
        computed = 0
        try:
            with self.storage.atomic():
                now = datetime.now(timezone.utc)
                eligible = self.wallets.find(lambda w: w.profit > min_balance)

                wallet_ops = []
                sweeps = []
                for wallet in eligible:
                    computed += 1
                    deduction = self.tax_rule.apply(wallet.profit - min_balance)
                    if deduction.net <= 0:
                        log.warning("Skipping user %s: nothing left after surcharge", wallet.user_id)
                        continue
                    # Gross leaves the profit bucket; the surcharge is not refunded
                    wallet_ops.append((wallet.user_id, {
                        "profit": -deduction.gross,
                        "total_withdrawn": deduction.gross,
                    }))
                    sweeps.append((wallet.user_id, deduction))

                if wallet_ops:
                    self.wallets.bulk_increment(wallet_ops)
                    entries = []
                    for user_id, deduction in sweeps:
                        withdrawal = self.withdrawals.create_hold(
                            user_id,
                            amount=deduction.net,
                            held_amount=deduction.gross,
                            hold_bucket="profit",
                            remark=(
                                f"Quarterly Settlement [Gross: {deduction.gross}, "
                                f"Tax: {deduction.tax}, Floor: {min_balance}]"
                            ),
                            created_at=now,
                        )
                        entries.append({
                            "user_id": user_id,
                            "type": TransactionType.WITHDRAWAL,
                            "amount": deduction.net,
                            "tax_deducted": deduction.tax,
                            "status": TransactionStatus.PENDING,
                            "reference_id": withdrawal.id,
                            "description": self._describe(deduction),
                            "created_at": now,
                        })
                        created.append((withdrawal, deduction.gross, deduction.tax))
                    self.transactions.append_many(entries)
        except Exception as e:
            log.exception("Settlement at floor %s rolled back after %d wallet(s)", min_balance, computed)
            raise PartialBatchFailure("settlement", computed, e) from e

        total_amount = sum((w.amount for w, _, _ in created), ZERO)
        log.info("Settlement created %d withdrawal(s) totalling %s", len(created), total_amount)

        for withdrawal, gross, tax in created:
            self.notifier.send_email(
                withdrawal.user_id,
                "Quarterly Settlement Processed",
                "We have processed a quarterly settlement for your account.\n"
                f"Processed Amount (Net): {withdrawal.amount}\n"
                f"Gross Amount: {gross}\n"
                + (f"Tax/Fees: {tax}\n" if tax > 0 else "")
                + f"Global Min Balance Maintained: {min_balance}\n"
                "This amount is now pending withdrawal approval.",
            )

        return SettlementResult(count=len(created), total_amount=total_amount)

    def _describe(self, deduction) -> str:
        if not deduction.is_taxed:
            return "Quarterly Settlement"
        return f"Quarterly Settlement (Inc. {self.tax_rule.rate:.0%} Cess)"
