import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from rules import ZERO, PayoutPreference, has_cent_precision, pro_rata_share, round2, split_pool, tds_rule

from .accounts import require_admin
from .config import Settings
from .errors import LedgerValidationError, PartialBatchFailure
from .models import (
    Actor,
    DistributionResult,
    ProfitDistribution,
    TransactionStatus,
    TransactionType,
)
from .notifications import Notifier
from .storage import InMemoryStorage
from .transactions import TransactionLedger
from .wallets import WalletStore

log = logging.getLogger(__name__)


class ProfitDistributionEngine:
    """Splits a declared profit pro-rata across every wallet holding principal.

    The whole batch (wallet credits, PROFIT ledger rows, notifications and
    the audit row) commits together or not at all.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        wallets: WalletStore,
        transactions: TransactionLedger,
        notifier: Notifier,
        settings: Settings,
    ):
        self.storage = storage
        self.wallets = wallets
        self.transactions = transactions
        self.notifier = notifier
        self.settings = settings
        self.tax_rule = tds_rule(settings.TDS_THRESHOLD, settings.TDS_RATE)

    def distribute(self, actor: Actor, declared_profit: Decimal) -> DistributionResult:
        require_admin(actor)
        if not has_cent_precision(declared_profit):
            raise LedgerValidationError("Profit amount can have at most 2 decimal places")
        if declared_profit <= 0:
            raise LedgerValidationError("Profit amount must be positive")
        declared_profit = round2(declared_profit)

        admin_share, user_pool = split_pool(declared_profit, self.settings.ADMIN_SHARE_RATE)
        computed = 0
        try:
            with self.storage.atomic():
                now = datetime.now(timezone.utc)
                eligible = self.wallets.find(lambda w: w.principal > 0)
                total_capital = sum((w.principal for w in eligible), ZERO)

                wallet_ops = []
                entries = []
                messages = []
                total_tax = ZERO
                for wallet in eligible:
                    computed += 1
                    share = pro_rata_share(wallet.principal, total_capital, user_pool)
                    deduction = self.tax_rule.apply(share)
                    if deduction.net <= 0:
                        log.warning(
                            "Skipping user %s: share %s rounds to nothing", wallet.user_id, share
                        )
                        continue

                    preference = self._preference_for(wallet.user_id)
                    wallet_ops.append((wallet.user_id, {
                        preference.credit_bucket: deduction.net,
                        "total_profit": deduction.net,
                    }))
                    description = f"Monthly Profit Share ({preference.label})"
                    if deduction.is_taxed:
                        description += f" [TDS: -{deduction.tax}]"
                    entries.append({
                        "user_id": wallet.user_id,
                        "type": TransactionType.PROFIT,
                        "amount": deduction.net,
                        "tax_deducted": deduction.tax,
                        "status": TransactionStatus.SUCCESS,
                        "description": description,
                        "created_at": now,
                    })
                    messages.append((
                        wallet.user_id,
                        f"You received {deduction.net} as your share of the monthly profit distribution.",
                    ))
                    total_tax += deduction.tax

                if wallet_ops:
                    self.wallets.bulk_increment(wallet_ops)
                    self.transactions.append_many(entries)
                    for user_id, message in messages:
                        self.notifier.notify(user_id, "Profit Credited", message, created_at=now)

                record = self._record(declared_profit, admin_share, user_pool, len(wallet_ops), total_tax, now)
        except Exception as e:
            log.exception(
                "Profit distribution of %s rolled back after %d wallet(s)", declared_profit, computed
            )
            raise PartialBatchFailure("profit distribution", computed, e) from e

        if record.distributed_to_user_count == 0:
            log.info("No eligible investors; profit %s logged but not distributed", declared_profit)
        else:
            log.info(
                "Distributed %s of %s to %d user(s), TDS withheld %s",
                user_pool, declared_profit, record.distributed_to_user_count, total_tax,
            )
        return DistributionResult(
            total_profit=declared_profit,
            admin_share=admin_share,
            user_share=user_pool,
            recipients=record.distributed_to_user_count,
            total_tax=record.total_tax_deducted,
            distribution_id=record.id,
        )

    def history(self, actor: Actor) -> list[ProfitDistribution]:
        require_admin(actor)
        with self.storage.lock:
            items = [ProfitDistribution(**d) for d in self.storage.distributions.values()]
        items.sort(key=lambda d: d.distribution_date, reverse=True)
        return items

    def _preference_for(self, user_id) -> PayoutPreference:
        # Read at distribution time, never cached
        user = self.storage.users.get(user_id) or {}
        return PayoutPreference(user.get("payout_preference") or PayoutPreference.COMPOUND)

    def _record(self, declared, admin_share, user_pool, recipients, total_tax, now) -> ProfitDistribution:
        record_data = {
            "id": uuid4(),
            "total_profit": declared,
            "admin_share": admin_share,
            "user_share": user_pool,
            "distributed_to_user_count": recipients,
            "total_tax_deducted": total_tax,
            "distribution_date": now,
        }
        self.storage.insert("distributions", record_data["id"], record_data)
        return ProfitDistribution(**record_data)
