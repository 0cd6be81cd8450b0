import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

from .accounts import AccountService
from .config import Settings, get_settings
from .deposits import DepositService
from .distribution import ProfitDistributionEngine
from .notifications import EmailSender, Notifier
from .settlement import SettlementEngine
from .storage import InMemoryStorage
from .transactions import TransactionLedger
from .wallets import WalletStore
from .withdrawals import WithdrawalService

log = logging.getLogger(__name__)


class LedgerService:
    """Wires every ledger component to one storage backend."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        email_sender: Optional[EmailSender] = None,
        executor: Optional[Executor] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self._owned_executor: Optional[ThreadPoolExecutor] = None
        if executor is None and self.settings.EMAIL_WORKERS > 0:
            executor = self._owned_executor = ThreadPoolExecutor(
                max_workers=self.settings.EMAIL_WORKERS, thread_name_prefix="ledger-email"
            )
        self.notifier = Notifier(self.storage, email_sender, executor)

        self.wallets = WalletStore(self.storage)
        self.transactions = TransactionLedger(self.storage)
        self.accounts = AccountService(self.storage, self.wallets, self.notifier, self.settings)
        self.deposits = DepositService(
            self.storage, self.wallets, self.transactions, self.accounts, self.settings,
        )
        self.withdrawals = WithdrawalService(
            self.storage, self.wallets, self.transactions, self.accounts, self.notifier, self.settings,
        )
        self.distributions = ProfitDistributionEngine(
            self.storage, self.wallets, self.transactions, self.notifier, self.settings,
        )
        self.settlements = SettlementEngine(
            self.storage, self.wallets, self.transactions, self.withdrawals, self.notifier, self.settings,
        )
        log.debug("Ledger service ready (email workers: %d)", self.settings.EMAIL_WORKERS)

    def close(self) -> None:
        """Drain queued emails and stop the worker pool this service started."""
        if self._owned_executor is not None:
            self._owned_executor.shutdown(wait=True)
            self._owned_executor = None
            # Anything sent after close goes out inline
            self.notifier.executor = None
            log.debug("Email workers stopped")
