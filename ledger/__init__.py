"""
Profit-Sharing Ledger

This module provides:
- Four-bucket wallets (principal, profit, referral, locked) with atomic increments
- An append-only transaction ledger
- Deposit confirmation with at-most-once crediting and referral bonuses
- Withdrawal lifecycle: pending hold -> approved / rejected with refund
- Batch profit distribution with TDS and batch settlement sweeps with surcharge
"""

from .errors import (
    LedgerServiceError,
    LedgerValidationError,
    InsufficientFundsError,
    NotFoundError,
    AlreadyProcessedError,
    AuthorizationError,
    PaymentVerificationError,
    PartialBatchFailure,
)
from .models import (
    Actor,
    TransactionType,
    TransactionStatus,
    WithdrawalStatus,
    DepositStatus,
    Wallet,
    Transaction,
    Withdrawal,
    Deposit,
    ProfitDistribution,
    User,
)
from .storage import InMemoryStorage
from .service import LedgerService

__all__ = [
    "LedgerServiceError",
    "LedgerValidationError",
    "InsufficientFundsError",
    "NotFoundError",
    "AlreadyProcessedError",
    "AuthorizationError",
    "PaymentVerificationError",
    "PartialBatchFailure",
    "Actor",
    "TransactionType",
    "TransactionStatus",
    "WithdrawalStatus",
    "DepositStatus",
    "Wallet",
    "Transaction",
    "Withdrawal",
    "Deposit",
    "ProfitDistribution",
    "User",
    "InMemoryStorage",
    "LedgerService",
]
