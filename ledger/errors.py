class LedgerServiceError(Exception):
    pass


class LedgerValidationError(LedgerServiceError):
    pass


class InsufficientFundsError(LedgerServiceError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class WalletNotFoundError(NotFoundError):
    pass


class WithdrawalNotFoundError(NotFoundError):
    pass


class DepositNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class AlreadyProcessedError(LedgerServiceError):
    pass


class AlreadyExistsError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class AuthorizationError(LedgerServiceError):
    pass


class PaymentVerificationError(LedgerServiceError):
    pass


class PartialBatchFailure(LedgerServiceError):
    """A batch (distribution or settlement) failed before commit.

    Nothing from the batch is visible afterwards; the wallets computed so
    far are reported so operators can tell how far the run got.
    """

    def __init__(self, operation: str, computed: int, cause: Exception):
        self.operation = operation
        self.computed = computed
        self.cause = cause
        super().__init__(
            f"{operation} aborted after computing {computed} wallet(s): {cause}"
        )
