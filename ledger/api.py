import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .errors import (
    AlreadyExistsError,
    AlreadyProcessedError,
    AuthorizationError,
    InsufficientFundsError,
    LedgerServiceError,
    LedgerValidationError,
    NotFoundError,
    PartialBatchFailure,
    PaymentVerificationError,
    UserNotFoundError,
)
from .models import (
    Actor, User, Wallet, Deposit, Withdrawal, Notification,
    RegisterUserRequest, CreateDepositRequest, VerifyPaymentRequest, WithdrawalRequest,
    ManageWithdrawalRequest, DistributeProfitRequest, SettlementRequest,
    PayoutPreferenceRequest, ClosureRequest, ResolveClosureRequest,
    PaymentVerificationResult, WithdrawalCreated, DistributionResult, SettlementResult,
    TransactionPage, TransactionReport,
)
from .service import LedgerService

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    ledger_service.close()


app = FastAPI(
    title="Profit-Sharing Ledger API",
    description="Wallets, deposits, withdrawals, profit distribution and settlement with an append-only ledger",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(settings=settings)


def get_actor(x_user_id: Optional[UUID] = Header(default=None)) -> Actor:
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return ledger_service.accounts.actor_for(x_user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": settings.SERVICE_NAME}


@app.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(request: RegisterUserRequest) -> User:
    try:
        return ledger_service.accounts.register(request.name, request.email, request.referral_code)
    except AlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@app.get("/users/me/wallet", response_model=Wallet, tags=["Users"])
def get_wallet(actor: Actor = Depends(get_actor)) -> Wallet:
    try:
        return ledger_service.wallets.get(actor.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.get("/users/me/transactions", response_model=TransactionPage, tags=["Users"])
def get_transactions(
    page: int = 1,
    page_size: Optional[int] = None,
    duration: str = "all",
    actor: Actor = Depends(get_actor),
) -> TransactionPage:
    try:
        return ledger_service.transactions.list_by_user(
            actor.user_id, page, page_size or settings.DEFAULT_PAGE_SIZE, duration,
        )
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/users/me/notifications", response_model=list[Notification], tags=["Users"])
def get_notifications(actor: Actor = Depends(get_actor)) -> list[Notification]:
    return ledger_service.notifier.list_for_user(actor.user_id)


@app.put("/users/me/payout-preference", response_model=User, tags=["Users"])
def set_payout_preference(request: PayoutPreferenceRequest, actor: Actor = Depends(get_actor)) -> User:
    return ledger_service.accounts.set_payout_preference(actor, request.preference)


@app.post("/users/me/closure", response_model=User, tags=["Users"])
def request_closure(request: ClosureRequest, actor: Actor = Depends(get_actor)) -> User:
    try:
        return ledger_service.accounts.request_closure(actor, request.reason)
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AlreadyProcessedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@app.delete("/users/me/closure", response_model=User, tags=["Users"])
def cancel_closure(actor: Actor = Depends(get_actor)) -> User:
    try:
        return ledger_service.accounts.cancel_closure(actor)
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/deposits", response_model=Deposit, status_code=status.HTTP_201_CREATED, tags=["Deposits"])
def create_deposit(request: CreateDepositRequest, actor: Actor = Depends(get_actor)) -> Deposit:
    try:
        return ledger_service.deposits.create_order(actor, request.amount, request.order_id)
    except AlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/deposits/verify", response_model=PaymentVerificationResult, tags=["Deposits"])
def verify_payment(request: VerifyPaymentRequest, actor: Actor = Depends(get_actor)) -> PaymentVerificationResult:
    try:
        return ledger_service.deposits.confirm(request.order_id, request.payment_id, request.signature)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PaymentVerificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerServiceError as e:
        log.error("Payment verification failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")


@app.post("/withdrawals", response_model=WithdrawalCreated, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def request_withdrawal(request: WithdrawalRequest, actor: Actor = Depends(get_actor)) -> WithdrawalCreated:
    try:
        return ledger_service.withdrawals.request(actor, request.amount)
    except (LedgerValidationError, InsufficientFundsError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


@app.get("/admin/withdrawals", response_model=list[Withdrawal], tags=["Admin"])
def list_pending_withdrawals(actor: Actor = Depends(get_actor)) -> list[Withdrawal]:
    try:
        return ledger_service.withdrawals.list_pending(actor)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


@app.post("/admin/withdrawals/manage", response_model=Withdrawal, tags=["Admin"])
def manage_withdrawal(request: ManageWithdrawalRequest, actor: Actor = Depends(get_actor)) -> Withdrawal:
    try:
        return ledger_service.withdrawals.manage(
            actor, request.withdrawal_id, request.action, request.remark, request.utr_number,
        )
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AlreadyProcessedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LedgerServiceError as e:
        log.error("Withdrawal decision failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")


@app.post("/admin/distribute-profit", response_model=DistributionResult, tags=["Admin"])
def distribute_profit(request: DistributeProfitRequest, actor: Actor = Depends(get_actor)) -> DistributionResult:
    try:
        return ledger_service.distributions.distribute(actor, request.amount)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PartialBatchFailure as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@app.post("/admin/settle", response_model=SettlementResult, tags=["Admin"])
def settle(request: SettlementRequest, actor: Actor = Depends(get_actor)) -> SettlementResult:
    try:
        return ledger_service.settlements.settle(actor, request.min_balance)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PartialBatchFailure as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@app.get("/admin/reports/transactions", response_model=TransactionReport, tags=["Admin"])
def transactions_report(page: int = 1, limit: int = 10, actor: Actor = Depends(get_actor)) -> TransactionReport:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can perform this action")
    try:
        return ledger_service.transactions.list_all(page, limit)
    except LedgerValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/admin/users/{user_id}/closure", response_model=User, tags=["Admin"])
def resolve_closure(user_id: UUID, request: ResolveClosureRequest, actor: Actor = Depends(get_actor)) -> User:
    try:
        return ledger_service.accounts.resolve_closure(actor, user_id, request.action)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AlreadyProcessedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
