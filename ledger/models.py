from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from rules import PayoutPreference


BUCKETS = ("principal", "profit", "referral", "locked")
COUNTERS = ("total_deposited", "total_withdrawn", "total_profit")


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PROFIT = "PROFIT"
    REFERRAL_BONUS = "REFERRAL_BONUS"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class WithdrawalAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class DepositStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"


class ClosureStatus(str, Enum):
    NONE = "NONE"
    REQUESTED = "REQUESTED"
    CLOSED = "CLOSED"


class ClosureAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class Actor(BaseModel):
    """An already-authenticated caller."""

    user_id: UUID
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class User(BaseModel):
    id: UUID
    name: str
    email: str
    role: UserRole = UserRole.USER
    referral_code: str
    referred_by: Optional[UUID] = None
    payout_preference: PayoutPreference = PayoutPreference.COMPOUND
    status: UserStatus = UserStatus.ACTIVE
    closure_status: ClosureStatus = ClosureStatus.NONE
    closure_reason: Optional[str] = None
    closure_requested_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def as_actor(self) -> Actor:
        return Actor(user_id=self.id, role=self.role)


class Wallet(BaseModel):
    user_id: UUID
    principal: Decimal = Decimal("0.00")
    profit: Decimal = Decimal("0.00")
    referral: Decimal = Decimal("0.00")
    locked: Decimal = Decimal("0.00")
    total_deposited: Decimal = Decimal("0.00")
    total_withdrawn: Decimal = Decimal("0.00")
    total_profit: Decimal = Decimal("0.00")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def total_balance(self) -> Decimal:
        return self.principal + self.profit + self.referral + self.locked


class Transaction(BaseModel):
    id: UUID
    user_id: UUID
    type: TransactionType
    amount: Decimal
    tax_deducted: Decimal = Decimal("0.00")
    status: TransactionStatus
    reference_id: Optional[UUID] = None
    description: str = ""
    created_at: datetime
    sequence: int = 0

    model_config = ConfigDict(from_attributes=True)


class Withdrawal(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    held_amount: Decimal
    hold_bucket: str = "principal"
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    admin_remark: Optional[str] = None
    utr_number: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def can_process(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class Deposit(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    order_id: str
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    status: DepositStatus = DepositStatus.PENDING
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProfitDistribution(BaseModel):
    id: UUID
    total_profit: Decimal
    admin_share: Decimal
    user_share: Decimal
    distributed_to_user_count: int
    total_tax_deducted: Decimal = Decimal("0.00")
    distribution_date: datetime

    model_config = ConfigDict(from_attributes=True)


class Notification(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    is_read: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- requests ---


class RegisterUserRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    referral_code: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Asha Investor", "email": "asha@example.com", "referral_code": "RAV4821"}
    })


class CreateDepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    order_id: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "order_id": "order_NX1f2a9c",
            "payment_id": "pay_NX1f3bb0",
            "signature": "5f1c...hex-hmac-sha256",
        }
    })


class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., description="Amount to withdraw from principal")


class ManageWithdrawalRequest(BaseModel):
    withdrawal_id: UUID
    action: WithdrawalAction
    remark: Optional[str] = None
    utr_number: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "withdrawal_id": "550e8400-e29b-41d4-a716-446655440000",
            "action": "APPROVE",
            "utr_number": "UTR0000012345678",
        }
    })


class DistributeProfitRequest(BaseModel):
    amount: Decimal = Field(..., description="Declared gross profit for the period")


class SettlementRequest(BaseModel):
    min_balance: Decimal = Field(..., description="Profit floor left in every wallet")


class PayoutPreferenceRequest(BaseModel):
    preference: PayoutPreference


class ClosureRequest(BaseModel):
    reason: Optional[str] = None


class ResolveClosureRequest(BaseModel):
    action: ClosureAction


# --- responses ---


class PaymentVerificationResult(BaseModel):
    verified: bool
    already_processed: bool = False
    deposit: Optional[Deposit] = None


class WithdrawalCreated(BaseModel):
    withdrawal_id: UUID
    message: str = "Withdrawal request created successfully"


class DistributionResult(BaseModel):
    total_profit: Decimal
    admin_share: Decimal
    user_share: Decimal
    recipients: int
    total_tax: Decimal = Decimal("0.00")
    distribution_id: Optional[UUID] = None


class SettlementResult(BaseModel):
    count: int
    total_amount: Decimal


class TransactionPage(BaseModel):
    user_id: UUID
    entries: list[Transaction]
    total_count: int
    page: int
    page_size: int


class TransactionReportRow(Transaction):
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_documents: int
    limit: int


class TransactionReport(BaseModel):
    data: list[TransactionReportRow]
    pagination: Pagination


class MigrationReport(BaseModel):
    migrated: int = 0
    skipped: int = 0
    clamped: int = 0
