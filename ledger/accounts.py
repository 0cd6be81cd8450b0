import logging
import random
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from rules import PayoutPreference

from .config import Settings
from .errors import (
    AlreadyExistsError,
    AlreadyProcessedError,
    AuthorizationError,
    LedgerValidationError,
    UserNotFoundError,
)
from .models import (
    Actor,
    ClosureAction,
    ClosureStatus,
    User,
    UserRole,
    UserStatus,
)
from .notifications import Notifier
from .storage import InMemoryStorage
from .wallets import WalletStore

log = logging.getLogger(__name__)


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise AuthorizationError("Only admins can perform this action")


class AccountService:
    def __init__(self, storage: InMemoryStorage, wallets: WalletStore, notifier: Notifier, settings: Settings):
        self.storage = storage
        self.wallets = wallets
        self.notifier = notifier
        self.settings = settings

    def register(self, name: str, email: str, referral_code: Optional[str] = None) -> User:
        email = email.strip().lower()
        with self.storage.atomic():
            if email in self.storage.email_index:
                raise AlreadyExistsError(f"User already exists with email {email}")

            # The very first account on a fresh install administers it
            role = UserRole.ADMIN if not self.storage.users else UserRole.USER
            referrer_id = self.storage.referral_code_index.get(referral_code) if referral_code else None
            if referral_code and referrer_id is None:
                log.warning("Ignoring unknown referral code %r for %s", referral_code, email)

            user_data = {
                "id": uuid4(),
                "name": name,
                "email": email,
                "role": role,
                "referral_code": self._new_referral_code(name),
                "referred_by": referrer_id,
                "payout_preference": PayoutPreference.COMPOUND,
                "status": UserStatus.ACTIVE,
                "closure_status": ClosureStatus.NONE,
                "closure_reason": None,
                "closure_requested_at": None,
                "created_at": datetime.now(timezone.utc),
            }
            self.storage.insert("users", user_data["id"], user_data)
            self.storage.insert("email_index", email, user_data["id"])
            self.storage.insert("referral_code_index", user_data["referral_code"], user_data["id"])
            self.wallets.create(user_data["id"])

        log.info("Registered user %s (%s) role=%s", user_data["id"], email, role.value)
        return User(**user_data)

    def get(self, user_id: UUID) -> User:
        user_data = self.storage.users.get(user_id)
        if not user_data:
            raise UserNotFoundError(f"User {user_id} not found")
        return User(**user_data)

    def actor_for(self, user_id: UUID) -> Actor:
        return self.get(user_id).as_actor()

    def ensure_active(self, user_id: UUID) -> User:
        user = self.get(user_id)
        if user.status != UserStatus.ACTIVE:
            raise AuthorizationError(f"Account {user_id} is {user.status.value.lower()}")
        return user

    def set_payout_preference(self, actor: Actor, preference: PayoutPreference) -> User:
        with self.storage.lock:
            user_data = self._require(actor.user_id)
            user_data["payout_preference"] = PayoutPreference(preference)
            return User(**user_data)

    def request_closure(self, actor: Actor, reason: Optional[str] = None) -> User:
        with self.storage.lock:
            user_data = self._require(actor.user_id)
            wallet = self.wallets.get(actor.user_id)
            if wallet.total_balance > self.settings.CLOSURE_DUST_TOLERANCE:
                raise LedgerValidationError(
                    f"You have remaining funds ({wallet.total_balance:.2f}). "
                    "Please withdraw them before closing your account."
                )
            if user_data["closure_status"] == ClosureStatus.REQUESTED:
                raise AlreadyProcessedError("Closure request already pending.")
            if user_data["closure_status"] == ClosureStatus.CLOSED:
                raise AlreadyProcessedError("Account is already closed.")

            user_data["closure_status"] = ClosureStatus.REQUESTED
            user_data["closure_reason"] = reason
            user_data["closure_requested_at"] = datetime.now(timezone.utc)
            user = User(**user_data)

        self.notifier.send_email(
            user.id,
            "Account Closure Request Received",
            f"Hello {user.name},\n\nWe have received your request to close your account.\n"
            f"Reason: {reason or 'No reason provided'}\n\n"
            "If you did NOT request this, log in and cancel the request from your profile.",
        )
        return user

    def cancel_closure(self, actor: Actor) -> User:
        with self.storage.lock:
            user_data = self._require(actor.user_id)
            if user_data["closure_status"] != ClosureStatus.REQUESTED:
                raise LedgerValidationError("No pending closure request found.")
            self._reset_closure(user_data)
            user = User(**user_data)

        self.notifier.send_email(
            user.id,
            "Account Closure Request Cancelled",
            f"Hello {user.name},\n\nYour request to close your account has been cancelled.",
        )
        return user

    def resolve_closure(self, actor: Actor, user_id: UUID, action: ClosureAction) -> User:
        require_admin(actor)
        action = ClosureAction(action)
        with self.storage.lock:
            user_data = self._require(user_id)
            if user_data["closure_status"] != ClosureStatus.REQUESTED:
                raise AlreadyProcessedError(f"User {user_id} has no pending closure request")
            if action == ClosureAction.APPROVE:
                # Wallet stays behind for audit; only the user is shut out
                user_data["closure_status"] = ClosureStatus.CLOSED
                user_data["status"] = UserStatus.BLOCKED
            else:
                self._reset_closure(user_data)
            user = User(**user_data)

        log.info("Closure for user %s resolved by %s: %s", user_id, actor.user_id, action.value)
        if action == ClosureAction.APPROVE:
            self.notifier.send_email(
                user.id, "Account Closed",
                f"Hi {user.name},\n\nYour account has been closed as requested.",
            )
        else:
            self.notifier.send_email(
                user.id, "Closure Request Rejected",
                f"Hi {user.name},\n\nYour request to close your account was not approved. "
                "Please contact support for more details.",
            )
        return user

    def _require(self, user_id: UUID) -> dict:
        user_data = self.storage.for_update("users", user_id)
        if not user_data:
            raise UserNotFoundError(f"User {user_id} not found")
        return user_data

    @staticmethod
    def _reset_closure(user_data: dict) -> None:
        user_data["closure_status"] = ClosureStatus.NONE
        user_data["closure_reason"] = None
        user_data["closure_requested_at"] = None

    def _new_referral_code(self, name: str) -> str:
        prefix = "".join(c for c in name.upper() if c.isalnum())[:3].ljust(3, "X")
        while True:
            code = f"{prefix}{random.randint(1000, 9999)}"
            if code not in self.storage.referral_code_index:
                return code
