from decimal import Decimal

import pytest

from ledger.config import Settings
from ledger.deposits import sign_payment
from ledger.service import LedgerService


GATEWAY_SECRET = "test-gateway-secret"


class RecordingEmailSender:
    def __init__(self):
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append({"to": to, "subject": subject, "body": body})


class FailingEmailSender:
    def __init__(self):
        self.attempts = 0

    def send(self, to: str, subject: str, body: str) -> None:
        self.attempts += 1
        raise ConnectionError("SMTP relay unavailable")


@pytest.fixture
def settings():
    return Settings(_env_file=None, PAYMENT_KEY_SECRET=GATEWAY_SECRET, EMAIL_WORKERS=0)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def service(settings, email_sender):
    return LedgerService(settings=settings, email_sender=email_sender)


@pytest.fixture
def admin(service):
    # First registered account becomes the admin
    return service.accounts.register("Admin Root", "admin@example.com").as_actor()


@pytest.fixture
def fund(service):
    def _fund(actor, amount, order_id=None):
        deposit = service.deposits.create_order(actor, Decimal(str(amount)), order_id)
        payment_id = f"pay_{deposit.id.hex[:12]}"
        signature = sign_payment(GATEWAY_SECRET, deposit.order_id, payment_id)
        return service.deposits.confirm(deposit.order_id, payment_id, signature)
    return _fund


@pytest.fixture
def make_investor(service, admin, fund):
    def _make(name, email, amount=None, referral_code=None):
        user = service.accounts.register(name, email, referral_code)
        actor = user.as_actor()
        if amount:
            fund(actor, amount)
        return actor
    return _make


@pytest.fixture
def failing_email_sender():
    return FailingEmailSender()
