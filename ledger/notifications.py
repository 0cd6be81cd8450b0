import logging
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import UUID, uuid4

from .models import Notification
from .storage import InMemoryStorage

log = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LoggingEmailSender:
    """Stands in for the mail provider; writes outgoing mail to the log."""

    def send(self, to: str, subject: str, body: str) -> None:
        log.info("Email to %s: %s", to, subject)


class Notifier:
    def __init__(
        self,
        storage: InMemoryStorage,
        email_sender: Optional[EmailSender] = None,
        executor: Optional[Executor] = None,
    ):
        self.storage = storage
        self.email_sender = email_sender or LoggingEmailSender()
        self.executor = executor

    def notify(self, user_id: UUID, title: str, message: str, created_at: Optional[datetime] = None) -> Notification:
        notification_data = {
            "id": uuid4(),
            "user_id": user_id,
            "title": title,
            "message": message,
            "is_read": False,
            "created_at": created_at or datetime.now(timezone.utc),
        }
        with self.storage.lock:
            self.storage.insert("notifications", notification_data["id"], notification_data)
        return Notification(**notification_data)

    def safe_notify(self, user_id: UUID, title: str, message: str) -> None:
        try:
            self.notify(user_id, title, message)
        except Exception:
            log.exception("Failed to store notification %r for user %s", title, user_id)

    def send_email(self, user_id: UUID, subject: str, body: str) -> None:
        """Fire-and-forget: failures are logged, never raised."""
        user = self.storage.users.get(user_id)
        if not user or not user.get("email"):
            log.warning("No email address for user %s, skipping %r", user_id, subject)
            return
        if self.executor is not None:
            try:
                self.executor.submit(self._deliver, user["email"], subject, body)
            except Exception:
                log.exception("Failed to queue email %r to %s", subject, user["email"])
            return
        self._deliver(user["email"], subject, body)

    def _deliver(self, to: str, subject: str, body: str) -> None:
        try:
            self.email_sender.send(to, subject, body)
        except Exception:
            log.exception("Failed to send email %r to %s", subject, to)

    def list_for_user(self, user_id: UUID) -> list[Notification]:
        with self.storage.lock:
            items = [Notification(**n) for n in self.storage.notifications.values() if n["user_id"] == user_id]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items
