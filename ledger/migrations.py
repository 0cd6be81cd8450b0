"""
One-time backfill for wallets written by the legacy schema.

Legacy wallet documents carried a single ``balance`` (compounded principal)
and a ``payoutWalletBalance`` (withdrawable profit), and some were missing
fields altogether. This routine maps them onto the four-bucket layout once,
so no read path ever has to patch records on the fly.

This is the only code allowed to write absolute wallet values.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from rules import ZERO, round2

from .models import BUCKETS, COUNTERS, MigrationReport
from .storage import InMemoryStorage

log = logging.getLogger(__name__)

LEGACY_FIELD_MAP = {
    "balance": "principal",
    "payoutWalletBalance": "profit",
    "referralBalance": "referral",
    "lockedBalance": "locked",
    "totalDeposited": "total_deposited",
    "totalWithdrawn": "total_withdrawn",
    "totalProfit": "total_profit",
}


def normalize_legacy_wallet(record: dict) -> tuple[dict, int]:
    """Return (four-bucket wallet fields, number of clamped values)."""
    fields = {name: ZERO for name in BUCKETS + COUNTERS}
    clamped = 0
    for key, value in record.items():
        target = LEGACY_FIELD_MAP.get(key, key if key in fields else None)
        if target is None or value is None:
            continue
        amount = round2(value)
        if amount < 0:
            log.warning("Clamping negative %s=%s to zero for user %s", key, amount, record.get("userId"))
            amount = ZERO
            clamped += 1
        fields[target] = amount
    return fields, clamped


def migrate_legacy_wallets(
    storage: InMemoryStorage,
    records: Iterable[dict],
    overwrite: bool = False,
) -> MigrationReport:
    report = MigrationReport()
    now = datetime.now(timezone.utc)
    with storage.atomic():
        for record in records:
            raw_user_id = record.get("userId") or record.get("user_id")
            if raw_user_id is None:
                log.warning("Skipping legacy wallet without a user id: %r", record)
                report.skipped += 1
                continue
            user_id = raw_user_id if isinstance(raw_user_id, UUID) else UUID(str(raw_user_id))
            existing = storage.wallets.get(user_id)
            if existing is not None and not overwrite:
                report.skipped += 1
                continue

            fields, clamped = normalize_legacy_wallet(record)
            wallet_data = {
                "user_id": user_id,
                "created_at": existing["created_at"] if existing else record.get("createdAt") or now,
                "updated_at": now,
                **fields,
            }
            storage.insert("wallets", user_id, wallet_data)
            report.migrated += 1
            report.clamped += clamped

    log.info(
        "Legacy wallet migration: %d migrated, %d skipped, %d value(s) clamped",
        report.migrated, report.skipped, report.clamped,
    )
    return report
