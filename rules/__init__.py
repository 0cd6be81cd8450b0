"""
Money Rules Package

Pure, storage-free rules shared by the ledger engines: currency rounding,
threshold deductions (TDS and settlement surcharge), the admin/user profit
split and payout routing.
"""

from .tax_rules import (
    CENT,
    ZERO,
    Deduction,
    ThresholdRule,
    round2,
    has_cent_precision,
    to_decimal,
    tds_rule,
    surcharge_rule,
)
from .profit_share import PayoutPreference, split_pool, pro_rata_share

__all__ = [
    "CENT",
    "ZERO",
    "Deduction",
    "ThresholdRule",
    "round2",
    "has_cent_precision",
    "to_decimal",
    "tds_rule",
    "surcharge_rule",
    "PayoutPreference",
    "split_pool",
    "pro_rata_share",
]
