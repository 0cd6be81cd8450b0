from decimal import Decimal
from enum import Enum

from .tax_rules import Number, ZERO, round2, to_decimal


class PayoutPreference(str, Enum):
    COMPOUND = "COMPOUND"
    PAYOUT = "PAYOUT"

    @property
    def credit_bucket(self) -> str:
        # COMPOUND reinvests into principal, PAYOUT parks profit for settlement
        return "principal" if self is PayoutPreference.COMPOUND else "profit"

    @property
    def label(self) -> str:
        return "Reinvested" if self is PayoutPreference.COMPOUND else "Payout Wallet"


def split_pool(declared_profit: Number, admin_share_rate: Number) -> tuple[Decimal, Decimal]:
    """Split a declared profit into (admin_share, user_pool).

    The user pool is whatever the admin share leaves, so the two always add
    back up to the declared figure.
    """
    declared = round2(declared_profit)
    admin_share = round2(declared * to_decimal(admin_share_rate))
    return admin_share, declared - admin_share


def pro_rata_share(capital: Number, total_capital: Number, pool: Number) -> Decimal:
    total = to_decimal(total_capital)
    if total <= 0:
        return ZERO
    ratio = to_decimal(capital) / total
    return round2(ratio * to_decimal(pool))
