from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union
import json


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Round half-up to two decimal places, the way amounts are displayed."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def has_cent_precision(value: Number) -> bool:
    """True when the amount carries no digits past the cent."""
    amount = to_decimal(value)
    return amount.is_finite() and amount == round2(amount)


@dataclass(frozen=True)
class Deduction:
    gross: Decimal
    tax: Decimal
    net: Decimal

    @property
    def is_taxed(self) -> bool:
        return self.tax > 0

    def to_dict(self) -> dict:
        return {"gross": str(self.gross), "tax": str(self.tax), "net": str(self.net)}


@dataclass(frozen=True)
class ThresholdRule:
    """A flat-rate deduction that only kicks in strictly above a threshold."""

    name: str
    threshold: Decimal
    rate: Decimal
    description: str = ""

    def applies_to(self, amount: Number) -> bool:
        return to_decimal(amount) > self.threshold

    def apply(self, amount: Number) -> Deduction:
        gross = round2(amount)
        if not self.applies_to(gross):
            return Deduction(gross=gross, tax=ZERO, net=gross)
        tax = round2(gross * self.rate)
        return Deduction(gross=gross, tax=tax, net=round2(gross - tax))

    def to_dict(self) -> dict:
        return {
            "name": self.name, "description": self.description,
            "threshold": str(self.threshold), "rate": str(self.rate),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> "ThresholdRule":
        return cls(
            name=data["name"], description=data.get("description", ""),
            threshold=to_decimal(data["threshold"]), rate=to_decimal(data["rate"]),
        )


def tds_rule(threshold: Number = Decimal("5000"), rate: Number = Decimal("0.10")) -> ThresholdRule:
    return ThresholdRule(
        name="TDS", threshold=to_decimal(threshold), rate=to_decimal(rate),
        description="Tax deducted at source on profit shares above the threshold",
    )


def surcharge_rule(threshold: Number = Decimal("50000"), rate: Number = Decimal("0.01")) -> ThresholdRule:
    return ThresholdRule(
        name="SURCHARGE", threshold=to_decimal(threshold), rate=to_decimal(rate),
        description="Exit cess on settlement sweeps above the threshold",
    )


if __name__ == "__main__":
    for rule in (tds_rule(), surcharge_rule()):
        print(rule.to_json())
        for amount in ("5000", "5000.01", "50000", "60000"):
            print(f"  {amount} -> {rule.apply(amount).to_dict()}")
