# app/payments/calculator.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

CREDIT = "credit"
DEBIT = "debit"


@dataclass(frozen=True)
class BreakdownItem:
    label: str
    amount_cents: int
    kind: str  # credit | debit

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "amount_cents": self.amount_cents, "kind": self.kind}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BreakdownItem":
        return cls(label=payload["label"], amount_cents=int(payload["amount_cents"]), kind=payload["kind"])


@dataclass(frozen=True)
class PayoutCalculation:
    """
    Canonical money breakdown. Both the payment instructions and the receipt
    are rendered from `breakdown`, never recomputed separately.
    """
    gross_cents: int
    retention_fee_cents: int
    tax_withholding_cents: int
    net_cents: int
    has_valid_tax_form: bool
    breakdown: tuple[BreakdownItem, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "gross_cents": self.gross_cents,
            "retention_fee_cents": self.retention_fee_cents,
            "tax_withholding_cents": self.tax_withholding_cents,
            "net_cents": self.net_cents,
            "has_valid_tax_form": self.has_valid_tax_form,
            "breakdown": [b.to_dict() for b in self.breakdown],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PayoutCalculation":
        return cls(
            gross_cents=int(payload["gross_cents"]),
            retention_fee_cents=int(payload["retention_fee_cents"]),
            tax_withholding_cents=int(payload["tax_withholding_cents"]),
            net_cents=int(payload["net_cents"]),
            has_valid_tax_form=bool(payload["has_valid_tax_form"]),
            breakdown=tuple(BreakdownItem.from_dict(b) for b in payload.get("breakdown") or []),
        )


def tax_withholding_cents(gross_cents: int, rate: Decimal | str) -> int:
    # half-up to the nearest cent
    amount = Decimal(gross_cents) * Decimal(str(rate))
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_net_payout(
    has_valid_tax_form: bool,
    *,
    gross_cents: int,
    retention_fee_cents: int,
    tax_rate: Decimal | str,
    rate_label: Optional[str] = None,
) -> PayoutCalculation:
    if gross_cents <= 0:
        raise ValueError("gross_cents must be > 0")
    if retention_fee_cents < 0:
        raise ValueError("retention_fee_cents must be >= 0")

    items = [
        BreakdownItem("Gross payout", gross_cents, CREDIT),
        BreakdownItem("Retention fee (next membership cycle)", retention_fee_cents, DEBIT),
    ]

    tax = 0
    if not has_valid_tax_form:
        tax = tax_withholding_cents(gross_cents, tax_rate)
        pct = rate_label or f"{(Decimal(str(tax_rate)) * 100).normalize()}%"
        items.append(BreakdownItem(f"Tax withholding ({pct})", tax, DEBIT))

    net = gross_cents - retention_fee_cents - tax
    if net < 0:
        raise ValueError("deductions exceed gross payout")

    items.append(BreakdownItem("Net payout", net, CREDIT))

    return PayoutCalculation(
        gross_cents=gross_cents,
        retention_fee_cents=retention_fee_cents,
        tax_withholding_cents=tax,
        net_cents=net,
        has_valid_tax_form=has_valid_tax_form,
        breakdown=tuple(items),
    )
