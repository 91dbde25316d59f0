"""
Best-effort reading of payment screenshots.

The OCR text is scanned for three independent signals: an amount, a
transaction reference and a success keyword. Each adds to a confidence score
(+40, +30, +30). A contribution is auto-verified only when the score reaches
the threshold, the amount is within tolerance of the expected amount and a
success keyword was seen. Anything else goes to manual review; this is a
pre-filter, never proof of payment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

AMOUNT_WEIGHT = 40
REFERENCE_WEIGHT = 30
KEYWORD_WEIGHT = 30

AMOUNT_PATTERN = re.compile(
    r"(?:₹|\brs\.?|\binr)\s*([0-9][0-9,]*(?:\.[0-9]{1,2})?)", re.IGNORECASE
)
REFERENCE_PATTERN = re.compile(r"(?<!\d)(\d{12})(?!\d)")
SUCCESS_PATTERN = re.compile(
    r"\b(successful|success|completed|paid|credited)\b", re.IGNORECASE
)


@dataclass(frozen=True)
class PaymentEvidence:
    amount: Optional[Decimal]
    reference: Optional[str]
    success_keyword: Optional[str]

    @property
    def confidence(self) -> int:
        score = 0
        if self.amount is not None:
            score += AMOUNT_WEIGHT
        if self.reference:
            score += REFERENCE_WEIGHT
        if self.success_keyword:
            score += KEYWORD_WEIGHT
        return score

    def amount_matches(self, expected: Decimal, tolerance: Decimal) -> bool:
        if self.amount is None:
            return False
        return abs(self.amount - expected) <= tolerance

    def as_dict(self) -> dict:
        return {
            "amount": str(self.amount) if self.amount is not None else None,
            "reference": self.reference,
            "success_keyword": self.success_keyword,
            "confidence": self.confidence,
        }


def _parse_amount(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def analyze_payment_text(text: str) -> PaymentEvidence:
    text = text or ""
    amount = None
    for match in AMOUNT_PATTERN.finditer(text):
        amount = _parse_amount(match.group(1))
        if amount is not None:
            break
    reference_match = REFERENCE_PATTERN.search(text)
    keyword_match = SUCCESS_PATTERN.search(text)
    return PaymentEvidence(
        amount=amount,
        reference=reference_match.group(1) if reference_match else None,
        success_keyword=keyword_match.group(1).lower() if keyword_match else None,
    )


def should_auto_verify(
    evidence: PaymentEvidence,
    expected_amount: Decimal,
    *,
    tolerance: Decimal = Decimal("1.00"),
    threshold: int = 70,
) -> bool:
    return (
        evidence.confidence >= threshold
        and evidence.amount_matches(expected_amount, tolerance)
        and evidence.success_keyword is not None
    )
