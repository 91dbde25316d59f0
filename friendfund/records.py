"""
Typed views over the documents stored for campaigns, contributions and
repayment submissions.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from friendfund.money import ZERO, as_money
from friendfund.types import (
    CampaignStatus,
    ContributionKind,
    RepaymentStatus,
    VerificationStatus,
)

ANONYMOUS_NAME = "Anonymous"


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CampaignRecord:
    campaign_id: str
    host_id: str
    title: str
    description: str
    purpose: str
    target_amount: Decimal
    collected_amount: Decimal
    status: CampaignStatus
    repayment_due_date: Optional[date]
    created_at: float
    updated_at: float

    @classmethod
    def from_doc(cls, doc: dict) -> "CampaignRecord":
        return cls(
            campaign_id=doc["id"],
            host_id=doc["host_id"],
            title=doc["title"],
            description=doc.get("description") or "",
            purpose=doc["purpose"],
            target_amount=as_money(doc["target_amount"]),
            collected_amount=as_money(doc.get("collected_amount")),
            status=CampaignStatus(doc["status"]),
            repayment_due_date=_parse_date(doc.get("repayment_due_date")),
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at") or doc["created_at"],
        )

    @property
    def is_open(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    @property
    def progress(self) -> int:
        if self.target_amount <= ZERO:
            return 0
        return int(round(self.collected_amount / self.target_amount * 100))


@dataclass
class ContributionRecord:
    contribution_id: str
    campaign_id: str
    contributor_id: Optional[str]
    contributor_name: str
    is_anonymous: bool
    amount: Decimal
    utr: str
    kind: ContributionKind
    counted: bool
    verification_status: VerificationStatus
    repayment_status: RepaymentStatus
    repayment_due_date: Optional[date]
    screenshot_path: Optional[str]
    verified_at: Optional[float]
    repaid_at: Optional[float]
    created_at: float

    @classmethod
    def from_doc(cls, doc: dict) -> "ContributionRecord":
        return cls(
            contribution_id=doc["id"],
            campaign_id=doc["campaign_id"],
            contributor_id=doc.get("contributor_id"),
            contributor_name=doc.get("contributor_name") or ANONYMOUS_NAME,
            is_anonymous=bool(doc.get("is_anonymous")),
            amount=as_money(doc["amount"]),
            utr=doc["utr"],
            kind=ContributionKind(doc["kind"]),
            counted=bool(doc.get("counted")),
            verification_status=VerificationStatus(doc["verification_status"]),
            repayment_status=RepaymentStatus(doc["repayment_status"]),
            repayment_due_date=_parse_date(doc.get("repayment_due_date")),
            screenshot_path=doc.get("screenshot_path"),
            verified_at=doc.get("verified_at"),
            repaid_at=doc.get("repaid_at"),
            created_at=doc["created_at"],
        )

    @property
    def display_name(self) -> str:
        return ANONYMOUS_NAME if self.is_anonymous else self.contributor_name


@dataclass
class RepaymentRecord:
    repayment_id: str
    contribution_id: str
    campaign_id: str
    submitted_by: str
    amount: Decimal
    utr: str
    evidence_path: Optional[str]
    status: VerificationStatus
    reviewed_at: Optional[float]
    created_at: float

    @classmethod
    def from_doc(cls, doc: dict) -> "RepaymentRecord":
        return cls(
            repayment_id=doc["id"],
            contribution_id=doc["contribution_id"],
            campaign_id=doc["campaign_id"],
            submitted_by=doc["submitted_by"],
            amount=as_money(doc["amount"]),
            utr=doc["utr"],
            evidence_path=doc.get("evidence_path"),
            status=VerificationStatus(doc["status"]),
            reviewed_at=doc.get("reviewed_at"),
            created_at=doc["created_at"],
        )
