"""
Pydantic schemas for the FriendFund API.

Every endpoint answers with ``Envelope``: ``success`` plus either ``data`` or
an ``error`` message and its stable ``error_code``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from friendfund.records import CampaignRecord, ContributionRecord, RepaymentRecord
from friendfund.types import (
    CampaignStatus,
    ContributionKind,
    ErrorCode,
    RepaymentStatus,
    VerificationStatus,
)

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None


def ok(data: Any) -> Envelope:
    return Envelope(success=True, data=data)


def failure(code: ErrorCode, message: str) -> Envelope:
    return Envelope(success=False, error=message, error_code=code)


# Users ----------------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)
    name: str = Field(..., max_length=120)
    phone: Optional[str] = Field(default=None, max_length=20)


class LoginRequest(BaseModel):
    email: str
    password: str


class PreferencesRequest(BaseModel):
    preferences: dict[str, Any]


class UserOut(BaseModel):
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    preferences: dict = Field(default_factory=dict)


class PublicUserOut(BaseModel):
    user_id: str
    name: str
    upi_id: Optional[str] = None


class SessionOut(BaseModel):
    user_id: str
    token: str
    token_type: Literal["bearer"] = "bearer"


# Campaigns ------------------------------------------------------------------


class CampaignCreate(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(default="", max_length=5000)
    purpose: str = Field(..., max_length=100)
    target_amount: Decimal
    repayment_due_date: Optional[date] = None


class CampaignUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    purpose: Optional[str] = Field(default=None, max_length=100)
    target_amount: Optional[Decimal] = None
    repayment_due_date: Optional[date] = None
    status: Optional[CampaignStatus] = None


class ContributionOut(BaseModel):
    contribution_id: str
    campaign_id: str
    contributor_id: Optional[str] = None
    contributor_name: str
    is_anonymous: bool
    amount: Decimal
    utr: str
    kind: ContributionKind
    counted: bool
    verification_status: VerificationStatus
    repayment_status: RepaymentStatus
    repayment_due_date: Optional[date] = None
    repaid_at: Optional[float] = None
    created_at: float

    @classmethod
    def from_record(cls, record: ContributionRecord) -> "ContributionOut":
        return cls(
            contribution_id=record.contribution_id,
            campaign_id=record.campaign_id,
            contributor_id=None if record.is_anonymous else record.contributor_id,
            contributor_name=record.display_name,
            is_anonymous=record.is_anonymous,
            amount=record.amount,
            utr=record.utr,
            kind=record.kind,
            counted=record.counted,
            verification_status=record.verification_status,
            repayment_status=record.repayment_status,
            repayment_due_date=record.repayment_due_date,
            repaid_at=record.repaid_at,
            created_at=record.created_at,
        )


class CampaignOut(BaseModel):
    campaign_id: str
    host_id: str
    title: str
    description: str
    purpose: str
    target_amount: Decimal
    collected_amount: Decimal
    status: CampaignStatus
    repayment_due_date: Optional[date] = None
    progress: int
    share_link: str
    created_at: float
    updated_at: float

    @classmethod
    def fields_from_record(cls, record: CampaignRecord, share_link: str) -> dict:
        return {
            "campaign_id": record.campaign_id,
            "host_id": record.host_id,
            "title": record.title,
            "description": record.description,
            "purpose": record.purpose,
            "target_amount": record.target_amount,
            "collected_amount": record.collected_amount,
            "status": record.status,
            "repayment_due_date": record.repayment_due_date,
            "progress": record.progress,
            "share_link": share_link,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    @classmethod
    def from_record(cls, record: CampaignRecord, share_link: str) -> "CampaignOut":
        return cls(**cls.fields_from_record(record, share_link))


class CampaignDetailOut(CampaignOut):
    host_name: Optional[str] = None
    contributions: list[ContributionOut] = Field(default_factory=list)


class DeletedOut(BaseModel):
    id: str
    deleted: bool = True


# Contributions --------------------------------------------------------------


class ContributionCreate(BaseModel):
    campaign_id: str
    amount: Decimal
    utr: str = Field(..., max_length=64)
    kind: ContributionKind = ContributionKind.DONATION
    contributor_name: Optional[str] = Field(default=None, max_length=120)
    is_anonymous: bool = False
    repayment_due_date: Optional[date] = None


class DuplicateCheckOut(BaseModel):
    campaign_id: str
    utr: str
    is_duplicate: bool
    match_count: int


class ReviewRequest(BaseModel):
    approve: bool


class ScreenshotOut(BaseModel):
    contribution: ContributionOut
    queued_for_verification: bool


class RepaymentCreate(BaseModel):
    amount: Decimal
    utr: str = Field(..., max_length=64)
    evidence_path: Optional[str] = Field(default=None, max_length=512)


class RepaymentOut(BaseModel):
    repayment_id: str
    contribution_id: str
    campaign_id: str
    submitted_by: str
    amount: Decimal
    utr: str
    evidence_path: Optional[str] = None
    status: VerificationStatus
    reviewed_at: Optional[float] = None
    created_at: float

    @classmethod
    def from_record(cls, record: RepaymentRecord) -> "RepaymentOut":
        return cls(
            repayment_id=record.repayment_id,
            contribution_id=record.contribution_id,
            campaign_id=record.campaign_id,
            submitted_by=record.submitted_by,
            amount=record.amount,
            utr=record.utr,
            evidence_path=record.evidence_path,
            status=record.status,
            reviewed_at=record.reviewed_at,
            created_at=record.created_at,
        )


# QR -------------------------------------------------------------------------


class QrOut(BaseModel):
    campaign_id: str
    kind: Literal["share", "upi"]
    payload: str
    qr_code: str
