"""
Enumerations shared across the ledger, storage and HTTP layers.
"""

from __future__ import annotations

from enum import Enum


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CLOSED = "closed"


class ContributionKind(str, Enum):
    DONATION = "donation"
    LOAN = "loan"


class RepaymentStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    REPAID = "repaid"


class VerificationStatus(str, Enum):
    """Payment verification state of a contribution or repayment submission."""

    VERIFIED = "verified"
    PENDING_VERIFICATION = "pending_verification"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"


class CountingPolicy(str, Enum):
    """When a contribution starts counting toward the campaign total."""

    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


class ReferenceScope(str, Enum):
    """Uniqueness scope for payment references (UTRs)."""

    CAMPAIGN = "campaign"
    GLOBAL = "global"


class ErrorCode(str, Enum):
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NOT_FOUND = "NOT_FOUND"
    CAMPAIGN_CLOSED = "CAMPAIGN_CLOSED"
    DUPLICATE_PAYMENT = "DUPLICATE_PAYMENT"
    UNAUTHORIZED = "UNAUTHORIZED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    ALREADY_REPAID = "ALREADY_REPAID"
    INVALID_OPERATION = "INVALID_OPERATION"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    UPSTREAM_DEGRADED = "UPSTREAM_DEGRADED"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    INTERNAL = "INTERNAL"


# Document store collections.
CAMPAIGNS = "campaigns"
CONTRIBUTIONS = "contributions"
REPAYMENTS = "repayments"
USERS = "users"
