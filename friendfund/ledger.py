"""
Campaign ledger: campaigns, contributions and loan repayments.

A campaign's ``collected_amount`` always equals the sum of its counted
contributions. Recording a counted contribution and adding it to the total
happen in one transaction: the campaign row is locked, the contribution is
inserted (guarded by the unique payment-reference index), and the total is
bumped with a conditional ``collected_amount = collected_amount + amount``
update. Any failure rolls the whole unit back.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from friendfund.config import LedgerConfig
from friendfund.db import DbClient, DocumentSession, Filter, Query
from friendfund.errors import (
    AlreadyRepaid,
    CampaignClosed,
    DuplicateKeyError,
    DuplicatePayment,
    InvalidArgument,
    InvalidOperation,
    NotFound,
    Unauthorized,
)
from friendfund.idempotency import DuplicateCheck, IdempotencyGuard, ReferenceValidator
from friendfund.identity import IdentityProvider
from friendfund.money import ZERO, parse_amount
from friendfund.records import (
    ANONYMOUS_NAME,
    CampaignRecord,
    ContributionRecord,
    RepaymentRecord,
    format_date,
)
from friendfund.types import (
    CAMPAIGNS,
    CONTRIBUTIONS,
    REPAYMENTS,
    CampaignStatus,
    ContributionKind,
    CountingPolicy,
    RepaymentStatus,
    VerificationStatus,
)
from friendfund.verification import PaymentEvidence, should_auto_verify

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
EDITABLE_CAMPAIGN_FIELDS = {
    "title",
    "description",
    "purpose",
    "target_amount",
    "repayment_due_date",
    "status",
}
UNVERIFIED_STATES = (
    VerificationStatus.PENDING_VERIFICATION,
    VerificationStatus.PENDING_REVIEW,
)


@dataclass
class ContributionRequest:
    campaign_id: str
    amount: Any
    reference: str
    kind: Any = ContributionKind.DONATION
    contributor_id: Optional[str] = None
    contributor_name: Optional[str] = None
    is_anonymous: bool = False
    repayment_due_date: Optional[date] = None


def _required_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidArgument(f"{field_name} is required")
    return text


def _parse_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidArgument(f"{field_name} must be one of: {allowed}") from None


def _campaign_filters(campaign_id: str) -> list[Filter]:
    return [Filter.equal("campaign_id", campaign_id)]


class LedgerService:
    def __init__(
        self,
        db: DbClient,
        config: LedgerConfig,
        identity: Optional[IdentityProvider] = None,
    ):
        self.db = db
        self.config = config
        self.identity = identity
        self.validator = ReferenceValidator(config.reference_pattern)
        self.contribution_guard = IdempotencyGuard(db, config, CONTRIBUTIONS)
        self.repayment_guard = IdempotencyGuard(db, config, REPAYMENTS)

    # Campaigns ------------------------------------------------------------

    def share_link(self, campaign_id: str) -> str:
        return f"{self.config.frontend_base_url}/campaign/{campaign_id}"

    def create_campaign(
        self,
        host_id: str,
        title: str,
        description: str,
        purpose: str,
        target_amount: Any,
        repayment_due_date: Optional[date] = None,
    ) -> CampaignRecord:
        now = time.time()
        campaign_id = uuid.uuid4().hex
        doc = self.db.insert(
            CAMPAIGNS,
            campaign_id,
            {
                "host_id": _required_text(host_id, "host_id"),
                "title": _required_text(title, "title"),
                "description": (description or "").strip(),
                "purpose": _required_text(purpose, "purpose"),
                "target_amount": parse_amount(target_amount, "target_amount"),
                "collected_amount": ZERO,
                "status": CampaignStatus.ACTIVE.value,
                "repayment_due_date": format_date(repayment_due_date),
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info("Campaign %s created by %s", campaign_id, host_id)
        return CampaignRecord.from_doc(doc)

    def get_campaign(self, campaign_id: str) -> CampaignRecord:
        doc = self.db.get_by_id(CAMPAIGNS, campaign_id)
        if doc is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        return CampaignRecord.from_doc(doc)

    def list_campaigns(
        self,
        *,
        host_id: Optional[str] = None,
        status: Optional[str] = None,
        purpose: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CampaignRecord]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidArgument("offset must not be negative")
        filters: list[Filter] = []
        if host_id:
            filters.append(Filter.equal("host_id", host_id))
        if status:
            filters.append(
                Filter.equal("status", _parse_enum(CampaignStatus, status, "status").value)
            )
        if purpose:
            filters.append(Filter.equal("purpose", purpose))
        if search:
            filters.append(Filter.search("title", search))
        docs = self.db.query(CAMPAIGNS, Query(filters=filters, limit=limit, offset=offset))
        return [CampaignRecord.from_doc(doc) for doc in docs]

    def update_campaign(
        self, campaign_id: str, acting_user_id: str, changes: dict
    ) -> CampaignRecord:
        unknown = set(changes) - EDITABLE_CAMPAIGN_FIELDS
        if unknown:
            raise InvalidArgument(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}"
            )
        with self.db.transaction() as tx:
            campaign = self._load_campaign(tx, campaign_id, for_update=True)
            self._require_host(campaign, acting_user_id, "update this campaign")

            fields: dict = {}
            for name in ("title", "purpose"):
                if changes.get(name) is not None:
                    fields[name] = _required_text(changes[name], name)
            if changes.get("description") is not None:
                fields["description"] = changes["description"].strip()
            if "repayment_due_date" in changes:
                fields["repayment_due_date"] = format_date(changes["repayment_due_date"])

            target = campaign.target_amount
            if changes.get("target_amount") is not None:
                target = parse_amount(changes["target_amount"], "target_amount")
                fields["target_amount"] = target

            status = campaign.status
            if changes.get("status") is not None:
                status = _parse_enum(CampaignStatus, changes["status"], "status")
                if status == CampaignStatus.COMPLETED:
                    raise InvalidArgument("Campaigns complete automatically when funded")
            if status == CampaignStatus.ACTIVE and campaign.collected_amount >= target:
                status = CampaignStatus.COMPLETED
            fields["status"] = status.value
            fields["updated_at"] = time.time()

            doc = tx.update(CAMPAIGNS, campaign_id, fields)
        logger.info("Campaign %s updated by host", campaign_id)
        return CampaignRecord.from_doc(doc)

    def delete_campaign(self, campaign_id: str, acting_user_id: str) -> None:
        with self.db.transaction() as tx:
            campaign = self._load_campaign(tx, campaign_id, for_update=True)
            self._require_host(campaign, acting_user_id, "delete this campaign")
            if tx.count(CONTRIBUTIONS, _campaign_filters(campaign_id)):
                raise InvalidOperation("Campaigns with contributions cannot be deleted")
            tx.delete(CAMPAIGNS, campaign_id)
        logger.info("Campaign %s deleted", campaign_id)

    # Contributions --------------------------------------------------------

    def check_duplicate(self, campaign_id: str, reference: str) -> DuplicateCheck:
        return self.contribution_guard.check_duplicate(campaign_id, reference)

    def record_contribution(self, request: ContributionRequest) -> ContributionRecord:
        amount = parse_amount(request.amount)
        kind = _parse_enum(ContributionKind, request.kind, "kind")
        reference = self.validator.validate(request.reference)
        contributor_name = self._contributor_name(request)

        with self.db.transaction() as tx:
            campaign = self._load_campaign(tx, request.campaign_id, for_update=True)
            if not campaign.is_open:
                raise CampaignClosed(
                    f"Campaign {campaign.campaign_id} is {campaign.status.value}"
                )

            # A loan may inherit the campaign due date, so this check follows the load.
            due_date = None
            if kind == ContributionKind.LOAN:
                due_date = request.repayment_due_date or campaign.repayment_due_date
                if due_date is None:
                    raise InvalidArgument("Loans require a repayment due date")

            check = self.contribution_guard.check_duplicate(
                campaign.campaign_id, reference, session=tx
            )
            if check.is_duplicate:
                raise DuplicatePayment(
                    f"Payment reference {reference} was already recorded"
                )

            counted = self.config.counting_policy == CountingPolicy.IMMEDIATE
            now = time.time()
            contribution_id = uuid.uuid4().hex
            try:
                doc = tx.insert(
                    CONTRIBUTIONS,
                    contribution_id,
                    {
                        "campaign_id": campaign.campaign_id,
                        "contributor_id": request.contributor_id,
                        "contributor_name": contributor_name,
                        "is_anonymous": bool(request.is_anonymous),
                        "amount": amount,
                        "utr": reference,
                        "reference_scope": self.contribution_guard.scope_key(
                            campaign.campaign_id
                        ),
                        "kind": kind.value,
                        "counted": counted,
                        "verification_status": (
                            VerificationStatus.VERIFIED
                            if counted
                            else VerificationStatus.PENDING_VERIFICATION
                        ).value,
                        "repayment_status": (
                            RepaymentStatus.PENDING
                            if kind == ContributionKind.LOAN
                            else RepaymentStatus.NOT_APPLICABLE
                        ).value,
                        "repayment_due_date": format_date(due_date),
                        "screenshot_path": None,
                        "verified_at": now if counted else None,
                        "repaid_at": None,
                        "created_at": now,
                    },
                )
            except DuplicateKeyError:
                raise DuplicatePayment(
                    f"Payment reference {reference} was already recorded"
                ) from None

            if counted:
                if self._apply_counter(tx, campaign.campaign_id, amount, require_open=True) is None:
                    raise CampaignClosed(f"Campaign {campaign.campaign_id} is no longer active")

        logger.info(
            "Recorded %s %s on campaign %s (counted=%s)",
            kind.value,
            amount,
            campaign.campaign_id,
            counted,
        )
        return ContributionRecord.from_doc(doc)

    def get_contribution(self, contribution_id: str) -> ContributionRecord:
        doc = self.db.get_by_id(CONTRIBUTIONS, contribution_id)
        if doc is None:
            raise NotFound(f"Contribution {contribution_id} not found")
        return ContributionRecord.from_doc(doc)

    def list_campaign_contributions(self, campaign_id: str) -> list[ContributionRecord]:
        self.get_campaign(campaign_id)
        docs = self.db.query(CONTRIBUTIONS, Query(filters=_campaign_filters(campaign_id)))
        return [ContributionRecord.from_doc(doc) for doc in docs]

    def list_user_contributions(self, user_id: str) -> list[ContributionRecord]:
        docs = self.db.query(
            CONTRIBUTIONS, Query(filters=[Filter.equal("contributor_id", user_id)])
        )
        return [ContributionRecord.from_doc(doc) for doc in docs]

    def attach_screenshot(
        self, contribution_id: str, acting_user_id: Optional[str], storage_path: str
    ) -> ContributionRecord:
        """Store the evidence path; callers enqueue verification when not yet counted."""
        with self.db.transaction() as tx:
            contribution = self._load_contribution(tx, contribution_id)
            if contribution.contributor_id and contribution.contributor_id != acting_user_id:
                raise Unauthorized("Only the contributor can attach payment evidence")
            if contribution.verification_status == VerificationStatus.REJECTED:
                raise InvalidOperation("Contribution was rejected")
            doc = tx.update(
                CONTRIBUTIONS, contribution_id, {"screenshot_path": storage_path}
            )
        return ContributionRecord.from_doc(doc)

    def apply_payment_evidence(
        self, contribution_id: str, evidence: Optional[PaymentEvidence]
    ) -> ContributionRecord:
        """
        Outcome of automated screenshot reading.

        Auto-verifies when the heuristic passes, otherwise parks the
        contribution for manual review. ``evidence=None`` means OCR was
        unavailable. Contributions that were already decided are returned
        unchanged.
        """
        with self.db.transaction() as tx:
            contribution = self._load_contribution(tx, contribution_id)
            if contribution.verification_status not in UNVERIFIED_STATES:
                return contribution
            if evidence is not None and should_auto_verify(
                evidence,
                contribution.amount,
                tolerance=self.config.ocr_amount_tolerance,
                threshold=self.config.ocr_auto_verify_threshold,
            ):
                doc = self._count_contribution(tx, contribution)
                logger.info(
                    "Contribution %s auto-verified (confidence=%s)",
                    contribution_id,
                    evidence.confidence,
                )
            else:
                doc = tx.update(
                    CONTRIBUTIONS,
                    contribution_id,
                    {"verification_status": VerificationStatus.PENDING_REVIEW.value},
                )
                logger.info("Contribution %s sent to manual review", contribution_id)
        return ContributionRecord.from_doc(doc)

    def review_contribution(
        self, contribution_id: str, acting_user_id: str, approve: bool
    ) -> ContributionRecord:
        with self.db.transaction() as tx:
            contribution = self._load_contribution(tx, contribution_id)
            campaign = self._load_campaign(tx, contribution.campaign_id, for_update=True)
            self._require_host(campaign, acting_user_id, "review this contribution")
            if contribution.verification_status not in UNVERIFIED_STATES:
                raise InvalidOperation(
                    f"Contribution is already {contribution.verification_status.value}"
                )
            if approve:
                doc = self._count_contribution(tx, contribution)
            else:
                doc = tx.update(
                    CONTRIBUTIONS,
                    contribution_id,
                    {"verification_status": VerificationStatus.REJECTED.value},
                    where=[
                        Filter.equal(
                            "verification_status", contribution.verification_status.value
                        )
                    ],
                )
                if doc is None:
                    raise InvalidOperation("Contribution was already reviewed")
        logger.info(
            "Contribution %s %s by host",
            contribution_id,
            "approved" if approve else "rejected",
        )
        return ContributionRecord.from_doc(doc)

    # Loan repayment -------------------------------------------------------

    def mark_repaid(self, contribution_id: str, acting_user_id: str) -> ContributionRecord:
        with self.db.transaction() as tx:
            doc = self._mark_repaid(tx, contribution_id, acting_user_id)
        logger.info("Loan %s marked repaid", contribution_id)
        return ContributionRecord.from_doc(doc)

    def submit_repayment(
        self,
        contribution_id: str,
        acting_user_id: str,
        amount: Any,
        reference: str,
        evidence_path: Optional[str] = None,
    ) -> RepaymentRecord:
        amount = parse_amount(amount)
        reference = self.validator.validate(reference)
        with self.db.transaction() as tx:
            loan = self._load_loan(tx, contribution_id)
            if not loan.contributor_id or loan.contributor_id != acting_user_id:
                raise Unauthorized("Only the lender can submit a repayment for this loan")
            if loan.repayment_status == RepaymentStatus.REPAID:
                raise AlreadyRepaid(f"Loan {contribution_id} is already repaid")
            pending = tx.count(
                REPAYMENTS,
                [
                    Filter.equal("contribution_id", contribution_id),
                    Filter.equal("status", VerificationStatus.PENDING_REVIEW.value),
                ],
            )
            if pending:
                raise InvalidOperation("A repayment for this loan is already awaiting review")
            check = self.repayment_guard.check_duplicate(
                loan.campaign_id, reference, session=tx
            )
            if check.is_duplicate:
                raise DuplicatePayment(
                    f"Payment reference {reference} was already submitted"
                )
            repayment_id = uuid.uuid4().hex
            try:
                doc = tx.insert(
                    REPAYMENTS,
                    repayment_id,
                    {
                        "contribution_id": contribution_id,
                        "campaign_id": loan.campaign_id,
                        "submitted_by": acting_user_id,
                        "amount": amount,
                        "utr": reference,
                        "reference_scope": self.repayment_guard.scope_key(loan.campaign_id),
                        "evidence_path": evidence_path,
                        "status": VerificationStatus.PENDING_REVIEW.value,
                        "reviewed_at": None,
                        "created_at": time.time(),
                    },
                )
            except DuplicateKeyError:
                raise DuplicatePayment(
                    f"Payment reference {reference} was already submitted"
                ) from None
        logger.info("Repayment %s submitted for loan %s", repayment_id, contribution_id)
        return RepaymentRecord.from_doc(doc)

    def review_repayment(
        self, repayment_id: str, acting_user_id: str, approve: bool
    ) -> RepaymentRecord:
        with self.db.transaction() as tx:
            doc = tx.get_by_id(REPAYMENTS, repayment_id, for_update=True)
            if doc is None:
                raise NotFound(f"Repayment {repayment_id} not found")
            repayment = RepaymentRecord.from_doc(doc)
            campaign = self._load_campaign(tx, repayment.campaign_id)
            self._require_host(campaign, acting_user_id, "review this repayment")
            status = VerificationStatus.VERIFIED if approve else VerificationStatus.REJECTED
            doc = tx.update(
                REPAYMENTS,
                repayment_id,
                {"status": status.value, "reviewed_at": time.time()},
                where=[Filter.equal("status", VerificationStatus.PENDING_REVIEW.value)],
            )
            if doc is None:
                raise InvalidOperation(f"Repayment is already {repayment.status.value}")
            if approve:
                self._mark_repaid(tx, repayment.contribution_id, acting_user_id)
        logger.info(
            "Repayment %s %s", repayment_id, "verified" if approve else "rejected"
        )
        return RepaymentRecord.from_doc(doc)

    def list_repayments(self, contribution_id: str) -> list[RepaymentRecord]:
        self.get_contribution(contribution_id)
        docs = self.db.query(
            REPAYMENTS, Query(filters=[Filter.equal("contribution_id", contribution_id)])
        )
        return [RepaymentRecord.from_doc(doc) for doc in docs]

    # Internals ------------------------------------------------------------

    def _contributor_name(self, request: ContributionRequest) -> str:
        if request.contributor_id and self.identity is not None:
            return self.identity.get_user(request.contributor_id).name
        return (request.contributor_name or "").strip() or ANONYMOUS_NAME

    @staticmethod
    def _load_campaign(
        tx: DocumentSession, campaign_id: str, *, for_update: bool = False
    ) -> CampaignRecord:
        doc = tx.get_by_id(CAMPAIGNS, campaign_id, for_update=for_update)
        if doc is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        return CampaignRecord.from_doc(doc)

    @staticmethod
    def _load_contribution(tx: DocumentSession, contribution_id: str) -> ContributionRecord:
        doc = tx.get_by_id(CONTRIBUTIONS, contribution_id, for_update=True)
        if doc is None:
            raise NotFound(f"Contribution {contribution_id} not found")
        return ContributionRecord.from_doc(doc)

    def _load_loan(self, tx: DocumentSession, contribution_id: str) -> ContributionRecord:
        contribution = self._load_contribution(tx, contribution_id)
        if contribution.kind != ContributionKind.LOAN:
            raise InvalidOperation("Only loans can be repaid")
        if contribution.verification_status == VerificationStatus.REJECTED:
            raise InvalidOperation("Rejected contributions cannot be repaid")
        return contribution

    @staticmethod
    def _require_host(campaign: CampaignRecord, acting_user_id: Optional[str], action: str) -> None:
        if not acting_user_id or campaign.host_id != acting_user_id:
            raise Unauthorized(f"Only the campaign host can {action}")

    def _mark_repaid(self, tx: DocumentSession, contribution_id: str, acting_user_id: str) -> dict:
        loan = self._load_loan(tx, contribution_id)
        campaign = self._load_campaign(tx, loan.campaign_id)
        self._require_host(campaign, acting_user_id, "mark this loan repaid")
        doc = tx.update(
            CONTRIBUTIONS,
            contribution_id,
            {"repayment_status": RepaymentStatus.REPAID.value, "repaid_at": time.time()},
            where=[Filter.equal("repayment_status", RepaymentStatus.PENDING.value)],
        )
        if doc is None:
            raise AlreadyRepaid(f"Loan {contribution_id} is already repaid")
        return doc

    def _count_contribution(self, tx: DocumentSession, contribution: ContributionRecord) -> dict:
        doc = tx.update(
            CONTRIBUTIONS,
            contribution.contribution_id,
            {
                "counted": True,
                "verification_status": VerificationStatus.VERIFIED.value,
                "verified_at": time.time(),
            },
            where=[Filter.equal("counted", False)],
        )
        if doc is None:
            raise InvalidOperation("Contribution was already counted")
        # Verified payments count even if the campaign completed meanwhile.
        if self._apply_counter(tx, contribution.campaign_id, contribution.amount, require_open=False) is None:
            raise NotFound(f"Campaign {contribution.campaign_id} not found")
        return doc

    @staticmethod
    def _apply_counter(
        tx: DocumentSession, campaign_id: str, amount: Decimal, *, require_open: bool
    ) -> Optional[dict]:
        active = [Filter.equal("status", CampaignStatus.ACTIVE.value)]
        doc = tx.increment(
            CAMPAIGNS,
            campaign_id,
            "collected_amount",
            amount,
            where=active if require_open else None,
        )
        if doc is None:
            return None
        campaign = CampaignRecord.from_doc(doc)
        if campaign.is_open and campaign.collected_amount >= campaign.target_amount:
            doc = tx.update(
                CAMPAIGNS,
                campaign_id,
                {"status": CampaignStatus.COMPLETED.value, "updated_at": time.time()},
                where=active,
            ) or doc
            logger.info("Campaign %s reached its target", campaign_id)
        return doc
