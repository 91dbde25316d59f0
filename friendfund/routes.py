"""
HTTP routes for the FriendFund API.
"""

from __future__ import annotations

import logging
import mimetypes
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Query, UploadFile

from friendfund.config import Settings, get_settings
from friendfund.dependencies import (
    get_current_user_id,
    get_identity_provider,
    get_ledger_service,
    get_optional_user_id,
    get_queue_client,
    get_storage_client,
)
from friendfund.errors import (
    InvalidArgument,
    InvalidOperation,
    NotFound,
    Unauthorized,
    UpstreamDegraded,
)
from friendfund.identity import IdentityProvider
from friendfund.ledger import ContributionRequest, LedgerService
from friendfund.money import parse_amount
from friendfund.qr import build_upi_uri, render_qr
from friendfund.queue import VerificationJob, VerificationQueue
from friendfund.records import CampaignRecord
from friendfund.schemas import (
    CampaignCreate,
    CampaignDetailOut,
    CampaignOut,
    CampaignUpdate,
    ContributionCreate,
    ContributionOut,
    DeletedOut,
    DuplicateCheckOut,
    Envelope,
    LoginRequest,
    PreferencesRequest,
    PublicUserOut,
    QrOut,
    RegisterRequest,
    RepaymentCreate,
    RepaymentOut,
    ReviewRequest,
    ScreenshotOut,
    SessionOut,
    UserOut,
    ok,
)
from friendfund.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_SCREENSHOT_BYTES = 10 * 1024 * 1024
HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


def _campaign_out(ledger: LedgerService, campaign: CampaignRecord) -> CampaignOut:
    return CampaignOut.from_record(campaign, ledger.share_link(campaign.campaign_id))


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


# Identity -------------------------------------------------------------------


@router.post("/auth/register", response_model=Envelope[SessionOut], status_code=201)
def register(
    payload: RegisterRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    user_id = identity.create_user(payload.email, payload.phone, payload.password, payload.name)
    token = identity.authenticate(payload.email, payload.password)
    return ok(SessionOut(user_id=user_id, token=token))


@router.post("/auth/login", response_model=Envelope[SessionOut])
def login(
    payload: LoginRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    token = identity.authenticate(payload.email, payload.password)
    user_id = identity.resolve_session(token)
    return ok(SessionOut(user_id=user_id, token=token))


@router.get("/auth/user", response_model=Envelope[UserOut])
def current_user(
    user_id: str = Depends(get_current_user_id),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    profile = identity.get_user(user_id)
    return ok(UserOut(**vars(profile)))


@router.patch("/auth/user/preferences", response_model=Envelope[UserOut])
def update_preferences(
    payload: PreferencesRequest,
    user_id: str = Depends(get_current_user_id),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    profile = identity.update_preferences(user_id, payload.preferences)
    return ok(UserOut(**vars(profile)))


@router.get("/users/{user_id}", response_model=Envelope[PublicUserOut])
def public_profile(
    user_id: str,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    profile = identity.get_user(user_id)
    return ok(
        PublicUserOut(
            user_id=profile.user_id,
            name=profile.name,
            upi_id=profile.preferences.get("upi_id"),
        )
    )


# Campaigns ------------------------------------------------------------------


@router.post("/campaigns", response_model=Envelope[CampaignOut], status_code=201)
def create_campaign(
    payload: CampaignCreate,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    campaign = ledger.create_campaign(
        user_id,
        payload.title,
        payload.description,
        payload.purpose,
        payload.target_amount,
        payload.repayment_due_date,
    )
    return ok(_campaign_out(ledger, campaign))


@router.get("/campaigns", response_model=Envelope[list[CampaignOut]])
def list_campaigns(
    host_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    purpose: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50),
    offset: int = Query(default=0),
    ledger: LedgerService = Depends(get_ledger_service),
):
    campaigns = ledger.list_campaigns(
        host_id=host_id,
        status=status,
        purpose=purpose,
        search=search,
        limit=limit,
        offset=offset,
    )
    return ok([_campaign_out(ledger, campaign) for campaign in campaigns])


@router.get("/campaigns/{campaign_id}", response_model=Envelope[CampaignDetailOut])
def get_campaign(
    campaign_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    campaign = ledger.get_campaign(campaign_id)
    try:
        host_name = identity.get_user(campaign.host_id).name
    except NotFound:
        host_name = None
    contributions = ledger.list_campaign_contributions(campaign_id)
    return ok(
        CampaignDetailOut(
            **CampaignOut.fields_from_record(campaign, ledger.share_link(campaign_id)),
            host_name=host_name,
            contributions=[ContributionOut.from_record(c) for c in contributions],
        )
    )


@router.put("/campaigns/{campaign_id}", response_model=Envelope[CampaignOut])
def update_campaign(
    campaign_id: str,
    payload: CampaignUpdate,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    campaign = ledger.update_campaign(
        campaign_id, user_id, payload.model_dump(exclude_unset=True)
    )
    return ok(_campaign_out(ledger, campaign))


@router.delete("/campaigns/{campaign_id}", response_model=Envelope[DeletedOut])
def delete_campaign(
    campaign_id: str,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    ledger.delete_campaign(campaign_id, user_id)
    return ok(DeletedOut(id=campaign_id))


@router.get(
    "/campaigns/{campaign_id}/contributions",
    response_model=Envelope[list[ContributionOut]],
)
def list_campaign_contributions(
    campaign_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    contributions = ledger.list_campaign_contributions(campaign_id)
    return ok([ContributionOut.from_record(c) for c in contributions])


# Contributions --------------------------------------------------------------


@router.post("/contributions", response_model=Envelope[ContributionOut], status_code=201)
def create_contribution(
    payload: ContributionCreate,
    user_id: Optional[str] = Depends(get_optional_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    contribution = ledger.record_contribution(
        ContributionRequest(
            campaign_id=payload.campaign_id,
            amount=payload.amount,
            reference=payload.utr,
            kind=payload.kind,
            contributor_id=user_id,
            contributor_name=payload.contributor_name,
            is_anonymous=payload.is_anonymous,
            repayment_due_date=payload.repayment_due_date,
        )
    )
    return ok(ContributionOut.from_record(contribution))


@router.get("/contributions/check-duplicate", response_model=Envelope[DuplicateCheckOut])
def check_duplicate(
    campaign_id: str = Query(...),
    utr: str = Query(..., max_length=64),
    ledger: LedgerService = Depends(get_ledger_service),
):
    check = ledger.check_duplicate(campaign_id, utr.strip())
    return ok(
        DuplicateCheckOut(
            campaign_id=campaign_id,
            utr=utr.strip(),
            is_duplicate=check.is_duplicate,
            match_count=check.match_count,
        )
    )


@router.get("/contributions/user/{user_id}", response_model=Envelope[list[ContributionOut]])
def list_user_contributions(
    user_id: str,
    acting_user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    if user_id != acting_user_id:
        raise Unauthorized("Contribution history is only visible to its owner")
    contributions = ledger.list_user_contributions(user_id)
    return ok([ContributionOut.from_record(c) for c in contributions])


@router.get("/contributions/{contribution_id}", response_model=Envelope[ContributionOut])
def get_contribution(
    contribution_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    return ok(ContributionOut.from_record(ledger.get_contribution(contribution_id)))


@router.post(
    "/contributions/{contribution_id}/screenshot",
    response_model=Envelope[ScreenshotOut],
    status_code=202,
)
async def upload_screenshot(
    contribution_id: str,
    file: UploadFile = File(...),
    user_id: Optional[str] = Depends(get_optional_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
    storage: StorageClient = Depends(get_storage_client),
    queue: VerificationQueue = Depends(get_queue_client),
    settings: Settings = Depends(get_settings),
):
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise InvalidArgument("Payment screenshot must be an image")
    data = await file.read()
    if not data:
        raise InvalidArgument("Payment screenshot is empty")
    if len(data) > MAX_SCREENSHOT_BYTES:
        raise InvalidArgument("Payment screenshot exceeds 10 MB")

    # Existence and ownership are checked before anything is uploaded.
    contribution = ledger.get_contribution(contribution_id)
    if contribution.contributor_id and contribution.contributor_id != user_id:
        raise Unauthorized("Only the contributor can attach payment evidence")

    extension = mimetypes.guess_extension(content_type) or ".img"
    path = f"{settings.screenshots_prefix}/{contribution_id}/{uuid4().hex}{extension}"
    storage.upload_bytes(path, data, content_type=content_type)
    contribution = ledger.attach_screenshot(contribution_id, user_id, path)

    queued = False
    if not contribution.counted:
        try:
            queue.enqueue(
                VerificationJob(
                    contribution_id=contribution_id,
                    screenshot_path=path,
                    mime_type=content_type,
                )
            )
            queued = True
        except UpstreamDegraded as exc:
            logger.warning(
                "Verification queue unavailable for %s, sending to review: %s",
                contribution_id,
                exc,
            )
            contribution = ledger.apply_payment_evidence(contribution_id, None)
    return ok(
        ScreenshotOut(
            contribution=ContributionOut.from_record(contribution),
            queued_for_verification=queued,
        )
    )


@router.post(
    "/contributions/{contribution_id}/review",
    response_model=Envelope[ContributionOut],
)
def review_contribution(
    contribution_id: str,
    payload: ReviewRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    contribution = ledger.review_contribution(contribution_id, user_id, payload.approve)
    return ok(ContributionOut.from_record(contribution))


@router.put("/contributions/{contribution_id}/repay", response_model=Envelope[ContributionOut])
def mark_repaid(
    contribution_id: str,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return ok(ContributionOut.from_record(ledger.mark_repaid(contribution_id, user_id)))


@router.post(
    "/contributions/{contribution_id}/repayments",
    response_model=Envelope[RepaymentOut],
    status_code=201,
)
def submit_repayment(
    contribution_id: str,
    payload: RepaymentCreate,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    repayment = ledger.submit_repayment(
        contribution_id,
        user_id,
        payload.amount,
        payload.utr,
        evidence_path=payload.evidence_path,
    )
    return ok(RepaymentOut.from_record(repayment))


@router.get(
    "/contributions/{contribution_id}/repayments",
    response_model=Envelope[list[RepaymentOut]],
)
def list_repayments(
    contribution_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
):
    return ok([RepaymentOut.from_record(r) for r in ledger.list_repayments(contribution_id)])


@router.post("/repayments/{repayment_id}/review", response_model=Envelope[RepaymentOut])
def review_repayment(
    repayment_id: str,
    payload: ReviewRequest,
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger_service),
):
    repayment = ledger.review_repayment(repayment_id, user_id, payload.approve)
    return ok(RepaymentOut.from_record(repayment))


# QR -------------------------------------------------------------------------


@router.get("/qr/{campaign_id}", response_model=Envelope[QrOut])
def campaign_qr(
    campaign_id: str,
    amount: Optional[Decimal] = Query(default=None),
    width: Optional[int] = Query(default=None, ge=64, le=1024),
    margin: Optional[int] = Query(default=None, ge=0, le=10),
    dark: Optional[str] = Query(default=None, pattern=HEX_COLOR),
    light: Optional[str] = Query(default=None, pattern=HEX_COLOR),
    ledger: LedgerService = Depends(get_ledger_service),
    identity: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
):
    campaign = ledger.get_campaign(campaign_id)
    if amount is None:
        kind = "share"
        payload = ledger.share_link(campaign_id)
    else:
        host = identity.get_user(campaign.host_id)
        upi_id = host.preferences.get("upi_id")
        if not upi_id:
            raise InvalidOperation("The campaign host has not set up a UPI ID")
        kind = "upi"
        payload = build_upi_uri(
            upi_id,
            host.name,
            parse_amount(amount),
            note=f"FriendFund: {campaign.title}",
        )
    qr_code = render_qr(
        payload,
        width=width or settings.qr_width,
        margin=settings.qr_margin if margin is None else margin,
        dark=dark or settings.qr_dark_color,
        light=light or settings.qr_light_color,
    )
    return ok(QrOut(campaign_id=campaign_id, kind=kind, payload=payload, qr_code=qr_code))
