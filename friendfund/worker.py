"""
Worker loop that verifies payment screenshots queued by the API.

Each job reads the stored screenshot, runs OCR, scores the text and hands the
result to the ledger. When OCR or the screenshot is unavailable the
contribution goes to manual review instead of being dropped.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from friendfund.dependencies import (
    get_ledger_service,
    get_ocr_engine,
    get_queue_client,
    get_storage_client,
)
from friendfund.errors import NotFound, StorageUnavailable, UpstreamDegraded
from friendfund.ledger import LedgerService
from friendfund.ocr import OcrEngine
from friendfund.queue import VerificationJob, VerificationQueue
from friendfund.records import ContributionRecord
from friendfund.storage import StorageClient
from friendfund.verification import analyze_payment_text

logger = logging.getLogger(__name__)


def process_job(
    job: VerificationJob,
    *,
    ledger: LedgerService,
    storage: StorageClient,
    ocr: OcrEngine,
) -> ContributionRecord:
    try:
        image = storage.get_bytes(job.screenshot_path)
        text = ocr.extract_text(image, job.mime_type)
    except FileNotFoundError:
        logger.warning(
            "[%s] Screenshot %s missing; sending to review",
            job.contribution_id,
            job.screenshot_path,
        )
        return ledger.apply_payment_evidence(job.contribution_id, None)
    except UpstreamDegraded as exc:
        logger.warning("[%s] OCR unavailable; sending to review: %s", job.contribution_id, exc)
        return ledger.apply_payment_evidence(job.contribution_id, None)

    evidence = analyze_payment_text(text)
    logger.info("[%s] Payment evidence: %s", job.contribution_id, evidence.as_dict())
    return ledger.apply_payment_evidence(job.contribution_id, evidence)


def process_next(
    *,
    ledger: Optional[LedgerService] = None,
    queue: Optional[VerificationQueue] = None,
    storage: Optional[StorageClient] = None,
    ocr: Optional[OcrEngine] = None,
    block: bool = True,
    timeout: int | None = None,
) -> bool:
    """
    Process a single queued verification job.

    Returns True when a job was taken off the queue. Jobs that fail on a
    storage outage are pushed back for a later attempt.
    """
    queue = queue or get_queue_client()
    job = queue.dequeue(block=block, timeout=timeout)
    if not job:
        return False

    try:
        contribution = process_job(
            job,
            ledger=ledger or get_ledger_service(),
            storage=storage or get_storage_client(),
            ocr=ocr or get_ocr_engine(),
        )
    except NotFound:
        logger.warning("[%s] Contribution no longer exists; dropping job", job.contribution_id)
        return True
    except StorageUnavailable:
        logger.exception("[%s] Storage unavailable; requeueing", job.contribution_id)
        queue.enqueue(job)
        return False

    logger.info(
        "[%s] Verification finished: %s",
        job.contribution_id,
        contribution.verification_status.value,
    )
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    logger.info("Verification worker started")
    while True:
        try:
            processed = process_next(block=True, timeout=int(poll_interval_seconds))
        except Exception:
            logger.exception("Verification worker iteration failed")
            processed = False
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
