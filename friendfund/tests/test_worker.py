import unittest
from decimal import Decimal
from unittest.mock import MagicMock

from friendfund.config import LedgerConfig
from friendfund.db import InMemoryDbClient
from friendfund.errors import StorageUnavailable
from friendfund.ledger import ContributionRequest, LedgerService
from friendfund.ocr import StaticOcrEngine, UnavailableOcrEngine
from friendfund.queue import InMemoryVerificationQueue, VerificationJob
from friendfund.storage import InMemoryStorageClient
from friendfund.types import CountingPolicy, VerificationStatus
from friendfund.worker import process_next

SCREENSHOT_PATH = "screenshots/c1/shot.png"


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.ledger = LedgerService(
            self.db, LedgerConfig(counting_policy=CountingPolicy.DEFERRED)
        )
        self.queue = InMemoryVerificationQueue()
        self.storage = InMemoryStorageClient()
        self.campaign = self.ledger.create_campaign("host", "Fees", "", "education", "1000")
        self.contribution = self.ledger.record_contribution(
            ContributionRequest(self.campaign.campaign_id, "500", "123456789012")
        )
        self.storage.upload_bytes(SCREENSHOT_PATH, b"\x89PNG fake", "image/png")
        self.queue.enqueue(
            VerificationJob(self.contribution.contribution_id, SCREENSHOT_PATH)
        )

    def run_once(self, ocr):
        return process_next(
            ledger=self.ledger,
            queue=self.queue,
            storage=self.storage,
            ocr=ocr,
            block=False,
        )

    def test_matching_screenshot_is_counted(self):
        ocr = StaticOcrEngine("Payment Successful\n₹500.00\nUTR 123456789012")
        self.assertTrue(self.run_once(ocr))
        contribution = self.ledger.get_contribution(self.contribution.contribution_id)
        self.assertEqual(contribution.verification_status, VerificationStatus.VERIFIED)
        self.assertTrue(contribution.counted)
        self.assertEqual(
            self.ledger.get_campaign(self.campaign.campaign_id).collected_amount,
            Decimal("500.00"),
        )

    def test_mismatched_screenshot_goes_to_review(self):
        self.assertTrue(self.run_once(StaticOcrEngine("Payment successful ₹50.00")))
        contribution = self.ledger.get_contribution(self.contribution.contribution_id)
        self.assertEqual(contribution.verification_status, VerificationStatus.PENDING_REVIEW)
        self.assertEqual(
            self.ledger.get_campaign(self.campaign.campaign_id).collected_amount,
            Decimal("0.00"),
        )

    def test_ocr_outage_goes_to_review(self):
        self.assertTrue(self.run_once(UnavailableOcrEngine()))
        contribution = self.ledger.get_contribution(self.contribution.contribution_id)
        self.assertEqual(contribution.verification_status, VerificationStatus.PENDING_REVIEW)

    def test_missing_screenshot_goes_to_review(self):
        self.storage.stored_objects.clear()
        self.assertTrue(self.run_once(StaticOcrEngine("Payment successful ₹500.00")))
        contribution = self.ledger.get_contribution(self.contribution.contribution_id)
        self.assertEqual(contribution.verification_status, VerificationStatus.PENDING_REVIEW)

    def test_storage_outage_requeues_job(self):
        storage = MagicMock()
        storage.get_bytes.side_effect = StorageUnavailable("bucket down")
        processed = process_next(
            ledger=self.ledger,
            queue=self.queue,
            storage=storage,
            ocr=StaticOcrEngine(""),
            block=False,
        )
        self.assertFalse(processed)
        self.assertEqual(len(self.queue.items), 1)

    def test_deleted_contribution_is_dropped(self):
        self.queue.items.clear()
        self.queue.enqueue(VerificationJob("missing", SCREENSHOT_PATH))
        self.assertTrue(self.run_once(StaticOcrEngine("Payment successful")))
        self.assertEqual(self.queue.items, [])

    def test_process_once_no_jobs(self):
        self.queue.items.clear()
        self.assertFalse(self.run_once(StaticOcrEngine("")))


if __name__ == "__main__":
    unittest.main()
