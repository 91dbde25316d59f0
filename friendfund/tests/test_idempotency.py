import unittest

from friendfund.config import LedgerConfig
from friendfund.db import InMemoryDbClient
from friendfund.errors import InvalidArgument, NotFound
from friendfund.idempotency import GLOBAL_SCOPE_KEY, IdempotencyGuard, ReferenceValidator
from friendfund.ledger import ContributionRequest, LedgerService
from friendfund.types import ReferenceScope


class ReferenceValidatorTests(unittest.TestCase):
    def test_accepts_twelve_digit_utr(self):
        self.assertEqual(ReferenceValidator().validate(" 123456789012 "), "123456789012")

    def test_rejects_malformed_references(self):
        validator = ReferenceValidator()
        for reference in (None, "", "  ", "12345678901", "12345678901a", "1234 5678 9012"):
            with self.subTest(reference=reference):
                with self.assertRaises(InvalidArgument):
                    validator.validate(reference)

    def test_pattern_can_be_disabled(self):
        self.assertEqual(ReferenceValidator(None).validate("TXN-42"), "TXN-42")
        with self.assertRaises(InvalidArgument):
            ReferenceValidator(None).validate("")


class IdempotencyGuardTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.ledger = LedgerService(self.db, LedgerConfig())
        self.campaign = self.ledger.create_campaign("host", "Fund", "", "misc", "500")

    def test_fresh_reference_is_not_duplicate(self):
        check = self.ledger.contribution_guard.check_duplicate(
            self.campaign.campaign_id, "123456789012"
        )
        self.assertFalse(check.is_duplicate)
        self.assertEqual(check.match_count, 0)

    def test_recorded_reference_is_duplicate(self):
        self.ledger.record_contribution(
            ContributionRequest(self.campaign.campaign_id, "10", "123456789012")
        )
        check = self.ledger.contribution_guard.check_duplicate(
            self.campaign.campaign_id, "123456789012"
        )
        self.assertTrue(check.is_duplicate)
        self.assertEqual(check.match_count, 1)

    def test_check_is_read_only(self):
        guard = self.ledger.contribution_guard
        for _ in range(3):
            guard.check_duplicate(self.campaign.campaign_id, "123456789012")
        self.assertEqual(self.ledger.list_campaign_contributions(self.campaign.campaign_id), [])

    def test_unknown_campaign(self):
        with self.assertRaises(NotFound):
            self.ledger.contribution_guard.check_duplicate("missing", "123456789012")

    def test_scope_keys(self):
        per_campaign = IdempotencyGuard(self.db, LedgerConfig())
        everywhere = IdempotencyGuard(
            self.db, LedgerConfig(reference_scope=ReferenceScope.GLOBAL)
        )
        self.assertEqual(per_campaign.scope_key("abc"), "abc")
        self.assertEqual(everywhere.scope_key("abc"), GLOBAL_SCOPE_KEY)


if __name__ == "__main__":
    unittest.main()
