import time
import unittest
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import DataError, OperationalError

from friendfund.config import LedgerConfig
from friendfund.db import Filter, InMemoryDbClient, Query, SqlDbClient
from friendfund.errors import (
    DuplicateKeyError,
    DuplicatePayment,
    InvalidArgument,
    InvalidOperation,
    StorageUnavailable,
)
from friendfund.identity import DbIdentityProvider
from friendfund.ledger import ContributionRequest, LedgerService
from friendfund.types import (
    CAMPAIGNS,
    CONTRIBUTIONS,
    USERS,
    CampaignStatus,
    ContributionKind,
    RepaymentStatus,
)


def campaign_fields(**overrides) -> dict:
    now = time.time()
    fields = {
        "host_id": "host-1",
        "title": "Rent support",
        "description": "",
        "purpose": "rent",
        "target_amount": Decimal("100.00"),
        "collected_amount": Decimal("0.00"),
        "status": CampaignStatus.ACTIVE.value,
        "repayment_due_date": None,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return fields


def contribution_fields(campaign_id: str, utr: str, **overrides) -> dict:
    fields = {
        "campaign_id": campaign_id,
        "contributor_id": None,
        "contributor_name": "Anonymous",
        "is_anonymous": False,
        "amount": Decimal("10.00"),
        "utr": utr,
        "reference_scope": campaign_id,
        "kind": "donation",
        "counted": True,
        "verification_status": "verified",
        "repayment_status": "not_applicable",
        "repayment_due_date": None,
        "screenshot_path": None,
        "verified_at": None,
        "repaid_at": None,
        "created_at": time.time(),
    }
    fields.update(overrides)
    return fields


class DocumentStoreContract:
    """Behaviour shared by every document store implementation."""

    db = None

    def new_campaign(self, **overrides) -> str:
        campaign_id = uuid.uuid4().hex
        self.db.insert(CAMPAIGNS, campaign_id, campaign_fields(**overrides))
        return campaign_id

    def test_insert_and_get(self):
        campaign_id = self.new_campaign(title="Medical bills")
        doc = self.db.get_by_id(CAMPAIGNS, campaign_id)
        self.assertEqual(doc["id"], campaign_id)
        self.assertEqual(doc["title"], "Medical bills")
        self.assertEqual(Decimal(str(doc["target_amount"])), Decimal("100.00"))
        self.assertIsNone(self.db.get_by_id(CAMPAIGNS, "missing"))

    def test_unique_reference_index(self):
        campaign_id = self.new_campaign()
        self.db.insert(CONTRIBUTIONS, uuid.uuid4().hex, contribution_fields(campaign_id, "111122223333"))
        with self.assertRaises(DuplicateKeyError):
            self.db.insert(
                CONTRIBUTIONS, uuid.uuid4().hex, contribution_fields(campaign_id, "111122223333")
            )
        other = self.new_campaign()
        self.db.insert(CONTRIBUTIONS, uuid.uuid4().hex, contribution_fields(other, "111122223333"))
        self.assertEqual(
            self.db.count(CONTRIBUTIONS, [Filter.equal("utr", "111122223333")]), 2
        )

    def test_conditional_increment(self):
        campaign_id = self.new_campaign()
        active = [Filter.equal("status", CampaignStatus.ACTIVE.value)]
        doc = self.db.increment(CAMPAIGNS, campaign_id, "collected_amount", Decimal("12.34"), where=active)
        self.assertEqual(Decimal(str(doc["collected_amount"])), Decimal("12.34"))

        self.db.update(CAMPAIGNS, campaign_id, {"status": CampaignStatus.CLOSED.value})
        self.assertIsNone(
            self.db.increment(CAMPAIGNS, campaign_id, "collected_amount", Decimal("1.00"), where=active)
        )
        doc = self.db.get_by_id(CAMPAIGNS, campaign_id)
        self.assertEqual(Decimal(str(doc["collected_amount"])), Decimal("12.34"))

    def test_conditional_update(self):
        campaign_id = self.new_campaign()
        self.assertIsNone(
            self.db.update(
                CAMPAIGNS,
                campaign_id,
                {"title": "Changed"},
                where=[Filter.equal("status", CampaignStatus.CLOSED.value)],
            )
        )
        updated = self.db.update(CAMPAIGNS, campaign_id, {"title": "Changed"})
        self.assertEqual(updated["title"], "Changed")
        self.assertIsNone(self.db.update(CAMPAIGNS, "missing", {"title": "x"}))

    def test_transaction_rolls_back_every_write(self):
        campaign_id = self.new_campaign()
        with self.assertRaises(RuntimeError):
            with self.db.transaction() as tx:
                tx.insert(CONTRIBUTIONS, uuid.uuid4().hex, contribution_fields(campaign_id, "999988887777"))
                tx.increment(CAMPAIGNS, campaign_id, "collected_amount", Decimal("10.00"))
                raise RuntimeError("boom")
        self.assertEqual(self.db.count(CONTRIBUTIONS, [Filter.equal("campaign_id", campaign_id)]), 0)
        doc = self.db.get_by_id(CAMPAIGNS, campaign_id)
        self.assertEqual(Decimal(str(doc["collected_amount"])), Decimal("0.00"))

    def test_query_search_order_and_paging(self):
        host = uuid.uuid4().hex
        base = time.time()
        for offset, title in enumerate(["Goa trip", "100% pure fun", "Laptop"]):
            self.new_campaign(host_id=host, title=title, created_at=base + offset)
        newest_first = self.db.query(CAMPAIGNS, Query(filters=[Filter.equal("host_id", host)]))
        self.assertEqual([d["title"] for d in newest_first], ["Laptop", "100% pure fun", "Goa trip"])

        found = self.db.query(
            CAMPAIGNS, Query(filters=[Filter.equal("host_id", host), Filter.search("title", "GOA")])
        )
        self.assertEqual([d["title"] for d in found], ["Goa trip"])
        literal = self.db.query(
            CAMPAIGNS, Query(filters=[Filter.equal("host_id", host), Filter.search("title", "0%")])
        )
        self.assertEqual([d["title"] for d in literal], ["100% pure fun"])

        page = self.db.query(
            CAMPAIGNS, Query(filters=[Filter.equal("host_id", host)], limit=1, offset=1)
        )
        self.assertEqual([d["title"] for d in page], ["100% pure fun"])

    def test_delete(self):
        campaign_id = self.new_campaign()
        self.assertTrue(self.db.delete(CAMPAIGNS, campaign_id))
        self.assertFalse(self.db.delete(CAMPAIGNS, campaign_id))

    def test_unknown_collection(self):
        with self.assertRaises(ValueError):
            self.db.get_by_id("wallets", "x")

    def test_ledger_flow(self):
        ledger = LedgerService(self.db, LedgerConfig())
        campaign = ledger.create_campaign("host-1", "Bike", "", "transport", "100")
        ledger.record_contribution(
            ContributionRequest(campaign.campaign_id, "40.10", "123412341234")
        )
        with self.assertRaises(DuplicatePayment):
            ledger.record_contribution(
                ContributionRequest(campaign.campaign_id, "40.10", "123412341234")
            )
        donation = ledger.record_contribution(
            ContributionRequest(campaign.campaign_id, "59.90", "567856785678")
        )
        after = ledger.get_campaign(campaign.campaign_id)
        self.assertEqual(after.collected_amount, Decimal("100.00"))
        self.assertEqual(after.status, CampaignStatus.COMPLETED)
        self.assertEqual(len(ledger.list_campaign_contributions(campaign.campaign_id)), 2)
        with self.assertRaises(InvalidOperation):
            ledger.mark_repaid(donation.contribution_id, "host-1")


class InMemoryDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()


class SqlDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    @classmethod
    def setUpClass(cls):
        cls.db = SqlDbClient("sqlite+pysqlite:///:memory:")

    def test_loan_repayment_on_sql(self):
        ledger = LedgerService(self.db, LedgerConfig())
        campaign = ledger.create_campaign("host-9", "Loan pool", "", "loan", "1000")
        loan = ledger.record_contribution(
            ContributionRequest(
                campaign.campaign_id,
                "250",
                "246824682468",
                kind=ContributionKind.LOAN,
                contributor_id="friend-9",
                contributor_name="Friend",
                repayment_due_date=date(2027, 5, 1),
            )
        )
        repaid = ledger.mark_repaid(loan.contribution_id, "host-9")
        self.assertEqual(repaid.repayment_status, RepaymentStatus.REPAID)

    def test_user_preferences_are_stored_as_json(self):
        identity = DbIdentityProvider(self.db, "test-secret", bcrypt_rounds=4)
        user_id = identity.create_user(f"{uuid.uuid4().hex}@example.com", None, "password123", "Meera")
        identity.update_preferences(user_id, {"upi_id": "meera@upi"})
        profile = identity.update_preferences(user_id, {"theme": "dark"})
        self.assertEqual(profile.preferences, {"upi_id": "meera@upi", "theme": "dark"})
        self.assertEqual(self.db.get_by_id(USERS, user_id)["preferences"]["upi_id"], "meera@upi")

    def test_connection_failure_is_storage_unavailable(self):
        ledger = LedgerService(self.db, LedgerConfig())
        campaign = ledger.create_campaign("host-7", "Medical bills", "", "medical", "500")
        outage = OperationalError("SELECT count(*)", {}, Exception("server closed the connection"))
        with patch("friendfund.db._SqlSession.count", side_effect=outage):
            with self.assertRaises(StorageUnavailable):
                ledger.check_duplicate(campaign.campaign_id, "135791357913")
            with self.assertRaises(StorageUnavailable):
                ledger.record_contribution(
                    ContributionRequest(campaign.campaign_id, "50", "135791357913")
                )
        self.assertEqual(ledger.list_campaign_contributions(campaign.campaign_id), [])
        self.assertEqual(
            ledger.get_campaign(campaign.campaign_id).collected_amount, Decimal("0.00")
        )
        self.assertFalse(
            ledger.check_duplicate(campaign.campaign_id, "135791357913").is_duplicate
        )

    def test_out_of_range_value_is_invalid_argument(self):
        overflow = DataError("INSERT", {}, Exception("numeric field overflow"))
        with patch("friendfund.db._SqlSession.insert", side_effect=overflow):
            with self.assertRaises(InvalidArgument):
                self.db.insert(CAMPAIGNS, uuid.uuid4().hex, campaign_fields())


if __name__ == "__main__":
    unittest.main()
