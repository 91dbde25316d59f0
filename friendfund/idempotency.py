"""
Duplicate-payment detection keyed on external payment references (UTRs).

The guard answers "has this reference already been recorded for this
campaign?" with a read-only query. It is only the first line of defence: the
document store also carries a unique index on ``(reference_scope, utr)`` so a
check-then-insert race between two requests still ends with one record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from friendfund.config import LedgerConfig
from friendfund.db import DbClient, DocumentSession, Filter
from friendfund.errors import InvalidArgument, NotFound
from friendfund.types import CAMPAIGNS, CONTRIBUTIONS, ReferenceScope

GLOBAL_SCOPE_KEY = "*"


class ReferenceValidator:
    """Format check for payment references, independent of duplicate detection."""

    def __init__(self, pattern: Optional[str] = r"^\d{12}$"):
        self.pattern = re.compile(pattern) if pattern else None

    def validate(self, reference: Optional[str]) -> str:
        value = (reference or "").strip()
        if not value:
            raise InvalidArgument("Payment reference (UTR) is required")
        if self.pattern and not self.pattern.fullmatch(value):
            raise InvalidArgument(
                f"Payment reference {value!r} does not match the expected format"
            )
        return value


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    match_count: int


class IdempotencyGuard:
    def __init__(
        self,
        db: DbClient,
        config: LedgerConfig,
        collection: str = CONTRIBUTIONS,
    ):
        self.db = db
        self.config = config
        self.collection = collection

    def scope_key(self, campaign_id: str) -> str:
        if self.config.reference_scope == ReferenceScope.GLOBAL:
            return GLOBAL_SCOPE_KEY
        return campaign_id

    def check_duplicate(
        self,
        campaign_id: str,
        reference: str,
        *,
        session: Optional[DocumentSession] = None,
    ) -> DuplicateCheck:
        """
        Count prior records carrying ``reference`` in the campaign's scope.

        Raises ``NotFound`` when the campaign does not exist. Storage failures
        propagate as ``StorageUnavailable`` and must not be read as "no duplicate".
        """
        store = session or self.db
        if store.get_by_id(CAMPAIGNS, campaign_id) is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        matches = store.count(
            self.collection,
            [
                Filter.equal("reference_scope", self.scope_key(campaign_id)),
                Filter.equal("utr", reference),
            ],
        )
        return DuplicateCheck(is_duplicate=matches > 0, match_count=matches)
