"""
Document store abstraction with Postgres (SQLAlchemy) and in-memory implementations.

The ledger only relies on a narrow surface: insert, get by id, update, an
atomic conditional increment, delete, and structured queries (equality and
search filters, newest-first ordering, limit/offset). Every operation also
exists on the session yielded by ``transaction()`` so several writes can be
committed or rolled back as one unit of work.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ContextManager, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from friendfund.errors import DuplicateKeyError, InvalidArgument, StorageUnavailable
from friendfund.types import CAMPAIGNS, CONTRIBUTIONS, REPAYMENTS, USERS


class FilterKind(str, Enum):
    EQUAL = "equal"
    SEARCH = "search"


@dataclass(frozen=True)
class Filter:
    """A single typed query condition."""

    kind: FilterKind
    field: str
    value: Any

    @classmethod
    def equal(cls, field: str, value: Any) -> "Filter":
        return cls(FilterKind.EQUAL, field, value)

    @classmethod
    def search(cls, field: str, value: str) -> "Filter":
        return cls(FilterKind.SEARCH, field, value)


@dataclass
class Query:
    filters: list[Filter] = field(default_factory=list)
    order_by_created_desc: bool = True
    limit: Optional[int] = None
    offset: int = 0


class DocumentSession(Protocol):
    """Operations available inside (and outside) a unit of work."""

    def insert(self, collection: str, doc_id: str, fields: dict) -> dict:
        ...

    def get_by_id(
        self, collection: str, doc_id: str, *, for_update: bool = False
    ) -> Optional[dict]:
        ...

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        ...

    def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        delta: Decimal,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        ...

    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    def query(self, collection: str, query: Query) -> list[dict]:
        ...

    def count(self, collection: str, filters: list[Filter]) -> int:
        ...


class DbClient(DocumentSession, Protocol):
    """Interface for database access."""

    def transaction(self) -> ContextManager[DocumentSession]:
        ...


class _AutoCommitOps:
    """Single-operation helpers that run each call in its own transaction."""

    def transaction(self):  # pragma: no cover - implemented by subclasses
        raise NotImplementedError

    def insert(self, collection: str, doc_id: str, fields: dict) -> dict:
        with self.transaction() as tx:
            return tx.insert(collection, doc_id, fields)

    def get_by_id(
        self, collection: str, doc_id: str, *, for_update: bool = False
    ) -> Optional[dict]:
        with self.transaction() as tx:
            return tx.get_by_id(collection, doc_id)

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        with self.transaction() as tx:
            return tx.update(collection, doc_id, fields, where=where)

    def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        delta: Decimal,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        with self.transaction() as tx:
            return tx.increment(collection, doc_id, field_name, delta, where=where)

    def delete(self, collection: str, doc_id: str) -> bool:
        with self.transaction() as tx:
            return tx.delete(collection, doc_id)

    def query(self, collection: str, query: Query) -> list[dict]:
        with self.transaction() as tx:
            return tx.query(collection, query)

    def count(self, collection: str, filters: list[Filter]) -> int:
        with self.transaction() as tx:
            return tx.count(collection, filters)


# In-memory implementation ---------------------------------------------------

UNIQUE_INDEXES: Dict[str, list[tuple[str, ...]]] = {
    CAMPAIGNS: [],
    CONTRIBUTIONS: [("reference_scope", "utr")],
    REPAYMENTS: [("reference_scope", "utr")],
    USERS: [("email",)],
}


def _matches(doc: dict, filters: Optional[list[Filter]]) -> bool:
    for flt in filters or []:
        value = doc.get(flt.field)
        if flt.kind == FilterKind.EQUAL:
            if value != flt.value:
                return False
        elif flt.kind == FilterKind.SEARCH:
            if str(flt.value).lower() not in str(value or "").lower():
                return False
    return True


class _InMemorySession:
    def __init__(self, tables: Dict[str, Dict[str, dict]]):
        self.tables = tables

    def _table(self, collection: str) -> Dict[str, dict]:
        try:
            return self.tables[collection]
        except KeyError:
            raise ValueError(f"Unknown collection {collection!r}") from None

    def insert(self, collection: str, doc_id: str, fields: dict) -> dict:
        table = self._table(collection)
        if doc_id in table:
            raise DuplicateKeyError(collection, (doc_id,))
        doc = {**fields, "id": doc_id}
        for index in UNIQUE_INDEXES.get(collection, []):
            key = tuple(doc.get(name) for name in index)
            if any(part is None for part in key):
                continue
            for existing in table.values():
                if tuple(existing.get(name) for name in index) == key:
                    raise DuplicateKeyError(collection, key)
        table[doc_id] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def get_by_id(
        self, collection: str, doc_id: str, *, for_update: bool = False
    ) -> Optional[dict]:
        doc = self._table(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        doc = self._table(collection).get(doc_id)
        if doc is None or not _matches(doc, where):
            return None
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        delta: Decimal,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        doc = self._table(collection).get(doc_id)
        if doc is None or not _matches(doc, where):
            return None
        doc[field_name] = (doc.get(field_name) or Decimal("0")) + delta
        return copy.deepcopy(doc)

    def delete(self, collection: str, doc_id: str) -> bool:
        return self._table(collection).pop(doc_id, None) is not None

    def query(self, collection: str, query: Query) -> list[dict]:
        matched = [
            (position, doc)
            for position, doc in enumerate(self._table(collection).values())
            if _matches(doc, query.filters)
        ]
        if query.order_by_created_desc:
            matched.sort(
                key=lambda item: (item[1].get("created_at") or 0.0, item[0]),
                reverse=True,
            )
        docs = [doc for _, doc in matched][query.offset :]
        if query.limit is not None:
            docs = docs[: query.limit]
        return copy.deepcopy(docs)

    def count(self, collection: str, filters: list[Filter]) -> int:
        return sum(
            1 for doc in self._table(collection).values() if _matches(doc, filters)
        )


class InMemoryDbClient(_AutoCommitOps):
    """
    Simple in-memory database for development and tests.

    Transactions are serialized by one re-entrant lock and rolled back by
    restoring a snapshot taken when the transaction began.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, dict]] = {
            name: {} for name in UNIQUE_INDEXES
        }
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[_InMemorySession]:
        with self._lock:
            snapshot = copy.deepcopy(self.tables)
            try:
                yield _InMemorySession(self.tables)
            except BaseException:
                self.tables.clear()
                self.tables.update(snapshot)
                raise

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for table in self.tables.values():
                table.clear()


# SQLAlchemy implementation --------------------------------------------------

Base = declarative_base()

MONEY = Numeric(12, 2)


class CampaignRow(Base):
    __tablename__ = "campaigns"

    id = Column(String, primary_key=True)
    host_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    purpose = Column(String, nullable=False, index=True)
    target_amount = Column(MONEY, nullable=False)
    collected_amount = Column(MONEY, nullable=False, default=Decimal("0.00"))
    status = Column(String, nullable=False, index=True)
    repayment_due_date = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ContributionRow(Base):
    __tablename__ = "contributions"
    __table_args__ = (
        UniqueConstraint("reference_scope", "utr", name="uq_contribution_reference"),
    )

    id = Column(String, primary_key=True)
    campaign_id = Column(
        String, ForeignKey("campaigns.id"), nullable=False, index=True
    )
    contributor_id = Column(String, nullable=True, index=True)
    contributor_name = Column(String, nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    amount = Column(MONEY, nullable=False)
    utr = Column(String, nullable=False)
    reference_scope = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    counted = Column(Boolean, nullable=False, default=False)
    verification_status = Column(String, nullable=False)
    repayment_status = Column(String, nullable=False)
    repayment_due_date = Column(String, nullable=True)
    screenshot_path = Column(String, nullable=True)
    verified_at = Column(Float, nullable=True)
    repaid_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class RepaymentRow(Base):
    __tablename__ = "repayments"
    __table_args__ = (
        UniqueConstraint("reference_scope", "utr", name="uq_repayment_reference"),
    )

    id = Column(String, primary_key=True)
    contribution_id = Column(
        String, ForeignKey("contributions.id"), nullable=False, index=True
    )
    campaign_id = Column(String, nullable=False, index=True)
    submitted_by = Column(String, nullable=False)
    amount = Column(MONEY, nullable=False)
    utr = Column(String, nullable=False)
    reference_scope = Column(String, nullable=False)
    evidence_path = Column(String, nullable=True)
    status = Column(String, nullable=False)
    reviewed_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    preferences = Column(JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)


MODELS = {
    CAMPAIGNS: CampaignRow,
    CONTRIBUTIONS: ContributionRow,
    REPAYMENTS: RepaymentRow,
    USERS: UserRow,
}


class _SqlSession:
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _model(collection: str):
        try:
            return MODELS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection {collection!r}") from None

    @staticmethod
    def _column(model, name: str):
        if name not in model.__table__.columns:
            raise ValueError(f"Unknown field {name!r} on {model.__tablename__}")
        return getattr(model, name)

    def _conditions(self, model, filters: Optional[list[Filter]]) -> list:
        conditions = []
        for flt in filters or []:
            column = self._column(model, flt.field)
            if flt.kind == FilterKind.EQUAL:
                conditions.append(column == flt.value)
            elif flt.kind == FilterKind.SEARCH:
                conditions.append(
                    func.lower(column).contains(str(flt.value).lower(), autoescape=True)
                )
        return conditions

    @staticmethod
    def _to_doc(row) -> dict:
        doc = {}
        for column in row.__table__.columns:
            value = getattr(row, column.key)
            doc[column.key] = copy.deepcopy(value) if isinstance(value, dict) else value
        return doc

    def _reload(self, model, doc_id: str) -> Optional[dict]:
        row = self.session.get(model, doc_id, populate_existing=True)
        return self._to_doc(row) if row is not None else None

    def insert(self, collection: str, doc_id: str, fields: dict) -> dict:
        model = self._model(collection)
        row = model(**{**fields, "id": doc_id})
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as exc:
            key = tuple(
                fields.get(name)
                for index in UNIQUE_INDEXES.get(collection, [])
                for name in index
            )
            raise DuplicateKeyError(collection, key or (doc_id,)) from exc
        return self._to_doc(row)

    def get_by_id(
        self, collection: str, doc_id: str, *, for_update: bool = False
    ) -> Optional[dict]:
        model = self._model(collection)
        row = self.session.get(
            model, doc_id, with_for_update=for_update or None, populate_existing=True
        )
        return self._to_doc(row) if row is not None else None

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        model = self._model(collection)
        values = {self._column(model, name): value for name, value in fields.items()}
        stmt = (
            update(model)
            .where(model.id == doc_id, *self._conditions(model, where))
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if not result.rowcount:
            return None
        return self._reload(model, doc_id)

    def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        delta: Decimal,
        *,
        where: Optional[list[Filter]] = None,
    ) -> Optional[dict]:
        model = self._model(collection)
        column = self._column(model, field_name)
        stmt = (
            update(model)
            .where(model.id == doc_id, *self._conditions(model, where))
            .values({column: column + delta})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if not result.rowcount:
            return None
        return self._reload(model, doc_id)

    def delete(self, collection: str, doc_id: str) -> bool:
        model = self._model(collection)
        result = self.session.execute(
            delete(model)
            .where(model.id == doc_id)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def query(self, collection: str, query: Query) -> list[dict]:
        model = self._model(collection)
        stmt = select(model).where(*self._conditions(model, query.filters))
        if query.order_by_created_desc:
            stmt = stmt.order_by(model.created_at.desc())
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        rows = self.session.execute(stmt).scalars().all()
        return [self._to_doc(row) for row in rows]

    def count(self, collection: str, filters: list[Filter]) -> int:
        model = self._model(collection)
        stmt = (
            select(func.count())
            .select_from(model)
            .where(*self._conditions(model, filters))
        )
        return int(self.session.execute(stmt).scalar_one())


class SqlDbClient(_AutoCommitOps):
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[_SqlSession]:
        try:
            with self.Session() as session, session.begin():
                yield _SqlSession(session)
        except DataError as exc:
            raise InvalidArgument(f"Value rejected by storage: {exc.orig or exc}") from exc
        except (OperationalError, InterfaceError) as exc:
            raise StorageUnavailable(f"Database unavailable: {exc.orig or exc}") from exc
