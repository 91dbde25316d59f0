"""
Identity provider: user accounts, preferences and signed sessions.

The ledger only asks this module who the caller is and what their display
name is. Passwords are stored as bcrypt hashes and sessions are HS256 JWTs
whose signature and expiry are checked on every request.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import bcrypt
import jwt

from friendfund.db import DbClient, Filter, Query
from friendfund.errors import (
    DuplicateKeyError,
    InvalidArgument,
    NotFound,
    Unauthenticated,
)
from friendfund.types import USERS

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8
SESSION_ISSUER = "friendfund"


@dataclass
class UserProfile:
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None
    preferences: dict = field(default_factory=dict)

    @classmethod
    def from_doc(cls, doc: dict) -> "UserProfile":
        return cls(
            user_id=doc["id"],
            name=doc["name"],
            email=doc["email"],
            phone=doc.get("phone"),
            preferences=dict(doc.get("preferences") or {}),
        )


class IdentityProvider(Protocol):
    def create_user(
        self, email: str, phone: Optional[str], password: str, name: str
    ) -> str:
        ...

    def get_user(self, user_id: str) -> UserProfile:
        ...

    def update_preferences(self, user_id: str, preferences: dict) -> UserProfile:
        ...

    def authenticate(self, email: str, password: str) -> str:
        ...

    def resolve_session(self, token: str) -> str:
        ...


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError as exc:
        logger.error(f"Password verification failed: {exc}")
        return False


class DbIdentityProvider:
    """Identity provider backed by the ``users`` collection of the document store."""

    def __init__(
        self,
        db: DbClient,
        secret_key: str,
        *,
        session_ttl_seconds: int = 7 * 24 * 3600,
        algorithm: str = "HS256",
        bcrypt_rounds: int = BCRYPT_ROUNDS,
    ):
        if not secret_key:
            raise ValueError("A session signing secret is required")
        self.db = db
        self.secret_key = secret_key
        self.session_ttl_seconds = session_ttl_seconds
        self.algorithm = algorithm
        self.bcrypt_rounds = bcrypt_rounds

    def create_user(
        self, email: str, phone: Optional[str], password: str, name: str
    ) -> str:
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if "@" not in email:
            raise InvalidArgument("A valid email address is required")
        if not name:
            raise InvalidArgument("Name is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidArgument(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        user_id = uuid.uuid4().hex
        try:
            self.db.insert(
                USERS,
                user_id,
                {
                    "email": email,
                    "phone": (phone or "").strip() or None,
                    "name": name,
                    "password_hash": hash_password(password, self.bcrypt_rounds),
                    "preferences": {},
                    "created_at": time.time(),
                },
            )
        except DuplicateKeyError:
            raise InvalidArgument("An account with this email already exists") from None
        logger.info("Registered user %s", user_id)
        return user_id

    def get_user(self, user_id: str) -> UserProfile:
        doc = self.db.get_by_id(USERS, user_id)
        if doc is None:
            raise NotFound(f"User {user_id} not found")
        return UserProfile.from_doc(doc)

    def update_preferences(self, user_id: str, preferences: dict) -> UserProfile:
        with self.db.transaction() as tx:
            doc = tx.get_by_id(USERS, user_id, for_update=True)
            if doc is None:
                raise NotFound(f"User {user_id} not found")
            merged = {**(doc.get("preferences") or {}), **preferences}
            updated = tx.update(USERS, user_id, {"preferences": merged})
        return UserProfile.from_doc(updated)

    def authenticate(self, email: str, password: str) -> str:
        matches = self.db.query(
            USERS,
            Query(filters=[Filter.equal("email", (email or "").strip().lower())], limit=1),
        )
        if not matches or not verify_password(password or "", matches[0]["password_hash"]):
            raise Unauthenticated("Invalid email or password")
        return self._issue_token(matches[0]["id"])

    def _issue_token(self, user_id: str) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "iss": SESSION_ISSUER,
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.session_ttl_seconds)).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def resolve_session(self, token: str) -> str:
        if not token:
            raise Unauthenticated("Authorization required")
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=SESSION_ISSUER,
                options={"require": ["exp", "sub", "iss"]},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Session expired") from None
        except jwt.InvalidTokenError:
            raise Unauthenticated("Invalid session token") from None
        user_id = payload["sub"]
        if self.db.get_by_id(USERS, user_id) is None:
            raise Unauthenticated("Session user no longer exists")
        return user_id
