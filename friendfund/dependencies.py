"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from friendfund.config import LedgerConfig, get_settings
from friendfund.db import DbClient, InMemoryDbClient, SqlDbClient
from friendfund.errors import Unauthenticated
from friendfund.identity import DbIdentityProvider, IdentityProvider
from friendfund.ledger import LedgerService
from friendfund.ocr import GeminiOcrEngine, OcrEngine, UnavailableOcrEngine
from friendfund.queue import (
    InMemoryVerificationQueue,
    RedisVerificationQueue,
    VerificationQueue,
)
from friendfund.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: VerificationQueue | None = None
_identity_provider: IdentityProvider | None = None
_ocr_engine: OcrEngine | None = None
_ledger_service: LedgerService | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so ledger state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_queue_client() -> VerificationQueue:
    """
    Return a singleton queue client for dispatching verification jobs to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisVerificationQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryVerificationQueue()
    return _queue_client


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    _identity_provider = DbIdentityProvider(
        get_db_client(),
        settings.jwt_secret,
        session_ttl_seconds=settings.session_ttl_seconds,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    return _identity_provider


def get_ocr_engine() -> OcrEngine:
    global _ocr_engine
    if _ocr_engine:
        return _ocr_engine

    settings = get_settings()
    if settings.gemini_api_key:
        _ocr_engine = GeminiOcrEngine(settings.gemini_api_key, settings.gemini_ocr_model)
    else:
        _ocr_engine = UnavailableOcrEngine()
    return _ocr_engine


def get_ledger_service() -> LedgerService:
    global _ledger_service
    if _ledger_service:
        return _ledger_service

    _ledger_service = LedgerService(
        get_db_client(),
        LedgerConfig.from_settings(get_settings()),
        identity=get_identity_provider(),
    )
    return _ledger_service


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Authorization header must carry a Bearer token")
    return token.strip()


def get_optional_user_id(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Optional[str]:
    """Caller's user id, or None for guests. A bad token is still rejected."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    return identity.resolve_session(token)


def get_current_user_id(
    user_id: Optional[str] = Depends(get_optional_user_id),
) -> str:
    if user_id is None:
        raise Unauthenticated("Authorization required")
    return user_id
