"""
Configuration and settings for the FriendFund backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from friendfund.types import CountingPolicy, ReferenceScope


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible storage for payment screenshots
    s3_endpoint: Optional[str] = Field(default=None, env="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, env="S3_REGION")
    s3_bucket: Optional[str] = Field(default=None, env="S3_BUCKET")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )
    screenshots_prefix: str = Field(default="screenshots")

    # OCR via Gemini
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    gemini_ocr_model: str = Field(default="gemini-2.5-flash")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="FRIENDFUND_USE_IN_MEMORY_BACKENDS"
    )

    # Queue (Redis) for screenshot verification jobs
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_queue_key: str = Field(
        default="friendfund:verifications", env="REDIS_QUEUE_KEY"
    )

    # Sessions
    jwt_secret: str = Field(default="dev-only-change-me", env="JWT_SECRET")
    session_ttl_seconds: int = Field(default=7 * 24 * 3600)
    bcrypt_rounds: int = Field(default=12, env="BCRYPT_ROUNDS")

    frontend_base_url: str = Field(
        default="https://friendfund.app", env="FRONTEND_BASE_URL"
    )

    # Ledger policy
    counting_policy: CountingPolicy = Field(default=CountingPolicy.IMMEDIATE)
    reference_scope: ReferenceScope = Field(default=ReferenceScope.CAMPAIGN)
    reference_pattern: str = Field(default=r"^\d{12}$")
    ocr_amount_tolerance: Decimal = Field(default=Decimal("1.00"))
    ocr_auto_verify_threshold: int = Field(default=70)

    # QR rendering defaults
    qr_width: int = Field(default=300)
    qr_margin: int = Field(default=2)
    qr_dark_color: str = Field(default="#000000")
    qr_light_color: str = Field(default="#ffffff")


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger policy knobs handed explicitly to the ledger and its guards."""

    counting_policy: CountingPolicy = CountingPolicy.IMMEDIATE
    reference_scope: ReferenceScope = ReferenceScope.CAMPAIGN
    reference_pattern: Optional[str] = r"^\d{12}$"
    ocr_amount_tolerance: Decimal = Decimal("1.00")
    ocr_auto_verify_threshold: int = 70
    frontend_base_url: str = "https://friendfund.app"

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerConfig":
        return cls(
            counting_policy=settings.counting_policy,
            reference_scope=settings.reference_scope,
            reference_pattern=settings.reference_pattern or None,
            ocr_amount_tolerance=settings.ocr_amount_tolerance,
            ocr_auto_verify_threshold=settings.ocr_auto_verify_threshold,
            frontend_base_url=settings.frontend_base_url.rstrip("/"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
