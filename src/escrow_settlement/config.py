"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. The settings object is built
once by the composition root (see bootstrap.py) and handed to each component's
constructor; core services never call get_settings() themselves.

Usage:
    from escrow_settlement.config import get_settings
    settings = get_settings()
    policy = settings.risk_policy()
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from escrow_settlement.domain.risk_rules import RiskPolicy


class Settings(BaseSettings):
    """Central configuration for the escrow settlement core."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_log_level: str = "INFO"

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./escrow_settlement.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Field encryption ---
    # 64 hex chars (32 bytes, AES-256). Validated when the FieldCipher is built.
    encryption_key: SecretStr | None = None
    ip_mask_salt: SecretStr = SecretStr("change-me")
    store_raw_ip: bool = False

    # --- Proxy / IP reputation ---
    proxy_detection_url: str = "https://proxycheck.invalid/v1/check"
    proxy_detection_api_key: str = ""
    proxy_detection_timeout_seconds: float = 2.0
    proxy_detection_attempts: int = 2

    # --- Risk scoring ---
    risk_medium_threshold: float = 25
    risk_high_threshold: float = 60
    risk_critical_threshold: float = 85
    risk_proxy_flag_confidence: float = 75
    risk_proxy_block_confidence: float = 90
    risk_weight_large_transaction: float = 20
    risk_weight_rapid_succession: float = 15
    risk_weight_unusual_location: float = 15
    risk_weight_device_change: float = 10
    risk_weight_unusual_time: float = 10
    risk_weight_ip_mismatch: float = 15
    risk_weight_proxy: float = 40
    risk_weight_high_confidence_proxy: float = 45
    risk_large_transaction_multiplier: float = 2
    risk_large_transaction_floor: float = 100
    risk_velocity_window_minutes: int = 60
    risk_velocity_count: int = 3
    risk_unusual_hours_start: int = 1
    risk_unusual_hours_end: int = 5

    # --- Escrow defaults ---
    default_expiration_days: int = 30
    auto_release_after_days: int | None = 3
    dispute_evidence_window_days: int = 5

    # --- Background sweep ---
    sweep_enabled: bool = True
    sweep_interval_seconds: int = 300

    @field_validator("auto_release_after_days")
    @classmethod
    def _non_negative_release_delay(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("auto_release_after_days must be >= 0")
        return value

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def risk_policy(self) -> RiskPolicy:
        """Build the immutable scoring policy from the risk_* settings."""
        return RiskPolicy(
            medium_threshold=self.risk_medium_threshold,
            high_threshold=self.risk_high_threshold,
            critical_threshold=self.risk_critical_threshold,
            proxy_flag_confidence=self.risk_proxy_flag_confidence,
            proxy_block_confidence=self.risk_proxy_block_confidence,
            weight_large_transaction=self.risk_weight_large_transaction,
            weight_rapid_succession=self.risk_weight_rapid_succession,
            weight_unusual_location=self.risk_weight_unusual_location,
            weight_device_change=self.risk_weight_device_change,
            weight_unusual_time=self.risk_weight_unusual_time,
            weight_ip_mismatch=self.risk_weight_ip_mismatch,
            weight_proxy=self.risk_weight_proxy,
            weight_high_confidence_proxy=self.risk_weight_high_confidence_proxy,
            large_transaction_multiplier=self.risk_large_transaction_multiplier,
            large_transaction_floor=self.risk_large_transaction_floor,
            velocity_window_minutes=self.risk_velocity_window_minutes,
            velocity_count=self.risk_velocity_count,
            unusual_hours_start=self.risk_unusual_hours_start,
            unusual_hours_end=self.risk_unusual_hours_end,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
