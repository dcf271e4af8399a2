"""
============================================================================
SNAP Bank Bridge v1.0.0
Configuration - Environment-driven Settings
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Reads .env (python-dotenv) and os.environ; logs on load

Fail-closed: missing credentials or key paths stop startup (SNAP-CFG-001).
Malformed numeric values fall back to defaults with a warning.

ENVIRONMENT VARIABLES:
    - SNAP_BASE_URL (required)
    - SNAP_ACCESS_TOKEN_URL (default: /openapi/v1.0/access-token/b2b)
    - SNAP_CLIENT_ID, SNAP_CLIENT_SECRET (required)
    - SNAP_PRIVATE_KEY_PATH (required), SNAP_BANK_PUBLIC_KEY_PATH
    - SNAP_PARTNER_ID, SNAP_CHANNEL_ID, SNAP_APP_HOST
    - SNAP_REQUEST_TIMEOUT_SECONDS (default: 5)
    - SNAP_TOKEN_LEASE_SECONDS (default: 900)
    - SNAP_TOKEN_REFRESH_MARGIN_SECONDS (default: 30)
    - SNAP_ISSUED_TOKEN_TTL_SECONDS (default: 900)
    - SNAP_EXPECTED_CLIENT_ID
    - SNAP_VA_LIFETIME_HOURS (default: 24)
    - WATCHER_MAX_RETRY (default: 10)
    - WATCHER_RETRY_BASE_SECONDS (default: 1)
    - WATCHER_RETRY_MAX_SECONDS (default: 600)
    - DB_URL, or DB_HOST / DB_PORT / DB_NAME / DB_USER / DB_PASSWORD
    - REDIS_URL (default: redis://localhost:6379/0)

============================================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from dotenv import load_dotenv

from snap_bridge.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ACCESS_TOKEN_URL = "/openapi/v1.0/access-token/b2b"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 5.0
DEFAULT_TOKEN_LEASE_SECONDS = 900.0
DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS = 30.0
DEFAULT_ISSUED_TOKEN_TTL_SECONDS = 900
DEFAULT_VA_LIFETIME_HOURS = 24.0
DEFAULT_WATCHER_MAX_RETRY = 10
DEFAULT_WATCHER_RETRY_BASE_SECONDS = 1.0
DEFAULT_WATCHER_RETRY_MAX_SECONDS = 600.0
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def redact(value: str) -> str:
    """abcd...wxyz for logs; short values are fully hidden."""
    if not value:
        return ""
    if len(value) <= 8:
        return "[REDACTED]"
    return f"{value[:4]}...{value[-4:]}"


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning(
            f"[SNAP-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


def _database_url_from_env() -> str:
    url = os.environ.get("DB_URL", "").strip()
    if url:
        return url
    host = os.environ.get("DB_HOST", "").strip()
    if not host:
        return ""
    port = os.environ.get("DB_PORT", "5432").strip()
    name = os.environ.get("DB_NAME", "").strip()
    user = os.environ.get("DB_USER", "").strip()
    password = os.environ.get("DB_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


@dataclass
class SnapConfig:
    """
    SNAP bridge configuration.

    Secrets are excluded from repr.
    """
    base_url: str = ""
    client_id: str = ""
    client_secret: str = ""
    private_key_path: str = ""
    bank_public_key_path: Optional[str] = None
    access_token_url: str = DEFAULT_ACCESS_TOKEN_URL
    partner_id: str = ""
    channel_id: str = ""
    app_host: str = ""
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    token_lease_seconds: float = DEFAULT_TOKEN_LEASE_SECONDS
    token_refresh_margin_seconds: float = DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS
    issued_token_ttl_seconds: int = DEFAULT_ISSUED_TOKEN_TTL_SECONDS
    expected_client_id: Optional[str] = None
    va_lifetime_hours: float = DEFAULT_VA_LIFETIME_HOURS
    watcher_max_retry: int = DEFAULT_WATCHER_MAX_RETRY
    watcher_retry_base_seconds: float = DEFAULT_WATCHER_RETRY_BASE_SECONDS
    watcher_retry_max_seconds: float = DEFAULT_WATCHER_RETRY_MAX_SECONDS
    database_url: str = ""
    redis_url: str = DEFAULT_REDIS_URL

    def __repr__(self) -> str:
        return (
            f"SnapConfig(base_url={self.base_url!r}, client_id={self.client_id!r}, "
            f"client_secret={redact(self.client_secret)!r}, "
            f"private_key_path={self.private_key_path!r}, "
            f"timeout={self.request_timeout_seconds})"
        )

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            ConfigurationError: Listing every problem found (SNAP-CFG-001)
        """
        errors: List[str] = []

        for env_name, value in (
            ("SNAP_BASE_URL", self.base_url),
            ("SNAP_CLIENT_ID", self.client_id),
            ("SNAP_CLIENT_SECRET", self.client_secret),
            ("SNAP_PRIVATE_KEY_PATH", self.private_key_path),
        ):
            if not value:
                errors.append(f"{env_name} must be set")

        if self.base_url and not self.base_url.startswith(("http://", "https://")):
            errors.append(f"SNAP_BASE_URL must be an http(s) URL, got: {self.base_url}")
        if self.request_timeout_seconds <= 0:
            errors.append(
                f"SNAP_REQUEST_TIMEOUT_SECONDS must be positive, got: {self.request_timeout_seconds}"
            )
        if self.token_lease_seconds <= 0:
            errors.append(
                f"SNAP_TOKEN_LEASE_SECONDS must be positive, got: {self.token_lease_seconds}"
            )
        if not 0 <= self.token_refresh_margin_seconds < self.token_lease_seconds:
            errors.append(
                "SNAP_TOKEN_REFRESH_MARGIN_SECONDS must be >= 0 and below the lease, "
                f"got: {self.token_refresh_margin_seconds}"
            )
        if self.issued_token_ttl_seconds <= 0:
            errors.append(
                f"SNAP_ISSUED_TOKEN_TTL_SECONDS must be positive, got: {self.issued_token_ttl_seconds}"
            )
        if self.watcher_max_retry < 1:
            errors.append(f"WATCHER_MAX_RETRY must be >= 1, got: {self.watcher_max_retry}")
        if self.watcher_retry_base_seconds < 0 or self.watcher_retry_max_seconds < 0:
            errors.append("WATCHER_RETRY_*_SECONDS must be non-negative")

        if errors:
            error_msg = "SNAP configuration validation failed: " + "; ".join(errors)
            logger.error(f"[SNAP-CFG-001] {error_msg}")
            raise ConfigurationError(error_msg)

        logger.info(
            f"[SNAP-CONFIG] Configuration validated | base_url={self.base_url} | "
            f"client_id={self.client_id} | client_secret=[REDACTED] | "
            f"timeout_s={self.request_timeout_seconds} | "
            f"lease_s={self.token_lease_seconds} | watcher_max_retry={self.watcher_max_retry}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True, env_file: Optional[str] = None) -> "SnapConfig":
        """
        Load configuration from the environment (and .env via python-dotenv).

        Args:
            validate: Whether to validate after loading
            env_file: Explicit .env path; default search when None

        Raises:
            ConfigurationError: If required configuration is missing
        """
        load_dotenv(env_file)

        config = cls(
            base_url=os.environ.get("SNAP_BASE_URL", "").strip().rstrip("/"),
            client_id=os.environ.get("SNAP_CLIENT_ID", "").strip(),
            client_secret=os.environ.get("SNAP_CLIENT_SECRET", ""),
            private_key_path=os.environ.get("SNAP_PRIVATE_KEY_PATH", "").strip(),
            bank_public_key_path=os.environ.get("SNAP_BANK_PUBLIC_KEY_PATH", "").strip() or None,
            access_token_url=os.environ.get("SNAP_ACCESS_TOKEN_URL", DEFAULT_ACCESS_TOKEN_URL).strip(),
            partner_id=os.environ.get("SNAP_PARTNER_ID", "").strip(),
            channel_id=os.environ.get("SNAP_CHANNEL_ID", "").strip(),
            app_host=os.environ.get("SNAP_APP_HOST", "").strip(),
            request_timeout_seconds=_env_number(
                "SNAP_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS, float),
            token_lease_seconds=_env_number(
                "SNAP_TOKEN_LEASE_SECONDS", DEFAULT_TOKEN_LEASE_SECONDS, float),
            token_refresh_margin_seconds=_env_number(
                "SNAP_TOKEN_REFRESH_MARGIN_SECONDS", DEFAULT_TOKEN_REFRESH_MARGIN_SECONDS, float),
            issued_token_ttl_seconds=_env_number(
                "SNAP_ISSUED_TOKEN_TTL_SECONDS", DEFAULT_ISSUED_TOKEN_TTL_SECONDS, int),
            expected_client_id=os.environ.get("SNAP_EXPECTED_CLIENT_ID", "").strip() or None,
            va_lifetime_hours=_env_number(
                "SNAP_VA_LIFETIME_HOURS", DEFAULT_VA_LIFETIME_HOURS, float),
            watcher_max_retry=_env_number("WATCHER_MAX_RETRY", DEFAULT_WATCHER_MAX_RETRY, int),
            watcher_retry_base_seconds=_env_number(
                "WATCHER_RETRY_BASE_SECONDS", DEFAULT_WATCHER_RETRY_BASE_SECONDS, float),
            watcher_retry_max_seconds=_env_number(
                "WATCHER_RETRY_MAX_SECONDS", DEFAULT_WATCHER_RETRY_MAX_SECONDS, float),
            database_url=_database_url_from_env(),
            redis_url=os.environ.get("REDIS_URL", DEFAULT_REDIS_URL).strip(),
        )

        if validate:
            config.validate()
        return config
