"""
Configuration module for the Graph audit tools.
Defines tunable parameters, API endpoints, and credential loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

REQUIRED_ENV_VARS = ("TENANT_ID", "CLIENT_ID", "CLIENT_SECRET")

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = ""

@dataclass
class AuthConfig:
    """Client-credentials configuration, using a secret or a certificate."""
    tenant_id: str
    client_id: str
    client_secret: str = ""
    mode: str = "secret"  # "secret" or "certificate"
    certificate: Optional[CertificateAuth] = None

    @property
    def authority(self) -> str:
        return f"{LOGIN_BASE_URL}/{self.tenant_id}"


# ─── Graph API Settings ─────────────────────────────────────────────────────

LOGIN_BASE_URL = "https://login.microsoftonline.com"
GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 8       # In-flight enrichment requests
MAX_RETRIES = 3                   # Retry count for enrichment requests
INITIAL_BACKOFF_SECONDS = 1.0     # First retry delay
MAX_BACKOFF_SECONDS = 60.0        # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops


@dataclass
class RetryPolicy:
    """
    Retry behaviour for a single request.
    Only enrichment calls carry one; pagination always runs with no retry.
    """
    max_retries: int = MAX_RETRIES
    retryable_statuses: tuple[int, ...] = RETRYABLE_STATUSES
    initial_backoff: float = INITIAL_BACKOFF_SECONDS
    max_backoff: float = MAX_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER

    def is_retryable(self, status_code: int) -> bool:
        return status_code in self.retryable_statuses

    def next_backoff(self, current: float) -> float:
        return min(current * self.multiplier, self.max_backoff)


NO_RETRY = RetryPolicy(max_retries=0)


# ─── Audit Settings ─────────────────────────────────────────────────────────

@dataclass
class AuditConfig:
    """Controls for one enumeration-and-enrichment pass."""
    max_concurrency: int = MAX_CONCURRENT_REQUESTS
    page_size: int = DEFAULT_PAGE_SIZE
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.retry.max_retries < 0:
            raise ConfigError(f"max_retries cannot be negative, got {self.retry.max_retries}")


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for a tool invocation."""
    auth: AuthConfig
    audit: AuditConfig = field(default_factory=AuditConfig)
    output_dir: Optional[Path] = None
    dry_run: bool = False

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        certificate_path: Optional[str] = None,
    ) -> "EngineConfig":
        """
        Build configuration from the process environment.

        An .env file is loaded first if present; values already set in the
        environment win. All three credential variables are required, except
        CLIENT_SECRET when a certificate path is supplied.
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.is_file():
            load_dotenv(env_path, override=False)
        elif env_file:
            raise ConfigError(f"Environment file not found: {env_path}")

        required = REQUIRED_ENV_VARS
        if certificate_path:
            required = tuple(v for v in REQUIRED_ENV_VARS if v != "CLIENT_SECRET")

        missing = [name for name in required if not os.environ.get(name)]
        if missing:
            raise ConfigError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

        auth = AuthConfig(
            tenant_id=os.environ["TENANT_ID"],
            client_id=os.environ["CLIENT_ID"],
            client_secret=os.environ.get("CLIENT_SECRET", ""),
        )
        if certificate_path:
            auth.mode = "certificate"
            auth.certificate = CertificateAuth(
                certificate_path=certificate_path,
                certificate_password=os.environ.get("CERT_PASSWORD", ""),
            )
        return cls(auth=auth)
