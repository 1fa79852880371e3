"""
Configuration for the enclave service.

Values are injected as environment variables by the hosting platform.
Development runs fall back to defaults; production requires the signing
key and a database URL.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from enclave.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEV_SIGNING_KEY = "dev-signing-key-not-for-production"
DEFAULT_METADATA_URL = "http://localhost:8090/compose-hash"
DEFAULT_LEDGER_CONTRACT = "0x2f83172A49584C017F2B256F0FB2Dca14126Ba9C"
ENCLAVE_VERSION = "1.2.11"


@dataclass(frozen=True)
class Settings:
    env: str = "development"
    signing_key: str = DEV_SIGNING_KEY
    database_url: Optional[str] = None
    database_replica_url: Optional[str] = None
    enclave_id: Optional[str] = None
    metadata_url: str = DEFAULT_METADATA_URL
    metadata_timeout_seconds: float = 2.0
    ledger_rpc_url: Optional[str] = None
    ledger_contract: str = DEFAULT_LEDGER_CONTRACT
    ledger_submission_key: Optional[str] = None
    ledger_timeout_seconds: float = 10.0
    enclave_version: str = ENCLAVE_VERSION
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def is_production(self) -> bool:
        return self.env == "production"


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _normalize_database_url(url: Optional[str]) -> Optional[str]:
    # Hosted Postgres providers hand out postgres:// but SQLAlchemy needs postgresql://
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url or None


def load_settings() -> Settings:
    """
    Read settings from the environment.

    Raises ConfigurationError when production is missing a required secret.
    """
    env = os.getenv("ENCLAVE_ENV", "development")
    production = env == "production"

    signing_key = os.getenv("SIGNING_KEY")
    if not signing_key:
        if production:
            raise ConfigurationError("SIGNING_KEY is required in production")
        logger.warning("SIGNING_KEY not set, using insecure development key")
        signing_key = DEV_SIGNING_KEY

    database_url = _normalize_database_url(os.getenv("DATABASE_URL"))
    if production and not database_url:
        raise ConfigurationError("DATABASE_URL is required in production")

    ledger_rpc_url = os.getenv("LEDGER_RPC_URL") or None
    if os.getenv("LEDGER_SUBMISSION_KEY") and not ledger_rpc_url:
        # The credential is only ever sent to an explicitly configured gateway
        raise ConfigurationError("LEDGER_RPC_URL is required when LEDGER_SUBMISSION_KEY is set")

    return Settings(
        env=env,
        signing_key=signing_key,
        database_url=database_url,
        database_replica_url=_normalize_database_url(os.getenv("DATABASE_REPLICA_URL")),
        enclave_id=os.getenv("ENCLAVE_ID") or None,
        metadata_url=os.getenv("METADATA_URL", DEFAULT_METADATA_URL),
        metadata_timeout_seconds=_get_float("METADATA_TIMEOUT_SECONDS", 2.0),
        ledger_rpc_url=ledger_rpc_url,
        ledger_contract=os.getenv("LEDGER_CONTRACT", DEFAULT_LEDGER_CONTRACT),
        ledger_submission_key=os.getenv("LEDGER_SUBMISSION_KEY") or None,
        ledger_timeout_seconds=_get_float("LEDGER_TIMEOUT_SECONDS", 10.0),
        enclave_version=os.getenv("ENCLAVE_VERSION", ENCLAVE_VERSION),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes"),
    )
