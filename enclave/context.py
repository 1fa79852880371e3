"""
Process-scoped enclave context.

Everything that used to be module-level state (storage handles, the signing
key, the signup mode) is built once here and handed to the operations.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from enclave.config import Settings
from enclave.database import Database
from enclave.exceptions import ConfigurationError, StorageUnavailable
from enclave.services.audit_ledger import AuditLedger
from enclave.services.deletion import DeletionAttestor
from enclave.services.external import HttpLedgerClient, LedgerClient, MetadataClient
from enclave.services.receipts import ReceiptStore
from enclave.services.reports import ReportGenerator
from enclave.services.signing import SigningService
from enclave.services.signup_register import SignupRegister, select_signup_register

logger = logging.getLogger(__name__)


@dataclass
class EnclaveContext:
    settings: Settings
    database: Optional[Database]
    signer: SigningService
    ledger: AuditLedger
    signups: SignupRegister
    receipts: ReceiptStore
    attestor: DeletionAttestor
    reports: ReportGenerator
    metadata: MetadataClient
    ledger_client: LedgerClient

    def close(self) -> None:
        self.metadata.close()
        self.ledger_client.close()
        if self.database is not None:
            self.database.close()
        logger.info("Enclave context closed")


def open_database(settings: Settings) -> Optional[Database]:
    """
    Connect to storage and create the schema.

    Without DATABASE_URL the enclave runs without storage. A failed
    connection falls back to no storage outside production and is fatal
    in production.
    """
    if not settings.database_url:
        logger.info("No DATABASE_URL, running without storage")
        return None

    database = Database.from_urls(settings.database_url, settings.database_replica_url)
    try:
        database.create_schema()
    except StorageUnavailable as exc:
        database.close()
        if settings.is_production:
            raise ConfigurationError(f"database initialization failed: {exc.message}") from exc
        logger.error("Database initialization failed, falling back to in-memory: %s", exc.message)
        return None
    return database


def build_ledger_client(settings: Settings) -> LedgerClient:
    if not settings.ledger_submission_key:
        logger.info("No LEDGER_SUBMISSION_KEY, deletion attestations stay local")
        return LedgerClient()
    if not settings.ledger_rpc_url:
        raise ConfigurationError("LEDGER_RPC_URL is required when LEDGER_SUBMISSION_KEY is set")
    return HttpLedgerClient(
        settings.ledger_rpc_url,
        settings.ledger_contract,
        settings.ledger_submission_key,
        timeout=settings.ledger_timeout_seconds,
    )


def create_context(
    settings: Settings,
    database: Optional[Database] = None,
    metadata: Optional[MetadataClient] = None,
    ledger_client: Optional[LedgerClient] = None
) -> EnclaveContext:
    """
    Wire every component. Explicit collaborators override the ones
    derived from settings.
    """
    if settings.is_production and not settings.signing_key:
        raise ConfigurationError("signing key is required in production")

    if database is None:
        database = open_database(settings)
    if metadata is None:
        metadata = MetadataClient(settings.metadata_url, timeout=settings.metadata_timeout_seconds)
    if ledger_client is None:
        ledger_client = build_ledger_client(settings)

    signer = SigningService(settings.signing_key)
    ledger = AuditLedger(database)
    signups = select_signup_register(database, settings, signer, ledger)
    receipts = ReceiptStore(database, signer, ledger)
    attestor = DeletionAttestor(signer, ledger, receipts, metadata, ledger_client)
    reports = ReportGenerator(
        database, signer, ledger, signups, receipts, metadata, settings.enclave_version
    )

    logger.info(
        "Enclave context ready",
        extra={"signup_mode": signups.mode.value, "env": settings.env},
    )
    return EnclaveContext(
        settings=settings,
        database=database,
        signer=signer,
        ledger=ledger,
        signups=signups,
        receipts=receipts,
        attestor=attestor,
        reports=reports,
        metadata=metadata,
        ledger_client=ledger_client,
    )
