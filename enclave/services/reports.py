"""
Retrospective report generator.

A report covers the window [now - 24h, now] and carries:
- totals for signups and users processed (global, not window-scoped)
- the number of safe external calls recorded in the window
- a digest over the exact window-filtered ledger entries

The report is signed over its canonical JSON, persisted, and announced in
the ledger. report_id is the UTC date, so a second run on the same day
replaces the first report (upsert on report_id).
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from enclave.database import Database
from enclave.exceptions import StorageUnavailable
from enclave.models.audit import AuditAction
from enclave.models.domain import Report
from enclave.services.audit_ledger import AuditLedger, entry_to_dict
from enclave.services.external import MetadataClient
from enclave.services.receipts import ReceiptStore
from enclave.services.signing import SigningService, canonical_json, sha256_hex
from enclave.services.signup_register import SignupRegister
from enclave.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)

REPORT_WINDOW = timedelta(hours=24)


def report_id_for(day) -> str:
    return "report_" + day.strftime("%Y%m%d")


def unsigned_report(report: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in report.items() if k != "signature"}


def verify_report(report: Dict[str, Any], signer: SigningService) -> bool:
    """Recompute the signature over the report minus its signature field."""
    return signer.verify(canonical_json(unsigned_report(report)), report.get("signature", ""))


def audit_log_digest(entries: List[Dict[str, Any]]) -> str:
    return "sha256:" + sha256_hex(canonical_json(entries))


def _upsert_report(dialect: str, values: Dict[str, Any]):
    """INSERT ... ON CONFLICT (report_id) DO UPDATE, in one statement."""
    insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(Report).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[Report.report_id],
        set_={k: stmt.excluded[k] for k in values if k != "report_id"},
    )


class ReportGenerator:
    """Aggregates signups, receipts and the ledger into signed reports."""

    def __init__(
        self,
        database: Optional[Database],
        signer: SigningService,
        ledger: AuditLedger,
        signups: SignupRegister,
        receipts: ReceiptStore,
        metadata: MetadataClient,
        enclave_version: str
    ):
        self.database = database
        self.signer = signer
        self.ledger = ledger
        self.signups = signups
        self.receipts = receipts
        self.metadata = metadata
        self.enclave_version = enclave_version

    def _require_database(self) -> Database:
        if self.database is None:
            raise StorageUnavailable("report storage is not configured")
        return self.database

    def generate_report(self) -> Dict[str, Any]:
        """
        Build, sign, persist and announce the report for the last 24 hours.

        Raises StorageUnavailable if the report cannot be persisted.
        """
        database = self._require_database()

        window_end = utcnow()
        window_start = window_end - REPORT_WINDOW
        report_id = report_id_for(window_end)

        total_signups = self.signups.count()
        total_users_processed = self.receipts.count_receipts()

        entries = [entry_to_dict(e) for e in self.ledger.query(since=window_start)]
        entries = [e for e in entries if e["createdAt"] <= isoformat_z(window_end)]
        total_safe_api_calls = sum(1 for e in entries if e["action"] == AuditAction.SAFE_API_CALL)

        report = {
            "reportId": report_id,
            "generatedAt": isoformat_z(window_end),
            "timeWindow": {
                "start": isoformat_z(window_start),
                "end": isoformat_z(window_end),
            },
            "enclaveVersion": self.enclave_version,
            "composeHash": self.metadata.fetch_compose_hash(),
            "summary": {
                "totalUsersProcessed": total_users_processed,
                "totalSafeApiCalls": total_safe_api_calls,
                "totalSignups": total_signups,
                "auditLogDigest": audit_log_digest(entries),
            },
        }
        signature = self.signer.sign(canonical_json(report))
        signed_report = dict(report, signature=signature)

        values = {
            "report_id": report_id,
            "time_window_start": window_start,
            "time_window_end": window_end,
            "report_json": signed_report,
            "signature": signature,
            "created_at": window_end,
        }
        with database.transaction() as session:
            session.execute(_upsert_report(session.get_bind().dialect.name, values))

        self.ledger.try_append(AuditAction.REPORT_GENERATED, {"reportId": report_id}, signature)

        logger.info(
            "Generated %s: %d users, %d signups",
            report_id, total_users_processed, total_signups,
        )
        return signed_report

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        with self._require_database().read() as session:
            report = session.get(Report, report_id)
            return dict(report.report_json) if report is not None else None

    def list_reports(self) -> List[Dict[str, str]]:
        """Summaries of all stored reports, newest first."""
        with self._require_database().read() as session:
            rows = session.query(Report).order_by(Report.created_at.desc()).all()
            return [
                {
                    "reportId": r.report_id,
                    "generatedAt": isoformat_z(r.created_at),
                    "signature": r.signature,
                }
                for r in rows
            ]
