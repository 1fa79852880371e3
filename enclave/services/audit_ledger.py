"""
Append-only audit ledger.

Auditing is best-effort: a failed append is logged and dropped so the
action being audited still completes. There is no in-memory fallback;
without storage the ledger is a no-op sink.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from enclave.database import Database
from enclave.exceptions import LedgerAppendFailure, StorageUnavailable
from enclave.models.audit import AuditEntry, AuditAction
from enclave.timeutil import isoformat_z

logger = logging.getLogger(__name__)


def entry_to_dict(entry: AuditEntry) -> Dict[str, Any]:
    """Canonical view of an entry, used for digests and the audit-log endpoint."""
    return {
        "id": entry.id,
        "action": entry.action,
        "details": entry.details or {},
        "signature": entry.signature,
        "createdAt": isoformat_z(entry.created_at),
    }


class AuditLedger:
    """Write-only ledger of enclave actions. Exposes no update or delete."""

    def __init__(self, database: Optional[Database]):
        self.database = database

    @property
    def enabled(self) -> bool:
        return self.database is not None

    def append(
        self,
        action: str,
        details: Dict[str, Any],
        signature: Optional[str] = None
    ) -> Optional[int]:
        """
        Append one entry in its own transaction and return its id.

        Returns None when the ledger has no storage.
        Raises LedgerAppendFailure if the write fails.
        """
        if not self.enabled:
            logger.debug("Ledger disabled, dropping %s entry", action)
            return None

        try:
            with self.database.transaction() as session:
                entry = AuditEntry(action=action, details=details, signature=signature)
                session.add(entry)
                session.flush()
                entry_id = entry.id
        except StorageUnavailable as exc:
            raise LedgerAppendFailure(f"append {action} failed: {exc.message}") from exc

        return entry_id

    def try_append(
        self,
        action: str,
        details: Dict[str, Any],
        signature: Optional[str] = None
    ) -> Optional[int]:
        """Best-effort append: failures are logged and discarded."""
        try:
            return self.append(action, details, signature)
        except LedgerAppendFailure as exc:
            logger.error("Audit append failed, continuing: %s", exc.message)
            return None

    def record_safe_api_call(self, endpoint: str) -> Optional[int]:
        """Record a call to an allowlisted external endpoint."""
        return self.try_append(AuditAction.SAFE_API_CALL, {"endpoint": endpoint})

    def query(self, since: Optional[datetime] = None) -> List[AuditEntry]:
        """
        Entries ascending by creation time (id breaks ties).

        Unfiltered when `since` is omitted. Served from the replica when
        configured, so a just-appended entry may not be visible yet.
        """
        if not self.enabled:
            return []

        with self.database.read() as session:
            q = session.query(AuditEntry)
            if since is not None:
                q = q.filter(AuditEntry.created_at >= since)
            entries = q.order_by(AuditEntry.created_at.asc(), AuditEntry.id.asc()).all()
            session.expunge_all()
        return entries
