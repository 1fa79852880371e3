"""
Audit ledger model.

This model exists to provide an immutable, append-only record of every
enclave action. Reports digest it; nothing ever edits it.
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON

from enclave.database import Base
from enclave.timeutil import utcnow


class AuditEntry(Base):
    """
    Immutable audit entry.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    - id is monotonic; created_at is assigned by the enclave, not the caller
    """
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    action = Column(String, nullable=False, index=True)  # e.g., "data_received"
    details = Column(JSON, nullable=False, default=dict)
    signature = Column(String, nullable=True)  # "hmac:<hex>" when the action was signed
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


# Action constants for consistency
class AuditAction:
    """Enumeration of audit ledger actions."""
    DATA_RECEIVED = "data_received"
    DATA_DELETED = "data_deleted"
    REPORT_GENERATED = "report_generated"
    SAFE_API_CALL = "safe_api_call"
    SIGNUP_RECORDED = "signup_recorded"
