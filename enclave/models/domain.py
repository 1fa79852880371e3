"""Domain models - the persisted records of the attested pipeline."""
from sqlalchemy import Column, String, Integer, DateTime, JSON

from enclave.database import Base
from enclave.timeutil import utcnow


class Signup(Base):
    """
    One signup event. Only written in persisted mode.

    Invariants:
    - Never stores the raw user id, only its one-way hash
    """
    __tablename__ = "signups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id_hash = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    source_id = Column(String, nullable=True)  # Enclave instance that recorded it


class Receipt(Base):
    """
    Durable proof that a user-data submission happened.

    Invariants:
    - Holds the safe derivative only, never the raw payload
    - raw_data_discarded_at is set at creation: the payload is dropped inside the request
    - deleted_at is set only by a deletion attestation
    - deletion_tx_hash is set only after a successful external submission
    """
    __tablename__ = "user_data_receipts"

    receipt_id = Column(String, primary_key=True)
    user_id_hash = Column(String, nullable=False, index=True)
    safe_derivative = Column(String, nullable=False)
    signature = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    raw_data_discarded_at = Column(DateTime, nullable=False, default=utcnow)
    deleted_at = Column(DateTime, nullable=True)
    deletion_tx_hash = Column(String, nullable=True)


class Report(Base):
    """
    Signed retrospective report.

    Invariants:
    - report_id is derived from the UTC date, so there is one row per day
    - report_json holds the full signed object
    """
    __tablename__ = "reports"

    report_id = Column(String, primary_key=True)
    time_window_start = Column(DateTime, nullable=False)
    time_window_end = Column(DateTime, nullable=False)
    report_json = Column(JSON, nullable=False)
    signature = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
