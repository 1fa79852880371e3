"""
User-data receipts: sensitive data in, safe derivative out.

1. The caller submits a user id and a sensitive payload
2. The user id is hashed; the raw value is never stored
3. A safe derivative (category, age bracket) is computed from the payload
4. A signed receipt is persisted and a ledger entry appended
5. Only the derivative and the signed audit entry are returned

The raw payload is only ever a local of process_user_data().

The receipt insert and the ledger append are separate writes. A crash
between them leaves a receipt without a ledger entry; the ledger is
advisory, so that state is accepted.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func

from enclave.database import Database
from enclave.exceptions import StorageUnavailable
from enclave.models.audit import AuditAction
from enclave.models.domain import Receipt
from enclave.models.enums import AgeBracket, DerivativeCategory
from enclave.services.audit_ledger import AuditLedger
from enclave.services.signing import SigningService
from enclave.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)

CATEGORIES = [c.value for c in DerivativeCategory]
AGE_BRACKETS = [b.value for b in AgeBracket]
RECEIPT_PREFIX = "receipt_"


def extract_safe_derivative(payload: str) -> str:
    """
    Deterministic category and age bracket from the payload hash.

    Depends on the payload bytes only.
    """
    digest = hashlib.sha256(payload.encode("utf-8")).digest()
    category = CATEGORIES[digest[0] % len(CATEGORIES)]
    bracket = AGE_BRACKETS[digest[1] % len(AGE_BRACKETS)]
    return f"category:{category},bracket:{bracket}"


def hash_user_id(user_id: str) -> str:
    return "sha256:" + hashlib.sha256(user_id.encode("utf-8")).hexdigest()


def new_receipt_id() -> str:
    return RECEIPT_PREFIX + secrets.token_hex(8)


def data_received_message(user_id_hash: str, safe_derivative: str, timestamp: str) -> str:
    return (
        f"action:{AuditAction.DATA_RECEIVED}|user_id:{user_id_hash}"
        f"|safe_derivative:{safe_derivative}|timestamp:{timestamp}"
    )


@dataclass(frozen=True)
class SignedAuditEntry:
    action: str
    userIdHash: str
    safeDerivative: str
    timestamp: str
    signature: str

    def message(self) -> str:
        return data_received_message(self.userIdHash, self.safeDerivative, self.timestamp)


@dataclass(frozen=True)
class UserDataResult:
    receiptId: str
    safeDerivative: str
    auditEntry: SignedAuditEntry

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReceiptStore:
    """Creates, reads and annotates user-data receipts."""

    def __init__(self, database: Optional[Database], signer: SigningService, ledger: AuditLedger):
        self.database = database
        self.signer = signer
        self.ledger = ledger

    def _require_database(self) -> Database:
        if self.database is None:
            raise StorageUnavailable("receipt storage is not configured")
        return self.database

    def process_user_data(self, user_id: str, sensitive_payload: str) -> UserDataResult:
        """
        Issue a signed receipt for a submission.

        Raises StorageUnavailable if the receipt cannot be persisted.
        A failed ledger append is logged and does not fail the call.
        """
        database = self._require_database()

        now = utcnow()
        timestamp = isoformat_z(now)
        receipt_id = new_receipt_id()
        user_id_hash = hash_user_id(user_id)
        safe_derivative = extract_safe_derivative(sensitive_payload)

        signature = self.signer.sign(data_received_message(user_id_hash, safe_derivative, timestamp))

        with database.transaction() as session:
            session.add(Receipt(
                receipt_id=receipt_id,
                user_id_hash=user_id_hash,
                safe_derivative=safe_derivative,
                signature=signature,
                created_at=now,
                raw_data_discarded_at=now,
            ))

        self.ledger.try_append(AuditAction.DATA_RECEIVED, {
            "receiptId": receipt_id,
            "userIdHash": user_id_hash,
            "safeDerivative": safe_derivative,
            "timestamp": timestamp,
        }, signature)

        logger.info("Receipt issued", extra={"receipt_id": receipt_id})

        return UserDataResult(
            receiptId=receipt_id,
            safeDerivative=safe_derivative,
            auditEntry=SignedAuditEntry(
                action=AuditAction.DATA_RECEIVED,
                userIdHash=user_id_hash,
                safeDerivative=safe_derivative,
                timestamp=timestamp,
                signature=signature,
            ),
        )

    def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        with self._require_database().read() as session:
            receipt = session.get(Receipt, receipt_id)
            if receipt is not None:
                session.expunge(receipt)
            return receipt

    def count_receipts(self, since: Optional[datetime] = None) -> int:
        with self._require_database().read() as session:
            q = session.query(func.count(Receipt.receipt_id))
            if since is not None:
                q = q.filter(Receipt.created_at >= since)
            return q.scalar() or 0

    def mark_deleted(self, receipt_id: str, deleted_at: datetime, tx_hash: Optional[str] = None) -> bool:
        """
        Annotate a receipt with its deletion time and, if posted, the tx reference.

        Returns False when no such receipt exists.
        """
        with self._require_database().transaction() as session:
            receipt = session.get(Receipt, receipt_id)
            if receipt is None:
                return False
            receipt.deleted_at = deleted_at
            if tx_hash is not None:
                receipt.deletion_tx_hash = tx_hash
        return True
