"""
Deletion attestation.

When user data is purged, the enclave signs a deletion claim that binds
the user hash, the deletion time and the compose hash of the running
build. If a submission credential is configured the claim is also posted
to the external ledger.

Invariant: the local attestation is always produced and always offered to
the audit ledger. External posting is an enhancement, never a precondition.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from enclave.exceptions import StorageUnavailable
from enclave.models.audit import AuditAction
from enclave.services.audit_ledger import AuditLedger
from enclave.services.external import ExternalResult, LedgerClient, MetadataClient
from enclave.services.receipts import ReceiptStore
from enclave.services.signing import SigningService
from enclave.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)


def deletion_message(user_id_hash: str, deletion_timestamp: str, compose_hash: str) -> str:
    return f"deletion|user:{user_id_hash}|time:{deletion_timestamp}|compose:{compose_hash}"


@dataclass(frozen=True)
class DeletionAttestation:
    userIdHash: str
    deletionTimestamp: str
    composeHash: str
    signature: str

    def message(self) -> str:
        return deletion_message(self.userIdHash, self.deletionTimestamp, self.composeHash)


@dataclass(frozen=True)
class DeletionResult:
    attestation: DeletionAttestation
    txHash: Optional[str]
    submission: ExternalResult

    def to_dict(self) -> Dict[str, Any]:
        return {"attestation": asdict(self.attestation), "txHash": self.txHash}


class DeletionAttestor:
    """Signs deletion claims and records them locally and, when possible, externally."""

    def __init__(
        self,
        signer: SigningService,
        ledger: AuditLedger,
        receipts: ReceiptStore,
        metadata: MetadataClient,
        ledger_client: LedgerClient
    ):
        self.signer = signer
        self.ledger = ledger
        self.receipts = receipts
        self.metadata = metadata
        self.ledger_client = ledger_client

    def _annotate_receipt(self, receipt_id: str, deleted_at, tx_hash: Optional[str]) -> None:
        if self.receipts.database is None:
            logger.info("No receipt storage, skipping annotation of %s", receipt_id)
            return
        try:
            found = self.receipts.mark_deleted(receipt_id, deleted_at, tx_hash)
        except StorageUnavailable as exc:
            logger.error("Could not annotate receipt %s: %s", receipt_id, exc.message)
            return
        if not found:
            logger.warning("Deletion attested for unknown receipt %s", receipt_id)

    def post_deletion_attestation(self, receipt_id: str, user_id_hash: str) -> DeletionResult:
        """
        Produce, sign and record a deletion attestation.

        txHash is None unless the external ledger accepted the submission.
        """
        deleted_at = utcnow()
        deletion_timestamp = isoformat_z(deleted_at)
        compose_hash = self.metadata.fetch_compose_hash()

        signature = self.signer.sign(deletion_message(user_id_hash, deletion_timestamp, compose_hash))
        attestation = DeletionAttestation(
            userIdHash=user_id_hash,
            deletionTimestamp=deletion_timestamp,
            composeHash=compose_hash,
            signature=signature,
        )

        submission = self.ledger_client.submit(asdict(attestation))
        tx_hash = submission.value if submission.ok else None
        if submission.ok:
            logger.info("Deletion attestation posted, tx %s", tx_hash)
        else:
            logger.info("Deletion attestation kept local only: %s", submission.error)

        self._annotate_receipt(receipt_id, deleted_at, tx_hash)

        self.ledger.try_append(AuditAction.DATA_DELETED, {
            "receiptId": receipt_id,
            "userIdHash": user_id_hash,
            "deletionTimestamp": deletion_timestamp,
            "composeHash": compose_hash,
            "txHash": tx_hash,
        }, signature)

        return DeletionResult(attestation=attestation, txHash=tx_hash, submission=submission)
