"""
Tests for user-data receipts and deletion attestation.

These tests prove:
- Receipts hold the safe derivative and a verifiable signature, never raw data
- Deletion always yields a signed attestation and exactly one ledger entry
- External ledger and metadata failures never fail a deletion
"""
import re

import httpx
import pytest

from enclave.exceptions import LedgerAppendFailure, StorageUnavailable
from enclave.models.audit import AuditAction
from enclave.models.domain import Receipt
from enclave.models.enums import ExternalStatus
from enclave.services.audit_ledger import AuditLedger
from enclave.services.deletion import DeletionAttestor, deletion_message
from enclave.services.external import ExternalResult, HttpLedgerClient, LedgerClient, MetadataClient
from enclave.services.receipts import ReceiptStore, extract_safe_derivative, hash_user_id

RECEIPT_ID = re.compile(r"^receipt_[0-9a-f]{16}$")


class FixedLedgerClient(LedgerClient):
    """External ledger that accepts everything."""

    def __init__(self):
        self.submitted = []

    def submit(self, attestation):
        self.submitted.append(attestation)
        return ExternalResult.success("0xfeedbeef")


def ledger_transport(status_code=200, body=None):
    def handler(request):
        return httpx.Response(status_code, json=body if body is not None else {"txHash": "0xabc"})
    return httpx.MockTransport(handler)


def unreachable_transport():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.MockTransport(handler)


class TestProcessUserData:
    """Test the sensitive-in, safe-out receipt flow."""

    def test_receipt_fields(self, context, signer):
        result = context.receipts.process_user_data("u1", "hello")

        assert RECEIPT_ID.match(result.receiptId)
        assert result.safeDerivative == "category:technology,bracket:26-35"
        assert result.auditEntry.action == AuditAction.DATA_RECEIVED
        assert result.auditEntry.userIdHash == hash_user_id("u1")

    def test_audit_signature_verifies(self, context, signer):
        result = context.receipts.process_user_data("u1", "hello")
        entry = result.auditEntry

        message = (
            f"action:data_received|user_id:{entry.userIdHash}"
            f"|safe_derivative:{entry.safeDerivative}|timestamp:{entry.timestamp}"
        )
        assert signer.verify(message, entry.signature)

    def test_persisted_receipt_never_holds_raw_data(self, context, database):
        result = context.receipts.process_user_data("user-raw-id", "my secret diagnosis")

        with database.read() as session:
            row = session.get(Receipt, result.receiptId)
            stored = " ".join(str(v) for v in (
                row.receipt_id, row.user_id_hash, row.safe_derivative, row.signature
            ))
            assert "my secret diagnosis" not in stored
            assert "user-raw-id" not in stored
            assert row.safe_derivative == extract_safe_derivative("my secret diagnosis")
            assert row.raw_data_discarded_at is not None
            assert row.deleted_at is None
            assert row.deletion_tx_hash is None

    def test_ledger_entry_carries_receipt_signature(self, context):
        result = context.receipts.process_user_data("u1", "hello")

        entries = context.ledger.query()
        assert len(entries) == 1
        assert entries[0].action == AuditAction.DATA_RECEIVED
        assert entries[0].details["receiptId"] == result.receiptId
        assert entries[0].signature == result.auditEntry.signature

    def test_receipt_ids_are_unique(self, context):
        ids = {context.receipts.process_user_data("u1", "hello").receiptId for _ in range(5)}
        assert len(ids) == 5

    def test_no_storage_raises(self, memory_context):
        with pytest.raises(StorageUnavailable):
            memory_context.receipts.process_user_data("u1", "hello")

    def test_ledger_failure_does_not_fail_submission(self, database, signer):
        class Broken(AuditLedger):
            def append(self, action, details, signature=None):
                raise LedgerAppendFailure("down")

        store = ReceiptStore(database, signer, Broken(database))
        result = store.process_user_data("u1", "hello")

        assert store.get_receipt(result.receiptId) is not None
        assert store.count_receipts() == 1


class TestDeletionAttestation:
    """
    INVARIANT: a deletion always produces a signed attestation and one ledger entry.
    """

    def test_attestation_without_credential(self, context, signer, compose_hash):
        receipt = context.receipts.process_user_data("u1", "hello")
        before = len(context.ledger.query())

        result = context.attestor.post_deletion_attestation(receipt.receiptId, receipt.auditEntry.userIdHash)

        assert result.attestation is not None
        assert result.txHash is None
        assert result.submission.status == ExternalStatus.UNAVAILABLE
        assert result.attestation.composeHash == compose_hash
        assert signer.verify(
            deletion_message(
                receipt.auditEntry.userIdHash,
                result.attestation.deletionTimestamp,
                compose_hash,
            ),
            result.attestation.signature,
        )

        entries = context.ledger.query()
        assert len(entries) == before + 1
        assert entries[-1].action == AuditAction.DATA_DELETED
        assert entries[-1].details["txHash"] is None

    def test_receipt_marked_deleted_without_tx_hash(self, context):
        receipt = context.receipts.process_user_data("u1", "hello")
        context.attestor.post_deletion_attestation(receipt.receiptId, receipt.auditEntry.userIdHash)

        row = context.receipts.get_receipt(receipt.receiptId)
        assert row.deleted_at is not None
        assert row.deletion_tx_hash is None

    def test_successful_submission_records_tx_hash(self, context, signer, metadata):
        ledger_client = FixedLedgerClient()
        attestor = DeletionAttestor(signer, context.ledger, context.receipts, metadata, ledger_client)
        receipt = context.receipts.process_user_data("u1", "hello")

        result = attestor.post_deletion_attestation(receipt.receiptId, receipt.auditEntry.userIdHash)

        assert result.txHash == "0xfeedbeef"
        assert ledger_client.submitted[0]["signature"] == result.attestation.signature
        assert context.receipts.get_receipt(receipt.receiptId).deletion_tx_hash == "0xfeedbeef"
        assert context.ledger.query()[-1].details["txHash"] == "0xfeedbeef"

    def test_http_ledger_client_success(self, context, signer, metadata):
        ledger_client = HttpLedgerClient(
            "http://ledger.local/rpc", "0xcontract", "key", transport=ledger_transport()
        )
        attestor = DeletionAttestor(signer, context.ledger, context.receipts, metadata, ledger_client)

        result = attestor.post_deletion_attestation("receipt_0000000000000000", "sha256:ab")

        assert result.txHash == "0xabc"

    @pytest.mark.parametrize("transport", [
        ledger_transport(status_code=500),
        ledger_transport(body={"unexpected": True}),
        ledger_transport(body=["0xabc"]),
        ledger_transport(body={"txHash": 123}),
        unreachable_transport(),
    ])
    def test_ledger_failure_degrades_to_null(self, context, signer, metadata, transport):
        ledger_client = HttpLedgerClient("http://ledger.local/rpc", "0xcontract", "key", transport=transport)
        attestor = DeletionAttestor(signer, context.ledger, context.receipts, metadata, ledger_client)
        receipt = context.receipts.process_user_data("u1", "hello")
        before = len(context.ledger.query())

        result = attestor.post_deletion_attestation(receipt.receiptId, receipt.auditEntry.userIdHash)

        assert result.txHash is None
        assert result.submission.status == ExternalStatus.FAILED
        assert len(context.ledger.query()) == before + 1
        assert context.receipts.get_receipt(receipt.receiptId).deletion_tx_hash is None

    def test_metadata_unavailable_uses_sentinel(self, context, signer):
        metadata = MetadataClient("http://metadata.local/compose-hash", transport=unreachable_transport())
        attestor = DeletionAttestor(signer, context.ledger, context.receipts, metadata, LedgerClient())

        result = attestor.post_deletion_attestation("receipt_0000000000000000", "sha256:ab")

        assert result.attestation.composeHash == "unavailable"
        assert "compose:unavailable" in result.attestation.message()
        assert signer.verify(result.attestation.message(), result.attestation.signature)

    def test_metadata_non_2xx_uses_sentinel(self, make_metadata):
        metadata = make_metadata(503)

        assert metadata.fetch_compose_hash() == "unavailable"
        assert metadata.compose_hash().status == ExternalStatus.UNAVAILABLE

    def test_ledger_append_failure_does_not_fail_deletion(self, context, database, signer, metadata):
        class Broken(AuditLedger):
            def append(self, action, details, signature=None):
                raise LedgerAppendFailure("down")

        attestor = DeletionAttestor(signer, Broken(database), context.receipts, metadata, LedgerClient())
        receipt = context.receipts.process_user_data("u1", "hello")
        before = len(context.ledger.query())

        result = attestor.post_deletion_attestation(receipt.receiptId, receipt.auditEntry.userIdHash)

        assert signer.verify(result.attestation.message(), result.attestation.signature)
        assert result.txHash is None
        assert context.receipts.get_receipt(receipt.receiptId).deleted_at is not None
        assert len(context.ledger.query()) == before

    def test_unknown_receipt_still_attested(self, context):
        result = context.attestor.post_deletion_attestation("receipt_ffffffffffffffff", "sha256:ab")

        assert result.attestation.signature.startswith("hmac:")
        assert context.ledger.query()[-1].details["receiptId"] == "receipt_ffffffffffffffff"

    def test_attestation_without_storage(self, memory_context):
        result = memory_context.attestor.post_deletion_attestation("receipt_0000000000000000", "sha256:ab")

        assert result.attestation is not None
        assert result.txHash is None
