"""
End-to-end tests through the HTTP layer.

These tests prove:
- The call contract returns the documented shapes
- Storage failures surface as 503, missing fields as 422
- Auditing and external attestation never change a primary endpoint's success
"""
import re

from enclave.services.receipts import extract_safe_derivative, hash_user_id
from enclave.services.reports import audit_log_digest, verify_report


class TestSubmitDataScenario:
    """Submit u1/hello and verify everything the response claims."""

    def test_submit_data_end_to_end(self, client, signer):
        response = client.post("/submit-data", json={"userId": "u1", "sensitivePayload": "hello"})

        assert response.status_code == 200
        body = response.json()
        assert re.match(r"^receipt_[0-9a-f]{16}$", body["receiptId"])
        assert body["safeDerivative"] == "category:technology,bracket:26-35"
        assert body["safeDerivative"] == extract_safe_derivative("hello")

        entry = body["auditEntry"]
        assert entry["action"] == "data_received"
        assert entry["userIdHash"] == hash_user_id("u1")
        message = (
            f"action:data_received|user_id:{hash_user_id('u1')}"
            f"|safe_derivative:{body['safeDerivative']}|timestamp:{entry['timestamp']}"
        )
        assert signer.verify(message, entry["signature"])
        assert "hello" not in response.text

    def test_missing_fields_rejected(self, client):
        response = client.post("/submit-data", json={"userId": "u1"})
        assert response.status_code == 422

    def test_without_storage_is_503(self, memory_client):
        response = memory_client.post(
            "/submit-data", json={"userId": "u1", "sensitivePayload": "hello"}
        )
        assert response.status_code == 503
        assert "storage unavailable" in response.json()["detail"]


class TestSignupEndpoints:

    def test_in_memory_signup_and_signed_count(self, memory_client, signer):
        for expected in (1, 2, 3):
            response = memory_client.post("/signup", json={"userId": f"user{expected}"})
            assert response.status_code == 200
            assert response.json() == {"message": "Signup recorded", "count": expected}

        signed = memory_client.get("/signup-count").json()

        assert signed["count"] == 3
        assert signer.verify(f"count:3|timestamp:{signed['timestamp']}", signed["signature"])

    def test_signup_without_body(self, client):
        response = client.post("/signup")
        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_reset(self, memory_client):
        memory_client.post("/signup", json={})
        assert memory_client.post("/signup-count/reset").status_code == 204
        assert memory_client.get("/signup-count").json()["count"] == 0


class TestDeleteDataEndpoint:

    def test_delete_returns_attestation_and_null_tx(self, client, signer):
        receipt = client.post("/submit-data", json={"userId": "u1", "sensitivePayload": "hello"}).json()

        response = client.post(
            f"/delete-data/{receipt['receiptId']}",
            json={"userIdHash": receipt["auditEntry"]["userIdHash"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["txHash"] is None
        att = body["attestation"]
        assert att["userIdHash"] == hash_user_id("u1")
        assert signer.verify(
            f"deletion|user:{att['userIdHash']}|time:{att['deletionTimestamp']}|compose:{att['composeHash']}",
            att["signature"],
        )

    def test_missing_user_hash_rejected(self, client):
        response = client.post("/delete-data/receipt_0000000000000000", json={})
        assert response.status_code == 422

    def test_delete_works_without_storage(self, memory_client):
        response = memory_client.post(
            "/delete-data/receipt_0000000000000000", json={"userIdHash": "sha256:ab"}
        )
        assert response.status_code == 200
        assert response.json()["txHash"] is None


class TestReportEndpoints:

    def test_generate_list_and_fetch(self, client, signer):
        report = client.get("/report").json()
        assert verify_report(report, signer)

        listed = client.get("/reports").json()["reports"]
        assert listed == [{
            "reportId": report["reportId"],
            "generatedAt": report["generatedAt"],
            "signature": report["signature"],
        }]

        fetched = client.get(f"/reports/{report['reportId']}").json()
        assert fetched == report

    def test_unknown_report_404(self, client):
        assert client.get("/reports/report_19700101").status_code == 404

    def test_report_without_storage_is_503(self, memory_client):
        assert memory_client.get("/report").status_code == 503


class TestAuditLogEndpoint:

    def test_lists_entries_in_order(self, client):
        client.post("/submit-data", json={"userId": "u1", "sensitivePayload": "hello"})
        client.get("/report")

        entries = client.get("/audit-log").json()

        assert [e["action"] for e in entries] == ["data_received", "report_generated"]
        assert entries[0]["id"] < entries[1]["id"]

    def test_report_digest_recomputable_from_audit_log(self, client):
        client.post("/submit-data", json={"userId": "u1", "sensitivePayload": "hello"})
        client.post("/signup", json={"userId": "u2"})
        report = client.get("/report").json()
        window = report["timeWindow"]

        entries = client.get("/audit-log").json()
        covered = [
            e for e in entries
            if window["start"] <= e["createdAt"] <= window["end"] and e["action"] != "report_generated"
        ]

        assert set(entries[0]) == {"id", "action", "details", "signature", "createdAt"}
        assert entries[0]["createdAt"].endswith("Z")
        assert audit_log_digest(covered) == report["summary"]["auditLogDigest"]

    def test_since_in_future_is_empty(self, client):
        client.post("/signup", json={"userId": "u1"})
        assert client.get("/audit-log", params={"since": "2999-01-01T00:00:00Z"}).json() == []

    def test_no_storage_is_empty(self, memory_client):
        memory_client.post("/signup", json={"userId": "u1"})
        assert memory_client.get("/audit-log").json() == []


class TestServiceInfo:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["timestamp"].endswith("Z")

    def test_root_lists_endpoints(self, client):
        assert "/submit-data" in client.get("/").json()["endpoints"]
