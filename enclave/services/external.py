"""
Clients for the two best-effort external collaborators.

- MetadataClient: the platform's local metadata service (compose hash)
- LedgerClient: the external ledger that deletion attestations are posted to

Every call is bounded by its own timeout and returns an ExternalResult.
Failures never propagate as exceptions past these clients.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from enclave.exceptions import ExternalCallFailure
from enclave.models.enums import ExternalStatus

logger = logging.getLogger(__name__)

UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class ExternalResult:
    """Outcome of a best-effort call: a value, or the reason there is none."""
    status: ExternalStatus
    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ExternalStatus.OK

    @classmethod
    def success(cls, value: str) -> "ExternalResult":
        return cls(ExternalStatus.OK, value=value)

    @classmethod
    def unavailable(cls, reason: str) -> "ExternalResult":
        return cls(ExternalStatus.UNAVAILABLE, error=reason)

    @classmethod
    def failed(cls, reason: str) -> "ExternalResult":
        return cls(ExternalStatus.FAILED, error=reason)

    def value_or(self, default: str) -> str:
        return self.value if self.ok and self.value is not None else default


class MetadataClient:
    """Reads the compose hash from the platform metadata endpoint."""

    def __init__(self, url: str, timeout: float = 2.0, transport: Optional[httpx.BaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _get(self) -> str:
        try:
            resp = self._client.get(self.url)
        except httpx.HTTPError as exc:
            raise ExternalCallFailure(f"metadata service unreachable: {exc}") from exc
        if not resp.is_success:
            raise ExternalCallFailure(f"metadata service returned {resp.status_code}")
        return resp.text.strip()

    def compose_hash(self) -> ExternalResult:
        try:
            return ExternalResult.success(self._get())
        except ExternalCallFailure as exc:
            logger.debug("Compose hash unavailable: %s", exc.message)
            return ExternalResult.unavailable(exc.message)

    def fetch_compose_hash(self) -> str:
        """Compose hash, or the literal "unavailable" on any failure."""
        return self.compose_hash().value_or(UNAVAILABLE)

    def close(self) -> None:
        self._client.close()


class LedgerClient:
    """
    External ledger submission contract: submit(attestation) -> tx reference.

    The base client has no credential and reports itself unavailable.
    """

    def submit(self, attestation: Dict[str, Any]) -> ExternalResult:
        return ExternalResult.unavailable("no ledger submission credential configured")

    def close(self) -> None:
        pass


class HttpLedgerClient(LedgerClient):
    """
    Posts attestations as JSON to the ledger RPC gateway.

    Transaction construction and signing happen on the gateway side; this
    client only forwards the attestation with the submission credential and
    reads back the transaction reference.
    """

    def __init__(
        self,
        rpc_url: str,
        contract: str,
        submission_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.rpc_url = rpc_url
        self.contract = contract
        self._submission_key = submission_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _post(self, attestation: Dict[str, Any]) -> str:
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._submission_key}",
        }
        body = {"contract": self.contract, "method": "logDeletion", "attestation": attestation}
        try:
            resp = self._client.post(self.rpc_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise ExternalCallFailure(f"ledger unreachable: {exc}") from exc
        if not resp.is_success:
            raise ExternalCallFailure(f"ledger returned {resp.status_code}: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ExternalCallFailure("ledger response is not JSON") from exc
        if not isinstance(payload, dict):
            raise ExternalCallFailure(f"ledger response is not an object: {type(payload).__name__}")
        tx_hash = payload.get("txHash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise ExternalCallFailure("ledger response has no txHash string")
        return tx_hash

    def submit(self, attestation: Dict[str, Any]) -> ExternalResult:
        logger.info("Submitting deletion attestation to %s via %s", self.contract, self.rpc_url)
        try:
            return ExternalResult.success(self._post(attestation))
        except ExternalCallFailure as exc:
            logger.error("Ledger submission failed: %s", exc.message)
            return ExternalResult.failed(exc.message)

    def close(self) -> None:
        self._client.close()
