"""API routes for the attested data pipeline."""
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from enclave.context import EnclaveContext
from enclave.exceptions import ResetNotAllowed, StorageUnavailable
from enclave.services.audit_ledger import entry_to_dict
from enclave.api.schemas import (
    SignupRequest,
    SignupResponse,
    SignedCountResponse,
    SubmitDataRequest,
    SubmitDataResponse,
    DeleteDataRequest,
    DeleteDataResponse,
    ReportListResponse,
    LedgerEntryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> EnclaveContext:
    """Dependency returning the context built at startup."""
    return request.app.state.context


def _storage_error(operation: str, exc: StorageUnavailable) -> HTTPException:
    logger.error("%s failed: %s", operation, exc.message)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Failed to {operation}: storage unavailable"
    )


# Signup endpoints
@router.post("/signup", response_model=SignupResponse)
def signup(body: Optional[SignupRequest] = None, ctx: EnclaveContext = Depends(get_context)):
    """Record a signup and return the new count."""
    user_id = body.userId if body else None
    try:
        count = ctx.signups.increment_signup(user_id)
    except StorageUnavailable as exc:
        raise _storage_error("record signup", exc)
    return SignupResponse(count=count)


@router.get("/signup-count", response_model=SignedCountResponse)
def signup_count(ctx: EnclaveContext = Depends(get_context)):
    """Signed signup count for retrospective audit."""
    try:
        signed = ctx.signups.get_signed_count()
    except StorageUnavailable as exc:
        raise _storage_error("get signup count", exc)
    return SignedCountResponse(**asdict(signed))


@router.post("/signup-count/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_signup_count(ctx: EnclaveContext = Depends(get_context)):
    """Reset the counter. Refused in production."""
    try:
        ctx.signups.reset()
    except ResetNotAllowed as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    except StorageUnavailable as exc:
        raise _storage_error("reset signup count", exc)


# User data endpoints
@router.post("/submit-data", response_model=SubmitDataResponse)
def submit_data(body: SubmitDataRequest, ctx: EnclaveContext = Depends(get_context)):
    """
    Accept simulated sensitive data, return only the safe derivative and a signed receipt.
    """
    try:
        result = ctx.receipts.process_user_data(body.userId, body.sensitivePayload)
    except StorageUnavailable as exc:
        raise _storage_error("process user data", exc)
    return result.to_dict()


@router.post("/delete-data/{receipt_id}", response_model=DeleteDataResponse)
def delete_data(receipt_id: str, body: DeleteDataRequest, ctx: EnclaveContext = Depends(get_context)):
    """Attest deletion of a receipt's user data, posting on-ledger when configured."""
    result = ctx.attestor.post_deletion_attestation(receipt_id, body.userIdHash)
    return result.to_dict()


# Report endpoints
@router.get("/report")
def generate_report(ctx: EnclaveContext = Depends(get_context)):
    """Generate (or regenerate) today's signed retrospective report."""
    try:
        return ctx.reports.generate_report()
    except StorageUnavailable as exc:
        raise _storage_error("generate report", exc)


@router.get("/reports", response_model=ReportListResponse)
def list_reports(ctx: EnclaveContext = Depends(get_context)):
    """List all previously generated reports, newest first."""
    try:
        return ReportListResponse(reports=ctx.reports.list_reports())
    except StorageUnavailable as exc:
        raise _storage_error("list reports", exc)


@router.get("/reports/{report_id}")
def get_report(report_id: str, ctx: EnclaveContext = Depends(get_context)):
    """Full signed report, for offline verification."""
    try:
        report = ctx.reports.get_report(report_id)
    except StorageUnavailable as exc:
        raise _storage_error("get report", exc)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


# Ledger endpoints
@router.get("/audit-log", response_model=List[LedgerEntryResponse])
def audit_log(since: Optional[datetime] = None, ctx: EnclaveContext = Depends(get_context)):
    """Ledger entries in order, optionally since a UTC timestamp."""
    if since is not None and since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    try:
        entries = ctx.ledger.query(since=since)
    except StorageUnavailable as exc:
        raise _storage_error("read audit log", exc)
    return [entry_to_dict(e) for e in entries]
