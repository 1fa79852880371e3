"""Pydantic schemas for request/response validation."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Signup schemas
class SignupRequest(BaseModel):
    userId: Optional[str] = None


class SignupResponse(BaseModel):
    message: str = "Signup recorded"
    count: int


class SignedCountResponse(BaseModel):
    count: int
    signature: str
    timestamp: str


# User data schemas
class SubmitDataRequest(BaseModel):
    userId: str = Field(..., min_length=1)
    sensitivePayload: str = Field(..., min_length=1)


class AuditEntryResponse(BaseModel):
    action: str
    userIdHash: str
    safeDerivative: str
    timestamp: str
    signature: str


class SubmitDataResponse(BaseModel):
    receiptId: str
    safeDerivative: str
    auditEntry: AuditEntryResponse


# Deletion schemas
class DeleteDataRequest(BaseModel):
    userIdHash: str = Field(..., min_length=1)


class DeletionAttestationResponse(BaseModel):
    userIdHash: str
    deletionTimestamp: str
    composeHash: str
    signature: str


class DeleteDataResponse(BaseModel):
    attestation: DeletionAttestationResponse
    txHash: Optional[str]


# Report schemas
class ReportSummary(BaseModel):
    reportId: str
    generatedAt: str
    signature: str


class ReportListResponse(BaseModel):
    reports: List[ReportSummary]


# Ledger schemas
class LedgerEntryResponse(BaseModel):
    """Same view of an entry that report digests are computed over."""
    id: int
    action: str
    details: Dict[str, Any]
    signature: Optional[str]
    createdAt: str

