"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from barangay.models.enums import (
    ApprovalState,
    BlotterProgress,
    CertificateType,
    IncidentProgress,
)


# Shared transition payloads
class ApproveRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=500)
    # State the client last saw; a mismatch answers 409 stale_state
    expected_state: Optional[ApprovalState] = None


class RejectRequest(BaseModel):
    # Emptiness is checked by the workflow so it reports a field-level ValidationError
    remarks: str = ""
    expected_state: Optional[ApprovalState] = None


class ReleaseRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=500)
    regenerate_number: bool = False
    expected_state: Optional[ApprovalState] = None


class ProgressRequest(BaseModel):
    next_progress: str
    resolution: Optional[str] = None
    expected_progress: Optional[str] = None


# Certificate request schemas
class CertificateRequestCreate(BaseModel):
    resident_ref: str = Field(..., min_length=1)
    certificate_type: str
    purpose: str
    additional_requirements: Optional[str] = None


class CertificateRequestUpdate(BaseModel):
    purpose: Optional[str] = None
    additional_requirements: Optional[str] = None


class CertificateRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resident_ref: str
    certificate_type: CertificateType
    purpose: str
    additional_requirements: Optional[str]
    approval_state: ApprovalState
    requested_by: str
    requested_at: datetime
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_remarks: Optional[str]
    released_by: Optional[str]
    released_at: Optional[datetime]
    remarks: Optional[str]
    created_at: datetime
    updated_at: datetime


class CertificateStatistics(BaseModel):
    total_requests: int
    pending: int
    approved: int
    released: int
    rejected: int
    by_type: Dict[str, int]


# Issued certificate schemas
class IssuedCertificateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    certificate_request_id: int
    certificate_number: str
    certificate_type: CertificateType
    resident_ref: str
    purpose: str
    valid_from: date
    valid_until: date
    is_valid: bool
    issued_by: str
    issued_at: datetime
    signed_by: Optional[str]
    signature_position: Optional[str]
    signed_at: Optional[datetime]
    invalidated_by: Optional[str]
    invalidated_at: Optional[datetime]
    invalidation_reason: Optional[str]


class InvalidateRequest(BaseModel):
    reason: str = ""


class ResidentSummary(BaseModel):
    resident_ref: str
    certificate_type: str
    certificate_type_label: str
    valid_from: date
    valid_until: date
    signed_by: Optional[str]


class VerificationResponse(BaseModel):
    exists: bool
    is_valid: bool
    expired: bool
    status: Optional[str]
    days_until_expiry: Optional[int]
    resident_summary: Optional[ResidentSummary]


class IssuanceStatistics(BaseModel):
    total_certificates: int
    valid: int
    expired: int
    invalidated: int
    expiring_soon: int
    by_type: Dict[str, int]


# Blotter schemas
class BlotterCreate(BaseModel):
    complainant_is_resident: bool = False
    complainant_resident_ref: Optional[str] = None
    complainant_full_name: Optional[str] = None
    complainant_age: Optional[int] = None
    complainant_address: Optional[str] = None
    complainant_contact: Optional[str] = None

    respondent_is_resident: bool = False
    respondent_resident_ref: Optional[str] = None
    respondent_full_name: Optional[str] = None
    respondent_age: Optional[int] = None
    respondent_address: Optional[str] = None
    respondent_contact: Optional[str] = None

    official_ref: Optional[str] = None
    incident_date: date
    incident_time: str
    incident_location: str
    description: str


class BlotterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    case_number: str
    complainant_is_resident: bool
    complainant_resident_ref: Optional[str]
    complainant_full_name: Optional[str]
    complainant_age: Optional[int]
    complainant_address: Optional[str]
    complainant_contact: Optional[str]
    complainant_name: str
    respondent_is_resident: bool
    respondent_resident_ref: Optional[str]
    respondent_full_name: Optional[str]
    respondent_age: Optional[int]
    respondent_address: Optional[str]
    respondent_contact: Optional[str]
    respondent_name: str
    official_ref: Optional[str]
    incident_date: date
    incident_time: str
    incident_location: str
    description: str
    resolution: Optional[str]
    approval_state: ApprovalState
    progress: Optional[BlotterProgress]
    requested_by: str
    requested_at: datetime
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_remarks: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


# Incident schemas
class IncidentCreate(BaseModel):
    incident_title: str
    description: str
    incident_date: date
    incident_time: str
    location: str
    persons_involved: List[str] = []
    reporting_officer_ref: Optional[str] = None
    notes: Optional[str] = None


class IncidentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    incident_title: str
    description: str
    incident_date: date
    incident_time: str
    location: str
    persons_involved: Optional[List[str]]
    reporting_officer_ref: Optional[str]
    notes: Optional[str]
    approval_state: ApprovalState
    progress: Optional[IncidentProgress]
    requested_by: str
    requested_at: datetime
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_remarks: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


# Approval queue schemas
class PendingWorkItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    id: int
    title: str
    subtitle: str
    requested_by: str
    requested_at: datetime


class QueueStatistics(BaseModel):
    total_pending: int
    certificates: int
    blotters: int
    incidents: int


class ApprovalQueueResponse(BaseModel):
    items: List[PendingWorkItemResponse]
    statistics: QueueStatistics


# Error response
class ErrorResponse(BaseModel):
    """Body of every refused or failed call."""
    code: str
    message: str
    details: Optional[dict | list] = None
