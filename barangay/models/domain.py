"""Domain models - the three request kinds and the certificates issued from them."""
from datetime import date, datetime
from typing import Optional
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from barangay.database import Base
from barangay.models.enums import (
    ApprovalState,
    BlotterProgress,
    CertificateStatus,
    CertificateType,
    IncidentProgress,
    RequestKind,
)


class CertificateRequest(Base):
    """
    A resident's request for a barangay certificate.

    Lifecycle: pending → approved → released, or pending → rejected.

    Invariants enforced here:
    - approval_state is always one of the ApprovalState values
    - At most one IssuedCertificate per request (unique FK on the certificate side)
    """
    __tablename__ = "certificate_requests"

    kind = RequestKind.CERTIFICATE

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    resident_ref = Column(String, nullable=False, index=True)
    certificate_type = Column(SQLEnum(CertificateType), nullable=False)
    purpose = Column(String(500), nullable=False)
    additional_requirements = Column(String(1000), nullable=True)

    approval_state = Column(SQLEnum(ApprovalState), nullable=False, default=ApprovalState.PENDING, index=True)
    requested_by = Column(String, nullable=False)
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Written only by TransitionGuard
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_remarks = Column(Text, nullable=True)
    released_by = Column(String, nullable=True)
    released_at = Column(DateTime, nullable=True)
    remarks = Column(String(500), nullable=True)

    # Soft-delete marker, owned by the records-management side
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    issued_certificate = relationship("IssuedCertificate", back_populates="certificate_request", uselist=False)

    @property
    def subject_reference(self) -> str:
        return self.resident_ref


class IssuedCertificate(Base):
    """
    The legally distinct document created when a request is released.

    Invariants:
    - certificate_number is globally unique and never rewritten
    - valid_from <= valid_until
    - is_valid only ever goes True → False
    """
    __tablename__ = "issued_certificates"
    __table_args__ = (
        CheckConstraint("valid_from <= valid_until", name="ck_issued_certificates_validity_window"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    certificate_request_id = Column(Integer, ForeignKey("certificate_requests.id"), nullable=False, unique=True)
    certificate_number = Column(String(32), nullable=False, unique=True, index=True)
    certificate_type = Column(SQLEnum(CertificateType), nullable=False)
    resident_ref = Column(String, nullable=False, index=True)
    purpose = Column(String(500), nullable=False)

    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    is_valid = Column(Boolean, nullable=False, default=True)

    issued_by = Column(String, nullable=False)
    issued_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    signed_by = Column(String, nullable=True)
    signature_position = Column(String, nullable=True)
    signed_at = Column(DateTime, nullable=True)

    invalidated_by = Column(String, nullable=True)
    invalidated_at = Column(DateTime, nullable=True)
    invalidation_reason = Column(Text, nullable=True)

    certificate_request = relationship("CertificateRequest", back_populates="issued_certificate")

    def is_expired(self, today: date) -> bool:
        return self.valid_until < today

    def status_on(self, today: date) -> CertificateStatus:
        if not self.is_valid:
            return CertificateStatus.INVALID
        if self.is_expired(today):
            return CertificateStatus.EXPIRED
        return CertificateStatus.VALID

    def days_until_expiry(self, today: date) -> int:
        return (self.valid_until - today).days


class CertificateSequence(Base):
    """
    Allocation ledger: the last sequence value handed out per type code and year.

    Values are only ever incremented; an aborted issuance may skip one.
    """
    __tablename__ = "certificate_sequences"
    __table_args__ = (
        UniqueConstraint("type_code", "year", name="uq_certificate_sequences_type_year"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type_code = Column(String(8), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)


class BlotterCase(Base):
    """
    A dispute between a complainant and a respondent.

    Two orthogonal dimensions:
    - approval_state gates the record (pending → approved / rejected)
    - progress (Open → Ongoing → Resolved) only exists once approved

    Each party is either a resident (resident_ref set) or a non-resident
    (full name, age and address set), never both.
    """
    __tablename__ = "blotters"

    kind = RequestKind.BLOTTER

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    case_number = Column(String(32), nullable=False, unique=True)

    complainant_is_resident = Column(Boolean, nullable=False)
    complainant_resident_ref = Column(String, nullable=True)
    complainant_full_name = Column(String(255), nullable=True)
    complainant_age = Column(Integer, nullable=True)
    complainant_address = Column(String, nullable=True)
    complainant_contact = Column(String(20), nullable=True)

    respondent_is_resident = Column(Boolean, nullable=False)
    respondent_resident_ref = Column(String, nullable=True)
    respondent_full_name = Column(String(255), nullable=True)
    respondent_age = Column(Integer, nullable=True)
    respondent_address = Column(String, nullable=True)
    respondent_contact = Column(String(20), nullable=True)

    official_ref = Column(String, nullable=True)
    incident_date = Column(Date, nullable=False)
    incident_time = Column(String(5), nullable=False)  # HH:MM
    incident_location = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    resolution = Column(Text, nullable=True)

    approval_state = Column(SQLEnum(ApprovalState), nullable=False, default=ApprovalState.PENDING, index=True)
    progress = Column(SQLEnum(BlotterProgress), nullable=True)
    requested_by = Column(String, nullable=False)
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_remarks = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def subject_reference(self) -> str:
        return f"{self.complainant_name} vs {self.respondent_name}"

    @property
    def complainant_name(self) -> str:
        if self.complainant_is_resident:
            return f"resident #{self.complainant_resident_ref}"
        return self.complainant_full_name or "Unknown"

    @property
    def respondent_name(self) -> str:
        if self.respondent_is_resident:
            return f"resident #{self.respondent_resident_ref}"
        return self.respondent_full_name or "Unknown"


class IncidentReport(Base):
    """
    An incident logged by a reporting officer.

    Same two dimensions as BlotterCase; progress is Recorded → Monitoring → Resolved.
    """
    __tablename__ = "incident_reports"

    kind = RequestKind.INCIDENT

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    incident_title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    incident_date = Column(Date, nullable=False)
    incident_time = Column(String(5), nullable=False)  # HH:MM
    location = Column(String(255), nullable=False)
    persons_involved = Column(JSON, nullable=True)
    reporting_officer_ref = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    approval_state = Column(SQLEnum(ApprovalState), nullable=False, default=ApprovalState.PENDING, index=True)
    progress = Column(SQLEnum(IncidentProgress), nullable=True)
    requested_by = Column(String, nullable=False)
    requested_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_remarks = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def subject_reference(self) -> Optional[str]:
        return self.reporting_officer_ref
