"""Enums for the approval workflow - the only valid values for kinds, states and roles."""
from enum import Enum


class RequestKind(str, Enum):
    """The three request kinds that share the approval gate."""
    CERTIFICATE = "certificate"
    BLOTTER = "blotter"
    INCIDENT = "incident"


class ApprovalState(str, Enum):
    """
    Approval gate value, orthogonal to case progress.

    RELEASED is only reachable by certificate requests.
    """
    PENDING = "pending"
    APPROVED = "approved"
    RELEASED = "released"
    REJECTED = "rejected"


class CertificateType(str, Enum):
    BARANGAY_CLEARANCE = "barangay_clearance"
    INDIGENCY = "indigency"
    RESIDENCY = "residency"
    BUSINESS_PERMIT_ENDORSEMENT = "business_permit_endorsement"

    @property
    def label(self) -> str:
        return CERTIFICATE_TYPE_LABELS[self]

    @property
    def code(self) -> str:
        """Three-letter code used in certificate numbers (BAR, IND, RES, BUS)."""
        return self.value[:3].upper()


CERTIFICATE_TYPE_LABELS = {
    CertificateType.BARANGAY_CLEARANCE: "Barangay Clearance",
    CertificateType.INDIGENCY: "Indigency Certificate",
    CertificateType.RESIDENCY: "Residency Certificate",
    CertificateType.BUSINESS_PERMIT_ENDORSEMENT: "Business Permit Endorsement",
}


class BlotterProgress(str, Enum):
    """Case progress of an approved blotter, in forward order."""
    OPEN = "Open"
    ONGOING = "Ongoing"
    RESOLVED = "Resolved"


class IncidentProgress(str, Enum):
    """Case progress of an approved incident report, in forward order."""
    RECORDED = "Recorded"
    MONITORING = "Monitoring"
    RESOLVED = "Resolved"


class CertificateStatus(str, Enum):
    """Derived validity status of an issued certificate."""
    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


class ActorRole(str, Enum):
    ADMIN = "admin"
    CAPTAIN = "captain"
    PUROK_LEADER = "purok_leader"
    STAFF = "staff"
    VIEWER = "viewer"
