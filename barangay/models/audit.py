"""
Internal audit logging model - NOT a user-facing domain object.

Every committed transition, issuance and revocation (and every refused
revocation) leaves one append-only row, written in the same unit of work.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON
from barangay.database import Base


class AuditEvent(Base):
    """
    Immutable audit event for reconstructing who authorized what, and when.

    Invariants:
    - Once written, never edited or deleted
    - Append-only
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_type = Column(String, nullable=False, index=True)  # e.g., "request_approved"
    entity_type = Column(String, nullable=False)  # e.g., "certificate", "issued_certificate"
    entity_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)  # Nullable for system events
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    payload_json = Column(JSON, nullable=True)


class AuditEventType:
    """Enumeration of audit event types."""
    # Envelope lifecycle
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_RELEASED = "request_released"
    REQUEST_UPDATED = "request_updated"

    # Case progress
    PROGRESS_ADVANCED = "progress_advanced"

    # Certificates
    CERTIFICATE_ISSUED = "certificate_issued"
    CERTIFICATE_INVALIDATED = "certificate_invalidated"

    # Refusals
    INVALIDATION_REFUSED_ALREADY_INVALID = "invalidation_refused_already_invalid"


def record_audit_event(
    db, event_type, entity_type, entity_id, user_id=None, payload=None, created_at=None
) -> AuditEvent:
    """
    Stage an audit row on the session; the caller's unit of work commits it.

    Pass created_at from the service clock so the row agrees with the
    timestamps written on the record itself.
    """
    event = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        user_id=user_id,
        payload_json=payload or {},
    )
    if created_at is not None:
        event.created_at = created_at
    db.add(event)
    return event
