"""CertificateWorkflowService - request → approve → release/issue."""
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from barangay.database import atomic
from barangay.errors import IllegalTransition, RecordNotFound, ValidationError
from barangay.models.audit import AuditEventType, record_audit_event
from barangay.models.domain import CertificateRequest, IssuedCertificate
from barangay.models.enums import ApprovalState, CertificateType, RequestKind
from barangay.services.authorization import Actor, Operation, RolePolicy
from barangay.services.issuance import CertificateIssuanceEngine
from barangay.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TransitionEvent,
    dispatch,
)
from barangay.services.transition_guard import CommittedTransition, TransitionGuard

logger = logging.getLogger(__name__)

PURPOSE_MAX_LENGTH = 500
REQUIREMENTS_MAX_LENGTH = 1000


def _validate_certificate_type(certificate_type) -> CertificateType:
    try:
        return CertificateType(certificate_type)
    except ValueError:
        allowed = ", ".join(t.value for t in CertificateType)
        raise ValidationError("certificate_type", f"Certificate type must be one of: {allowed}")


def _validate_purpose(purpose: Optional[str]) -> str:
    purpose = (purpose or "").strip()
    if not purpose:
        raise ValidationError("purpose", "Purpose is required")
    if len(purpose) > PURPOSE_MAX_LENGTH:
        raise ValidationError("purpose", f"Purpose cannot exceed {PURPOSE_MAX_LENGTH} characters")
    return purpose


def _validate_requirements(requirements: Optional[str]) -> Optional[str]:
    requirements = (requirements or "").strip() or None
    if requirements and len(requirements) > REQUIREMENTS_MAX_LENGTH:
        raise ValidationError(
            "additional_requirements",
            f"Additional requirements cannot exceed {REQUIREMENTS_MAX_LENGTH} characters",
        )
    return requirements


def _expected(request: CertificateRequest, expected_state) -> ApprovalState:
    return request.approval_state if expected_state is None else expected_state


class CertificateWorkflowService:
    """Owns the certificate request lifecycle and hands released requests to issuance."""

    def __init__(
        self,
        db: Session,
        issuance: Optional[CertificateIssuanceEngine] = None,
        policy: Optional[RolePolicy] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.policy = policy or RolePolicy()
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.clock = clock
        self.guard = TransitionGuard(db, clock=clock)
        self.issuance = issuance or CertificateIssuanceEngine(
            db, policy=self.policy, notifier=self.notifier, clock=clock
        )

    def submit(
        self,
        actor: Actor,
        resident_ref: str,
        certificate_type,
        purpose: str,
        additional_requirements: Optional[str] = None
    ) -> CertificateRequest:
        """Create a pending request after validating type and purpose."""
        self.policy.require(actor, Operation.SUBMIT)
        resident_ref = (str(resident_ref) if resident_ref is not None else "").strip()
        if not resident_ref:
            raise ValidationError("resident_ref", "A resident is required")
        certificate_type = _validate_certificate_type(certificate_type)
        purpose = _validate_purpose(purpose)
        additional_requirements = _validate_requirements(additional_requirements)

        now = self.clock()
        with atomic(self.db):
            request = CertificateRequest(
                resident_ref=resident_ref,
                certificate_type=certificate_type,
                purpose=purpose,
                additional_requirements=additional_requirements,
                approval_state=ApprovalState.PENDING,
                requested_by=actor.actor_id,
                requested_at=now,
            )
            self.db.add(request)
            self.db.flush()
            record_audit_event(
                self.db,
                AuditEventType.REQUEST_SUBMITTED,
                RequestKind.CERTIFICATE.value,
                request.id,
                user_id=actor.actor_id,
                payload={"certificate_type": certificate_type.value, "resident_ref": resident_ref},
                created_at=now,
            )

        self.db.refresh(request)
        logger.info("Submitted certificate request %s", request.id)
        self._notify(request.id, "submitted", actor, now, {
            "certificate_type": certificate_type.value,
            "title": f"{certificate_type.label} - resident #{resident_ref}",
        })
        return request

    def update_details(
        self,
        request_id: int,
        actor: Actor,
        purpose: Optional[str] = None,
        additional_requirements: Optional[str] = None
    ) -> CertificateRequest:
        """Edit purpose/requirements. Only while the request is still pending."""
        self.policy.require(actor, Operation.UPDATE_DETAILS)
        now = self.clock()
        with atomic(self.db):
            request = self.get(request_id)
            if request.approval_state != ApprovalState.PENDING:
                raise IllegalTransition(
                    request.approval_state, request.approval_state, "only pending requests can be edited"
                )
            changes = {}
            if purpose is not None:
                changes["purpose"] = _validate_purpose(purpose)
            if additional_requirements is not None:
                changes["additional_requirements"] = _validate_requirements(additional_requirements)
            self.guard.update_pending(request, changes)
            record_audit_event(
                self.db,
                AuditEventType.REQUEST_UPDATED,
                RequestKind.CERTIFICATE.value,
                request.id,
                user_id=actor.actor_id,
                payload=changes,
                created_at=now,
            )
        logger.info("Updated certificate request %s", request.id)
        return request

    def approve(
        self,
        request_id: int,
        actor: Actor,
        remarks: Optional[str] = None,
        expected_state: Optional[ApprovalState] = None
    ) -> CertificateRequest:
        """
        Approve a pending request.

        expected_state is the state the caller last saw. When another actor has
        moved the request since, the write is refused with StaleState.
        """
        self.policy.require(actor, Operation.APPROVE)
        with atomic(self.db):
            request = self.get(request_id)
            committed = self.guard.attempt_transition(
                request,
                _expected(request, expected_state),
                ApprovalState.APPROVED,
                actor,
                {"remarks": remarks},
            )
        logger.info("Approved certificate request %s", request_id)
        self._notify_committed(committed)
        return request

    def reject(
        self,
        request_id: int,
        actor: Actor,
        remarks: str,
        expected_state: Optional[ApprovalState] = None
    ) -> CertificateRequest:
        self.policy.require(actor, Operation.REJECT)
        if not (remarks or "").strip():
            raise ValidationError("remarks", "Remarks are required when rejecting a request")
        with atomic(self.db):
            request = self.get(request_id)
            committed = self.guard.attempt_transition(
                request,
                _expected(request, expected_state),
                ApprovalState.REJECTED,
                actor,
                {"remarks": remarks},
            )
        logger.info("Rejected certificate request %s", request_id)
        self._notify_committed(committed)
        return request

    def release(
        self,
        request_id: int,
        actor: Actor,
        remarks: Optional[str] = None,
        regenerate_number: bool = False,
        expected_state: Optional[ApprovalState] = None
    ) -> IssuedCertificate:
        """
        Release an approved request and issue its certificate.

        Release and issuance are one unit of work: if issuance fails, the
        release is rolled back and the request stays approved.
        """
        self.policy.require(actor, Operation.RELEASE)
        with atomic(self.db):
            request = self.get(request_id)
            committed = self.guard.attempt_transition(
                request,
                _expected(request, expected_state),
                ApprovalState.RELEASED,
                actor,
                {"remarks": remarks},
            )
            certificate = self.issuance.issue(request, actor, regenerate_number=regenerate_number)

        self.db.refresh(certificate)
        logger.info(
            "Released certificate request %s as %s", request_id, certificate.certificate_number
        )
        self._notify_committed(committed, {"certificate_number": certificate.certificate_number})
        self._notify(request_id, "issued", actor, committed.committed_at, {
            "certificate_number": certificate.certificate_number,
        })
        return certificate

    def get(self, request_id: int) -> CertificateRequest:
        request = self.db.get(CertificateRequest, request_id)
        if not request or not request.is_active:
            raise RecordNotFound("Certificate request", request_id)
        return request

    def list_requests(
        self,
        approval_state: Optional[ApprovalState] = None,
        certificate_type: Optional[CertificateType] = None,
        resident_ref: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[CertificateRequest]:
        query = self.db.query(CertificateRequest).filter(CertificateRequest.is_active.is_(True))
        if approval_state is not None:
            query = query.filter(CertificateRequest.approval_state == approval_state)
        if certificate_type is not None:
            query = query.filter(CertificateRequest.certificate_type == certificate_type)
        if resident_ref is not None:
            query = query.filter(CertificateRequest.resident_ref == resident_ref)
        if date_from is not None:
            query = query.filter(func.date(CertificateRequest.requested_at) >= date_from.isoformat())
        if date_to is not None:
            query = query.filter(func.date(CertificateRequest.requested_at) <= date_to.isoformat())
        return (
            query.order_by(CertificateRequest.requested_at.desc(), CertificateRequest.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def list_pending(self) -> List[CertificateRequest]:
        return (
            self.db.query(CertificateRequest)
            .filter(
                CertificateRequest.approval_state == ApprovalState.PENDING,
                CertificateRequest.is_active.is_(True),
            )
            .all()
        )

    def statistics(self) -> dict:
        """Counts by approval state and by certificate type. No side effects."""
        rows = (
            self.db.query(
                CertificateRequest.approval_state,
                CertificateRequest.certificate_type,
                func.count(CertificateRequest.id),
            )
            .filter(CertificateRequest.is_active.is_(True))
            .group_by(CertificateRequest.approval_state, CertificateRequest.certificate_type)
            .all()
        )
        stats = {
            "total_requests": 0,
            "pending": 0,
            "approved": 0,
            "released": 0,
            "rejected": 0,
            "by_type": {t.value: 0 for t in CertificateType},
        }
        for approval_state, certificate_type, count in rows:
            stats["total_requests"] += count
            stats[ApprovalState(approval_state).value] += count
            stats["by_type"][CertificateType(certificate_type).value] += count
        return stats

    def _notify_committed(self, committed: CommittedTransition, details: Optional[dict] = None) -> None:
        payload = {"from": committed.source}
        payload.update(details or {})
        remarks = committed.metadata.get("remarks")
        if remarks:
            payload["remarks"] = remarks
        dispatch(self.notifier, TransitionEvent(
            kind=committed.kind.value,
            record_id=committed.record_id,
            transition=committed.transition,
            actor=committed.actor_id,
            timestamp=committed.committed_at,
            details=payload,
        ))

    def _notify(self, record_id: int, transition: str, actor: Actor, timestamp: datetime, details: dict) -> None:
        dispatch(self.notifier, TransitionEvent(
            kind=RequestKind.CERTIFICATE.value,
            record_id=record_id,
            transition=transition,
            actor=actor.actor_id,
            timestamp=timestamp,
            details=details,
        ))
