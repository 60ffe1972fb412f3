"""
CertificateIssuanceEngine - certificate numbers, validity windows and revocation.

This is the only component that writes certificate_number or is_valid.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from barangay.config import Settings, settings as default_settings
from barangay.database import atomic
from barangay.errors import (
    AlreadyInvalid,
    DuplicateAllocation,
    IllegalTransition,
    RecordNotFound,
    ValidationError,
)
from barangay.models.audit import AuditEventType, record_audit_event
from barangay.models.domain import CertificateRequest, CertificateSequence, IssuedCertificate
from barangay.models.enums import ApprovalState, CertificateStatus, CertificateType
from barangay.services.authorization import Actor, Operation, RolePolicy
from barangay.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TransitionEvent,
    dispatch,
)

logger = logging.getLogger(__name__)

# Answer for any number we cannot vouch for, whatever the reason
NOT_FOUND_VERIFICATION = {
    "exists": False,
    "is_valid": False,
    "expired": False,
    "status": None,
    "days_until_expiry": None,
    "resident_summary": None,
}


def format_certificate_number(type_code: str, year: int, sequence: int) -> str:
    """Format: TYPE_CODE-YEAR-SEQ, e.g. RES-2026-000042."""
    return f"{type_code}-{year}-{sequence:06d}"


class CertificateIssuanceEngine:
    """Allocates numbers, computes validity windows, revokes and verifies."""

    def __init__(
        self,
        db: Session,
        policy: Optional[RolePolicy] = None,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.policy = policy or RolePolicy()
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.settings = settings
        self.clock = clock

    def issue(
        self,
        request: CertificateRequest,
        actor: Actor,
        signed_by: Optional[str] = None,
        signature_position: Optional[str] = None,
        regenerate_number: bool = False
    ) -> IssuedCertificate:
        """
        Create the IssuedCertificate for an approved/released request.

        Runs inside the caller's unit of work and does not commit. A number
        collision raises DuplicateAllocation; the engine only skips past taken
        numbers when the caller asks for it with regenerate_number=True.
        """
        if request.approval_state not in (ApprovalState.APPROVED, ApprovalState.RELEASED):
            raise IllegalTransition(
                request.approval_state, "issued", "only approved requests can be issued a certificate"
            )

        existing = self.db.query(IssuedCertificate).filter(
            IssuedCertificate.certificate_request_id == request.id
        ).first()
        if existing:
            raise IllegalTransition(
                request.approval_state,
                "issued",
                f"certificate {existing.certificate_number} was already issued for this request",
            )

        now = self.clock()
        certificate_type = CertificateType(request.certificate_type)
        certificate_number = self.allocate_number(certificate_type, now.year, skip_taken=regenerate_number)

        valid_from = now.date()
        valid_until = valid_from + timedelta(days=self.settings.validity_days_for(certificate_type.value))

        certificate = IssuedCertificate(
            certificate_request_id=request.id,
            certificate_number=certificate_number,
            certificate_type=certificate_type,
            resident_ref=request.resident_ref,
            purpose=request.purpose,
            valid_from=valid_from,
            valid_until=valid_until,
            is_valid=True,
            issued_by=actor.actor_id,
            issued_at=now,
            signed_by=signed_by or self.settings.certificate_signed_by,
            signature_position=signature_position or self.settings.certificate_signature_position,
            signed_at=now,
        )
        self.db.add(certificate)
        try:
            self.db.flush()
        except IntegrityError:
            logger.warning("Certificate number %s collided on insert", certificate_number)
            raise DuplicateAllocation(certificate_number)

        record_audit_event(
            self.db,
            AuditEventType.CERTIFICATE_ISSUED,
            "issued_certificate",
            certificate.id,
            user_id=actor.actor_id,
            payload={
                "certificate_number": certificate_number,
                "certificate_request_id": request.id,
                "valid_from": valid_from.isoformat(),
                "valid_until": valid_until.isoformat(),
            },
            created_at=now,
        )
        logger.info("Issued certificate %s for request %s", certificate_number, request.id)
        return certificate

    def allocate_number(self, certificate_type: CertificateType, year: int, skip_taken: bool = False) -> str:
        """
        Take the next sequence value for (type, year).

        The increment is conditional on the value we read; losing that race is
        a DuplicateAllocation, never a silent retry.
        """
        type_code = certificate_type.code
        sequence = self.db.query(CertificateSequence).filter(
            CertificateSequence.type_code == type_code,
            CertificateSequence.year == year,
        ).one_or_none()

        last_value = sequence.last_value if sequence else 0
        value = last_value + 1
        if skip_taken:
            while self._number_taken(format_certificate_number(type_code, year, value)):
                value += 1

        certificate_number = format_certificate_number(type_code, year, value)

        if sequence is None:
            self.db.add(CertificateSequence(type_code=type_code, year=year, last_value=value))
            try:
                self.db.flush()
            except IntegrityError:
                raise DuplicateAllocation(certificate_number)
            return certificate_number

        result = self.db.execute(
            update(CertificateSequence)
            .where(
                CertificateSequence.id == sequence.id,
                CertificateSequence.last_value == last_value,
            )
            .values(last_value=value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise DuplicateAllocation(certificate_number)
        self.db.refresh(sequence)
        return certificate_number

    def _number_taken(self, certificate_number: str) -> bool:
        return self.db.query(IssuedCertificate.id).filter(
            IssuedCertificate.certificate_number == certificate_number
        ).first() is not None

    def invalidate(self, certificate_id: int, actor: Actor, reason: str) -> IssuedCertificate:
        """
        Revoke a certificate. One-way: a second call raises AlreadyInvalid.

        The refused attempt is still written to the audit log.
        """
        self.policy.require(actor, Operation.INVALIDATE)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason", "A reason is required to invalidate a certificate")

        refused = False
        with atomic(self.db):
            certificate = self.get(certificate_id)
            now = self.clock()
            result = self.db.execute(
                update(IssuedCertificate)
                .where(IssuedCertificate.id == certificate.id, IssuedCertificate.is_valid.is_(True))
                .values(
                    is_valid=False,
                    invalidated_by=actor.actor_id,
                    invalidated_at=now,
                    invalidation_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                refused = True
                record_audit_event(
                    self.db,
                    AuditEventType.INVALIDATION_REFUSED_ALREADY_INVALID,
                    "issued_certificate",
                    certificate.id,
                    user_id=actor.actor_id,
                    payload={"certificate_number": certificate.certificate_number, "reason": reason},
                    created_at=now,
                )
            else:
                record_audit_event(
                    self.db,
                    AuditEventType.CERTIFICATE_INVALIDATED,
                    "issued_certificate",
                    certificate.id,
                    user_id=actor.actor_id,
                    payload={"certificate_number": certificate.certificate_number, "reason": reason},
                    created_at=now,
                )

        self.db.refresh(certificate)
        if refused:
            logger.warning(
                "Refused to invalidate certificate %s: already invalid", certificate.certificate_number
            )
            raise AlreadyInvalid(certificate.certificate_number)

        logger.info("Invalidated certificate %s", certificate.certificate_number)
        dispatch(self.notifier, TransitionEvent(
            kind="certificate",
            record_id=certificate.certificate_request_id,
            transition="invalidated",
            actor=actor.actor_id,
            timestamp=now,
            details={"certificate_number": certificate.certificate_number, "reason": reason},
        ))
        return certificate

    def verify(self, certificate_number: str) -> dict:
        """
        Public lookup by number. Read-only.

        Unknown numbers get one uniform answer, so the response never hints
        at where a number came from.
        """
        certificate_number = (certificate_number or "").strip().upper()
        certificate = None
        if certificate_number:
            certificate = self.db.query(IssuedCertificate).filter(
                IssuedCertificate.certificate_number == certificate_number
            ).first()
        if certificate is None:
            return dict(NOT_FOUND_VERIFICATION)

        today = self.clock().date()
        certificate_type = CertificateType(certificate.certificate_type)
        return {
            "exists": True,
            "is_valid": certificate.is_valid,
            "expired": certificate.is_expired(today),
            "status": certificate.status_on(today).value,
            "days_until_expiry": certificate.days_until_expiry(today),
            "resident_summary": {
                "resident_ref": certificate.resident_ref,
                "certificate_type": certificate_type.value,
                "certificate_type_label": certificate_type.label,
                "valid_from": certificate.valid_from.isoformat(),
                "valid_until": certificate.valid_until.isoformat(),
                "signed_by": certificate.signed_by,
            },
        }

    def get(self, certificate_id: int) -> IssuedCertificate:
        certificate = self.db.get(IssuedCertificate, certificate_id)
        if not certificate:
            raise RecordNotFound("Issued certificate", certificate_id)
        return certificate

    def list_certificates(
        self,
        status: Optional[CertificateStatus] = None,
        certificate_type: Optional[CertificateType] = None,
        resident_ref: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[IssuedCertificate]:
        query = self.db.query(IssuedCertificate)
        today = self.clock().date()
        if status == CertificateStatus.VALID:
            query = query.filter(IssuedCertificate.is_valid.is_(True), IssuedCertificate.valid_until >= today)
        elif status == CertificateStatus.EXPIRED:
            query = query.filter(IssuedCertificate.is_valid.is_(True), IssuedCertificate.valid_until < today)
        elif status == CertificateStatus.INVALID:
            query = query.filter(IssuedCertificate.is_valid.is_(False))
        if certificate_type is not None:
            query = query.filter(IssuedCertificate.certificate_type == certificate_type)
        if resident_ref is not None:
            query = query.filter(IssuedCertificate.resident_ref == resident_ref)
        return (
            query.order_by(IssuedCertificate.issued_at.desc(), IssuedCertificate.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def statistics(self) -> dict:
        today = self.clock().date()
        soon = today + timedelta(days=self.settings.certificate_expiring_soon_days)
        rows = self.db.query(
            IssuedCertificate.certificate_type,
            IssuedCertificate.is_valid,
            IssuedCertificate.valid_until,
        ).all()

        stats = {
            "total_certificates": len(rows),
            "valid": 0,
            "expired": 0,
            "invalidated": 0,
            "expiring_soon": 0,
            "by_type": {t.value: 0 for t in CertificateType},
        }
        for certificate_type, is_valid, valid_until in rows:
            stats["by_type"][CertificateType(certificate_type).value] += 1
            if not is_valid:
                stats["invalidated"] += 1
            elif valid_until < today:
                stats["expired"] += 1
            else:
                stats["valid"] += 1
                if valid_until <= soon:
                    stats["expiring_soon"] += 1
        return stats

