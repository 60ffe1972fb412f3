"""
Blotter and incident workflows.

Both kinds share the approval gate and differ in their payload and progress
sequence, so the lifecycle lives in CaseWorkflowService and each subclass only
validates and builds its own record.
"""
import logging
import re
from datetime import date, datetime
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from barangay.database import atomic
from barangay.errors import DuplicateAllocation, IllegalTransition, RecordNotFound, ValidationError
from barangay.models.audit import AuditEventType, record_audit_event
from barangay.models.domain import BlotterCase, IncidentReport
from barangay.models.enums import ApprovalState
from barangay.services.authorization import Actor, Operation, RolePolicy
from barangay.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TransitionEvent,
    dispatch,
)
from barangay.services.transition_guard import (
    PROGRESS_SEQUENCES,
    CommittedTransition,
    TransitionGuard,
)

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
LOCATION_MAX_LENGTH = 255
TITLE_MAX_LENGTH = 255
NAME_MAX_LENGTH = 255
CONTACT_MAX_LENGTH = 20
MIN_AGE = 1
MAX_AGE = 120


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _required_text(payload: dict, field: str, label: str, max_length: Optional[int] = None) -> str:
    value = _clean(payload.get(field))
    if not value:
        raise ValidationError(field, f"{label} is required")
    if max_length and len(value) > max_length:
        raise ValidationError(field, f"{label} cannot exceed {max_length} characters")
    return value


def _incident_date(payload: dict, today: date) -> date:
    value = payload.get("incident_date")
    if not value:
        raise ValidationError("incident_date", "Incident date is required")
    if isinstance(value, datetime):
        value = value.date()
    elif not isinstance(value, date):
        try:
            value = date.fromisoformat(str(value))
        except ValueError:
            raise ValidationError("incident_date", "Incident date must be a valid date (YYYY-MM-DD)")
    if value > today:
        raise ValidationError("incident_date", "Incident date cannot be in the future")
    return value


def _incident_time(payload: dict) -> str:
    value = _clean(payload.get("incident_time"))
    if not value:
        raise ValidationError("incident_time", "Incident time is required")
    if not TIME_PATTERN.match(value):
        raise ValidationError("incident_time", "Incident time must be in HH:MM format")
    return value


TRUE_FLAGS = frozenset({"true", "1", "yes", "on"})
FALSE_FLAGS = frozenset({"false", "0", "no", "off", ""})


def _flag(payload: dict, field: str) -> bool:
    value = payload.get(field)
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in TRUE_FLAGS | FALSE_FLAGS:
        return value.strip().lower() in TRUE_FLAGS
    raise ValidationError(field, f"{field.replace('_', ' ').capitalize()} must be true or false")


def _party(payload: dict, party: str) -> dict:
    """
    Validate one blotter party (complainant or respondent).

    A resident party carries only a resident reference; a non-resident party
    carries full name, age and address and no reference.
    """
    label = party.capitalize()
    is_resident = _flag(payload, f"{party}_is_resident")
    resident_ref = _clean(payload.get(f"{party}_resident_ref"))
    full_name = _clean(payload.get(f"{party}_full_name"))
    age = payload.get(f"{party}_age")
    address = _clean(payload.get(f"{party}_address"))
    contact = _clean(payload.get(f"{party}_contact"))

    if contact and len(contact) > CONTACT_MAX_LENGTH:
        raise ValidationError(
            f"{party}_contact", f"{label} contact cannot exceed {CONTACT_MAX_LENGTH} characters"
        )

    if is_resident:
        if not resident_ref:
            raise ValidationError(f"{party}_resident_ref", f"{label} resident is required")
        for field, value in (("full_name", full_name), ("age", age), ("address", address)):
            if value not in (None, ""):
                raise ValidationError(
                    f"{party}_{field}", f"{label} {field.replace('_', ' ')} must be empty for a resident"
                )
        return {
            f"{party}_is_resident": True,
            f"{party}_resident_ref": resident_ref,
            f"{party}_full_name": None,
            f"{party}_age": None,
            f"{party}_address": None,
            f"{party}_contact": contact,
        }

    if resident_ref:
        raise ValidationError(
            f"{party}_resident_ref", f"{label} resident must be empty for a non-resident"
        )
    if not full_name:
        raise ValidationError(f"{party}_full_name", f"{label} full name is required")
    if len(full_name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"{party}_full_name", f"{label} full name cannot exceed {NAME_MAX_LENGTH} characters"
        )
    if age in (None, ""):
        raise ValidationError(f"{party}_age", f"{label} age is required")
    try:
        age = int(age)
    except (TypeError, ValueError):
        raise ValidationError(f"{party}_age", f"{label} age must be a number")
    if not MIN_AGE <= age <= MAX_AGE:
        raise ValidationError(f"{party}_age", f"{label} age must be between {MIN_AGE} and {MAX_AGE}")
    if not address:
        raise ValidationError(f"{party}_address", f"{label} address is required")
    return {
        f"{party}_is_resident": False,
        f"{party}_resident_ref": None,
        f"{party}_full_name": full_name,
        f"{party}_age": age,
        f"{party}_address": address,
        f"{party}_contact": contact,
    }


class CaseWorkflowService:
    """
    Shared lifecycle for records with an approval gate plus case progress.

    Subclasses set ``model`` and ``label`` and implement ``_validate``.
    """
    model = None
    label = "Case"

    def __init__(
        self,
        db: Session,
        policy: Optional[RolePolicy] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.db = db
        self.policy = policy or RolePolicy()
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.clock = clock
        self.guard = TransitionGuard(db, clock=clock)

    @property
    def kind(self):
        return self.model.kind

    @property
    def progress_sequence(self):
        return PROGRESS_SEQUENCES[self.kind]

    def submit(self, actor: Actor, payload: dict):
        """Validate the payload and create a pending record with no progress."""
        self.policy.require(actor, Operation.SUBMIT)
        now = self.clock()
        fields = self._build(dict(payload or {}), now)

        with atomic(self.db):
            record = self.model(
                approval_state=ApprovalState.PENDING,
                progress=None,
                requested_by=actor.actor_id,
                requested_at=now,
                **fields,
            )
            self.db.add(record)
            self._flush_new(record)
            record_audit_event(
                self.db,
                AuditEventType.REQUEST_SUBMITTED,
                self.kind.value,
                record.id,
                user_id=actor.actor_id,
                payload={"title": self.title_for(record)},
                created_at=now,
            )

        self.db.refresh(record)
        logger.info("Submitted %s %s", self.kind.value, record.id)
        dispatch(self.notifier, TransitionEvent(
            kind=self.kind.value,
            record_id=record.id,
            transition="submitted",
            actor=actor.actor_id,
            timestamp=now,
            details={"title": self.title_for(record)},
        ))
        return record

    def update_details(self, record_id: int, actor: Actor, payload: dict):
        """
        Replace the details of a pending record with a freshly validated payload.

        The payload is validated exactly as on submit, so a party switched to
        resident loses its name, age and address. Decided records are frozen.
        """
        self.policy.require(actor, Operation.UPDATE_DETAILS)
        now = self.clock()
        with atomic(self.db):
            record = self.get(record_id)
            if record.approval_state != ApprovalState.PENDING:
                raise IllegalTransition(
                    record.approval_state, record.approval_state, "only pending records can be edited"
                )
            fields = self._validate(dict(payload or {}), now)
            self.guard.update_pending(record, fields)
            record_audit_event(
                self.db,
                AuditEventType.REQUEST_UPDATED,
                self.kind.value,
                record.id,
                user_id=actor.actor_id,
                payload={"fields": sorted(fields)},
                created_at=now,
            )
        logger.info("Updated %s %s", self.kind.value, record_id)
        return record

    def approve(
        self,
        record_id: int,
        actor: Actor,
        remarks: Optional[str] = None,
        expected_state: Optional[ApprovalState] = None
    ):
        """
        Approve a pending record; progress starts at the first value of its sequence.

        expected_state is what the caller last saw; if the record has moved
        since, the approval is refused with StaleState.
        """
        self.policy.require(actor, Operation.APPROVE)
        with atomic(self.db):
            record = self.get(record_id)
            committed = self.guard.attempt_transition(
                record,
                record.approval_state if expected_state is None else expected_state,
                ApprovalState.APPROVED,
                actor,
                {"remarks": remarks},
            )
        logger.info("Approved %s %s", self.kind.value, record_id)
        self._notify(committed)
        return record

    def reject(
        self,
        record_id: int,
        actor: Actor,
        remarks: str,
        expected_state: Optional[ApprovalState] = None
    ):
        self.policy.require(actor, Operation.REJECT)
        if not (remarks or "").strip():
            raise ValidationError("remarks", "Remarks are required when rejecting a request")
        with atomic(self.db):
            record = self.get(record_id)
            committed = self.guard.attempt_transition(
                record,
                record.approval_state if expected_state is None else expected_state,
                ApprovalState.REJECTED,
                actor,
                {"remarks": remarks},
            )
        logger.info("Rejected %s %s", self.kind.value, record_id)
        self._notify(committed)
        return record

    def advance_progress(
        self,
        record_id: int,
        actor: Actor,
        next_progress,
        resolution: Optional[str] = None,
        expected_progress=None
    ):
        """Move an approved record forward. Skipping ahead is allowed, going back is not."""
        self.policy.require(actor, Operation.ADVANCE_PROGRESS)
        with atomic(self.db):
            record = self.get(record_id)
            committed = self.guard.attempt_progress(
                record,
                record.progress if expected_progress is None else expected_progress,
                next_progress,
                actor,
                {"resolution": _clean(resolution)},
            )
        logger.info("Moved %s %s to %s", self.kind.value, record_id, committed.target)
        self._notify(committed)
        return record

    def get(self, record_id: int):
        record = self.db.get(self.model, record_id)
        if not record or not record.is_active:
            raise RecordNotFound(self.label, record_id)
        return record

    def list_cases(
        self,
        approval_state: Optional[ApprovalState] = None,
        progress=None,
        limit: int = 50,
        offset: int = 0
    ) -> List:
        query = self.db.query(self.model).filter(self.model.is_active.is_(True))
        if approval_state is not None:
            query = query.filter(self.model.approval_state == approval_state)
        if progress is not None:
            query = query.filter(self.model.progress == progress)
        return (
            query.order_by(self.model.requested_at.desc(), self.model.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def list_pending(self) -> List:
        return (
            self.db.query(self.model)
            .filter(
                self.model.approval_state == ApprovalState.PENDING,
                self.model.is_active.is_(True),
            )
            .all()
        )

    def statistics(self) -> dict:
        rows = (
            self.db.query(self.model.approval_state, self.model.progress, func.count(self.model.id))
            .filter(self.model.is_active.is_(True))
            .group_by(self.model.approval_state, self.model.progress)
            .all()
        )
        stats = {"total": 0, "pending": 0, "rejected": 0}
        for progress in self.progress_sequence:
            stats[progress.value.lower()] = 0
        for approval_state, progress, count in rows:
            stats["total"] += count
            approval_state = ApprovalState(approval_state)
            if approval_state == ApprovalState.PENDING:
                stats["pending"] += count
            elif approval_state == ApprovalState.REJECTED:
                stats["rejected"] += count
            elif progress is not None:
                stats[type(self.progress_sequence[0])(progress).value.lower()] += count
        return stats

    def title_for(self, record) -> str:
        raise NotImplementedError

    def subtitle_for(self, record) -> str:
        raise NotImplementedError

    def _validate(self, payload: dict, now: datetime) -> dict:
        raise NotImplementedError

    def _build(self, payload: dict, now: datetime) -> dict:
        return self._validate(payload, now)

    def _flush_new(self, record) -> None:
        self.db.flush()

    def _notify(self, committed: CommittedTransition) -> None:
        details = {"from": committed.source}
        for key in ("remarks", "resolution"):
            if committed.metadata.get(key):
                details[key] = committed.metadata[key]
        dispatch(self.notifier, TransitionEvent(
            kind=committed.kind.value,
            record_id=committed.record_id,
            transition=committed.transition,
            actor=committed.actor_id,
            timestamp=committed.committed_at,
            details=details,
        ))


class BlotterWorkflowService(CaseWorkflowService):
    model = BlotterCase
    label = "Blotter"

    def title_for(self, record: BlotterCase) -> str:
        return f"{record.case_number} - {record.complainant_name} vs {record.respondent_name}"

    def subtitle_for(self, record: BlotterCase) -> str:
        return f"Location: {record.incident_location}"

    def _build(self, payload: dict, now: datetime) -> dict:
        fields = self._validate(payload, now)
        fields["case_number"] = self._next_case_number(now.year)
        return fields

    def _validate(self, payload: dict, now: datetime) -> dict:
        fields = {}
        fields.update(_party(payload, "complainant"))
        fields.update(_party(payload, "respondent"))
        fields["incident_date"] = _incident_date(payload, now.date())
        fields["incident_time"] = _incident_time(payload)
        fields["incident_location"] = _required_text(
            payload, "incident_location", "Incident location", LOCATION_MAX_LENGTH
        )
        fields["description"] = _required_text(payload, "description", "Description")
        fields["official_ref"] = _clean(payload.get("official_ref"))
        return fields

    def _next_case_number(self, year: int) -> str:
        """Format: BLOTTER-YEAR-SEQ, sequence restarting each year."""
        prefix = f"BLOTTER-{year}-"
        # Length first so BLOTTER-YYYY-10000 sorts after BLOTTER-YYYY-9999
        latest = (
            self.db.query(BlotterCase.case_number)
            .filter(BlotterCase.case_number.like(f"{prefix}%"))
            .order_by(func.length(BlotterCase.case_number).desc(), BlotterCase.case_number.desc())
            .limit(1)
            .scalar()
        )
        sequence = int(latest[len(prefix):]) + 1 if latest else 1
        return f"{prefix}{sequence:04d}"

    def _flush_new(self, record: BlotterCase) -> None:
        try:
            self.db.flush()
        except IntegrityError:
            logger.warning("Case number %s collided on insert", record.case_number)
            raise DuplicateAllocation(record.case_number)


class IncidentWorkflowService(CaseWorkflowService):
    model = IncidentReport
    label = "Incident report"

    def title_for(self, record: IncidentReport) -> str:
        return record.incident_title

    def subtitle_for(self, record: IncidentReport) -> str:
        return f"Location: {record.location}"

    def _validate(self, payload: dict, now: datetime) -> dict:
        persons = payload.get("persons_involved") or []
        if isinstance(persons, str):
            persons = [persons]
        if not isinstance(persons, (list, tuple)):
            raise ValidationError("persons_involved", "Persons involved must be a list of names")
        persons = [name for name in (_clean(p) for p in persons) if name]

        return {
            "incident_title": _required_text(payload, "incident_title", "Incident title", TITLE_MAX_LENGTH),
            "description": _required_text(payload, "description", "Description"),
            "incident_date": _incident_date(payload, now.date()),
            "incident_time": _incident_time(payload),
            "location": _required_text(payload, "location", "Location", LOCATION_MAX_LENGTH),
            "persons_involved": persons,
            "reporting_officer_ref": _clean(payload.get("reporting_officer_ref")),
            "notes": _clean(payload.get("notes")),
        }
