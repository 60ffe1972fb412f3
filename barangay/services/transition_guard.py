"""
TransitionGuard - the single place that decides whether a state change is legal
and commits it atomically.

All writes to approval_state, approved_*, rejected_*, released_* and progress
MUST go through here. The guard stages its writes on the caller's session and
never commits; the calling service owns the unit of work.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from barangay.errors import IllegalTransition, StaleState, ValidationError
from barangay.models.audit import AuditEventType, record_audit_event
from barangay.models.enums import (
    ApprovalState,
    BlotterProgress,
    IncidentProgress,
    RequestKind,
)
from barangay.services.authorization import Actor

logger = logging.getLogger(__name__)

# Hard-coded legal table: (source, target) pairs per request kind
LEGAL_APPROVAL_TRANSITIONS = {
    RequestKind.CERTIFICATE: frozenset({
        (ApprovalState.PENDING, ApprovalState.APPROVED),
        (ApprovalState.PENDING, ApprovalState.REJECTED),
        (ApprovalState.APPROVED, ApprovalState.RELEASED),
    }),
    RequestKind.BLOTTER: frozenset({
        (ApprovalState.PENDING, ApprovalState.APPROVED),
        (ApprovalState.PENDING, ApprovalState.REJECTED),
    }),
    RequestKind.INCIDENT: frozenset({
        (ApprovalState.PENDING, ApprovalState.APPROVED),
        (ApprovalState.PENDING, ApprovalState.REJECTED),
    }),
}

# Forward-only progress order; the first value is set on approval
PROGRESS_SEQUENCES = {
    RequestKind.BLOTTER: (BlotterProgress.OPEN, BlotterProgress.ONGOING, BlotterProgress.RESOLVED),
    RequestKind.INCIDENT: (IncidentProgress.RECORDED, IncidentProgress.MONITORING, IncidentProgress.RESOLVED),
}

_AUDIT_EVENT_FOR_TARGET = {
    ApprovalState.APPROVED: AuditEventType.REQUEST_APPROVED,
    ApprovalState.REJECTED: AuditEventType.REQUEST_REJECTED,
    ApprovalState.RELEASED: AuditEventType.REQUEST_RELEASED,
}


def _as_enum(enum_type, value, field_name: str):
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(field_name, f"Value must be one of: {allowed}")


@dataclass(frozen=True)
class CommittedTransition:
    """What the guard wrote; drives notification and, for certificates, issuance."""
    kind: RequestKind
    record_id: int
    source: str
    target: str
    actor_id: str
    committed_at: datetime
    metadata: dict = field(default_factory=dict)

    @property
    def transition(self) -> str:
        if self.metadata.get("dimension") == "progress":
            return f"progress:{self.target}"
        return self.target


class TransitionGuard:
    """Enforces the legal transition table and the at-most-once commit."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.clock = clock

    def attempt_transition(
        self,
        record,
        expected_current_state: ApprovalState,
        next_state: ApprovalState,
        actor: Actor,
        metadata: Optional[dict] = None
    ) -> CommittedTransition:
        """
        Move record.approval_state from expected_current_state to next_state.

        Invariants:
        - Only pairs in LEGAL_APPROVAL_TRANSITIONS for the record's kind are allowed
        - Rejection requires non-empty remarks
        - The write is conditional on the persisted state still being
          expected_current_state; if another actor got there first, StaleState
        """
        kind = record.kind
        metadata = dict(metadata or {})
        expected_current_state = _as_enum(ApprovalState, expected_current_state, "expected_state")

        if (expected_current_state, next_state) not in LEGAL_APPROVAL_TRANSITIONS[kind]:
            raise IllegalTransition(expected_current_state, next_state)

        remarks = (metadata.get("remarks") or "").strip()
        if next_state == ApprovalState.REJECTED and not remarks:
            raise ValidationError("remarks", "Remarks are required when rejecting a request")

        now = self.clock()
        values = {"approval_state": next_state, "updated_at": now}

        if next_state == ApprovalState.APPROVED:
            values["approved_by"] = actor.actor_id
            values["approved_at"] = now
            if kind in PROGRESS_SEQUENCES:
                values["progress"] = PROGRESS_SEQUENCES[kind][0]
            if remarks and kind == RequestKind.CERTIFICATE:
                values["remarks"] = remarks
        elif next_state == ApprovalState.REJECTED:
            values["rejected_by"] = actor.actor_id
            values["rejected_at"] = now
            values["rejection_remarks"] = remarks
        elif next_state == ApprovalState.RELEASED:
            values["released_by"] = actor.actor_id
            values["released_at"] = now
            if remarks:
                values["remarks"] = remarks

        model = type(record)
        self._conditional_update(
            record,
            values,
            model.approval_state == expected_current_state,
            stale_error=StaleState(kind, record.id, expected_current_state, next_state),
        )

        record_audit_event(
            self.db,
            _AUDIT_EVENT_FOR_TARGET[next_state],
            kind.value,
            record.id,
            user_id=actor.actor_id,
            payload={
                "from": expected_current_state.value,
                "to": next_state.value,
                "remarks": remarks or None,
            },
            created_at=now,
        )

        return CommittedTransition(
            kind=kind,
            record_id=record.id,
            source=expected_current_state.value,
            target=next_state.value,
            actor_id=actor.actor_id,
            committed_at=now,
            metadata=metadata,
        )

    def attempt_progress(
        self,
        record,
        expected_progress,
        next_progress,
        actor: Actor,
        metadata: Optional[dict] = None
    ) -> CommittedTransition:
        """
        Move an approved case forward along its progress sequence.

        Invariants:
        - Only blotters and incidents have progress
        - approval_state must be approved; rejected freezes progress forever
        - Forward only; skipping ahead is allowed (Open → Resolved)
        """
        kind = record.kind
        metadata = dict(metadata or {})

        if kind not in PROGRESS_SEQUENCES:
            raise IllegalTransition(
                record.approval_state, next_progress, "only blotters and incidents have case progress"
            )

        # Approval gate comes before anything else, whatever was requested
        if record.approval_state != ApprovalState.APPROVED:
            raise IllegalTransition(
                record.approval_state, next_progress, "case progress requires an approved record"
            )

        sequence = PROGRESS_SEQUENCES[kind]
        progress_type = type(sequence[0])
        try:
            next_progress = progress_type(next_progress)
        except ValueError:
            allowed = ", ".join(p.value for p in sequence)
            raise ValidationError(
                "next_progress", f"Progress must be one of: {allowed}"
            )

        expected_progress = _as_enum(progress_type, expected_progress, "expected_progress")
        current_index = sequence.index(expected_progress)
        if sequence.index(next_progress) <= current_index:
            raise IllegalTransition(expected_progress, next_progress, "progress only moves forward")

        now = self.clock()
        values = {"progress": next_progress, "updated_at": now}
        if next_progress == sequence[-1]:
            values["resolved_at"] = now
            if metadata.get("resolution") and hasattr(record, "resolution"):
                values["resolution"] = metadata["resolution"]

        model = type(record)
        self._conditional_update(
            record,
            values,
            model.approval_state == ApprovalState.APPROVED,
            model.progress == expected_progress,
            stale_error=StaleState(kind, record.id, expected_progress, next_progress),
        )

        record_audit_event(
            self.db,
            AuditEventType.PROGRESS_ADVANCED,
            kind.value,
            record.id,
            user_id=actor.actor_id,
            payload={"from": expected_progress.value, "to": next_progress.value},
            created_at=now,
        )

        metadata["dimension"] = "progress"
        return CommittedTransition(
            kind=kind,
            record_id=record.id,
            source=expected_progress.value,
            target=next_progress.value,
            actor_id=actor.actor_id,
            committed_at=now,
            metadata=metadata,
        )

    def update_pending(self, record, values: dict) -> None:
        """Write detail fields only while the record is still pending."""
        values = dict(values, updated_at=self.clock())
        model = type(record)
        self._conditional_update(
            record,
            values,
            model.approval_state == ApprovalState.PENDING,
            stale_error=StaleState(record.kind, record.id, ApprovalState.PENDING, "updated"),
        )

    def _conditional_update(self, record, values, *conditions, stale_error) -> None:
        """Read-then-conditional-write: zero matched rows means we lost the race."""
        model = type(record)
        result = self.db.execute(
            update(model)
            .where(model.id == record.id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Refused write to %s %s: %s", model.__tablename__, record.id, stale_error.message)
            raise stale_error
        self.db.refresh(record)
