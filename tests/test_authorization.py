"""Tests for role gating through the injected RolePolicy."""
import pytest

from barangay.errors import PermissionDenied
from barangay.models.enums import ActorRole, ApprovalState
from barangay.services.authorization import Actor, Operation, RolePolicy
from barangay.services.certificates import CertificateWorkflowService


class TestDefaultPolicy:
    @pytest.mark.parametrize("role, operation, allowed", [
        (ActorRole.STAFF, Operation.SUBMIT, True),
        (ActorRole.PUROK_LEADER, Operation.SUBMIT, True),
        (ActorRole.VIEWER, Operation.SUBMIT, False),
        (ActorRole.CAPTAIN, Operation.APPROVE, True),
        (ActorRole.ADMIN, Operation.RELEASE, True),
        (ActorRole.STAFF, Operation.APPROVE, False),
        (ActorRole.PUROK_LEADER, Operation.REJECT, False),
        (ActorRole.PUROK_LEADER, Operation.ADVANCE_PROGRESS, True),
        (ActorRole.STAFF, Operation.ADVANCE_PROGRESS, False),
        (ActorRole.CAPTAIN, Operation.INVALIDATE, True),
        (ActorRole.STAFF, Operation.VIEW_QUEUE, False),
    ])
    def test_defaults(self, role, operation, allowed):
        assert RolePolicy().allows(Actor("someone", role), operation) is allowed

    def test_unknown_operation_is_closed(self):
        policy = RolePolicy()
        assert policy.required_roles_for("delete_everything") == frozenset()
        assert policy.allows(Actor("root", ActorRole.ADMIN), "delete_everything") is False

    def test_denial_names_operation_and_role(self):
        with pytest.raises(PermissionDenied) as exc:
            RolePolicy().require(Actor("s", ActorRole.STAFF), Operation.APPROVE)

        assert exc.value.status_code == 403
        assert exc.value.details == {"operation": "approve", "role": "staff"}


class TestInjectedPolicy:
    def test_custom_policy_changes_who_may_approve(self, db_session, staff, purok_leader, captain, clock):
        policy = RolePolicy({
            Operation.SUBMIT: [ActorRole.STAFF],
            Operation.APPROVE: [ActorRole.PUROK_LEADER],
        })
        service = CertificateWorkflowService(db_session, policy=policy, clock=clock)
        request = service.submit(staff, "101", "residency", "Employment")

        with pytest.raises(PermissionDenied):
            service.approve(request.id, captain)

        service.approve(request.id, purok_leader)
        assert request.approval_state == ApprovalState.APPROVED

    def test_denied_before_any_write(self, certificates, staff, notifier):
        request = certificates.submit(staff, "101", "residency", "Employment")
        events = len(notifier.events)

        with pytest.raises(PermissionDenied):
            certificates.release(request.id, staff)

        assert certificates.get(request.id).approval_state == ApprovalState.PENDING
        assert len(notifier.events) == events
