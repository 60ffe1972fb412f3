"""
Tests for blotter and incident workflows.

approval_state and progress are separate: progress is empty while pending,
starts on approval, moves forward only, and is frozen by rejection.
"""
from datetime import date

import pytest

from barangay.errors import IllegalTransition, PermissionDenied, RecordNotFound, ValidationError
from barangay.models.domain import BlotterCase
from barangay.models.enums import ApprovalState, BlotterProgress, IncidentProgress


class TestBlotterSubmit:
    def test_submit_starts_pending_without_progress(self, blotters, staff, clock, make_blotter_payload):
        blotter = blotters.submit(staff, make_blotter_payload())

        assert blotter.approval_state == ApprovalState.PENDING
        assert blotter.progress is None
        assert blotter.case_number == "BLOTTER-2026-0001"
        assert blotter.incident_date == date(2026, 3, 10)
        assert blotter.requested_at == clock.now
        assert blotter.subject_reference == "resident #101 vs Pedro Reyes"

    def test_case_numbers_increase(self, blotters, staff, make_blotter_payload):
        first = blotters.submit(staff, make_blotter_payload())
        second = blotters.submit(staff, make_blotter_payload())

        assert (first.case_number, second.case_number) == ("BLOTTER-2026-0001", "BLOTTER-2026-0002")

    def test_scenario_b_missing_non_resident_name(self, blotters, staff, make_blotter_payload):
        """A non-resident complainant without a full name is refused, naming the field."""
        payload = make_blotter_payload(
            complainant_is_resident=False,
            complainant_resident_ref=None,
            complainant_age=30,
            complainant_address="Purok 1",
        )

        with pytest.raises(ValidationError) as exc:
            blotters.submit(staff, payload)

        assert exc.value.field == "complainant_full_name"
        assert exc.value.details == {"field": "complainant_full_name"}
        assert blotters.list_cases() == []

    @pytest.mark.parametrize("overrides, field", [
        ({"respondent_age": None}, "respondent_age"),
        ({"respondent_age": 0}, "respondent_age"),
        ({"respondent_age": 121}, "respondent_age"),
        ({"respondent_address": ""}, "respondent_address"),
        ({"respondent_resident_ref": "55"}, "respondent_resident_ref"),
        ({"complainant_resident_ref": None}, "complainant_resident_ref"),
        ({"complainant_full_name": "Also Named"}, "complainant_full_name"),
        ({"complainant_contact": "0" * 21}, "complainant_contact"),
        ({"incident_date": "2026-03-16"}, "incident_date"),
        ({"incident_date": "yesterday"}, "incident_date"),
        ({"incident_time": "9pm"}, "incident_time"),
        ({"incident_time": "24:00"}, "incident_time"),
        ({"incident_location": ""}, "incident_location"),
        ({"incident_location": "x" * 256}, "incident_location"),
        ({"description": "  "}, "description"),
    ])
    def test_payload_rules(self, blotters, staff, make_blotter_payload, overrides, field):
        with pytest.raises(ValidationError) as exc:
            blotters.submit(staff, make_blotter_payload(**overrides))
        assert exc.value.field == field

    def test_viewer_cannot_submit(self, blotters, viewer, make_blotter_payload):
        with pytest.raises(PermissionDenied):
            blotters.submit(viewer, make_blotter_payload())


class TestBlotterLifecycle:
    @pytest.fixture
    def blotter(self, blotters, staff, make_blotter_payload):
        return blotters.submit(staff, make_blotter_payload())

    def test_approval_opens_the_case(self, blotters, blotter, captain, notifier):
        blotters.approve(blotter.id, captain)

        assert blotter.approval_state == ApprovalState.APPROVED
        assert blotter.progress == BlotterProgress.OPEN
        assert notifier.transitions[-1] == ("blotter", blotter.id, "approved")

    def test_scenario_c_forward_skip_is_allowed(self, blotters, blotter, captain, clock, notifier):
        """Open → Resolved directly, skipping Ongoing."""
        blotters.approve(blotter.id, captain)

        blotters.advance_progress(blotter.id, captain, "Resolved", resolution="Parties settled amicably")

        assert blotter.progress == BlotterProgress.RESOLVED
        assert blotter.resolved_at == clock.now
        assert blotter.resolution == "Parties settled amicably"
        assert blotter.approval_state == ApprovalState.APPROVED
        assert notifier.transitions[-1] == ("blotter", blotter.id, "progress:Resolved")

    def test_step_by_step(self, blotters, blotter, captain, purok_leader):
        blotters.approve(blotter.id, captain)

        blotters.advance_progress(blotter.id, purok_leader, BlotterProgress.ONGOING)
        assert blotter.progress == BlotterProgress.ONGOING
        assert blotter.resolved_at is None

        blotters.advance_progress(blotter.id, purok_leader, BlotterProgress.RESOLVED)
        assert blotter.progress == BlotterProgress.RESOLVED

    @pytest.mark.parametrize("target", ["Open", "Ongoing"])
    def test_backward_or_same_is_illegal(self, blotters, blotter, captain, target):
        blotters.approve(blotter.id, captain)
        blotters.advance_progress(blotter.id, captain, "Ongoing")

        with pytest.raises(IllegalTransition):
            blotters.advance_progress(blotter.id, captain, target)
        assert blotters.get(blotter.id).progress == BlotterProgress.ONGOING

    @pytest.mark.parametrize("target", ["Open", "Ongoing", "Resolved", "Monitoring", "bogus"])
    def test_progress_on_pending_is_illegal(self, blotters, blotter, captain, target):
        """INVARIANT: progress never moves unless approved, whatever is requested."""
        with pytest.raises(IllegalTransition):
            blotters.advance_progress(blotter.id, captain, target)
        assert blotters.get(blotter.id).progress is None

    @pytest.mark.parametrize("target", ["Open", "Ongoing", "Resolved"])
    def test_rejection_freezes_progress(self, blotters, blotter, captain, target):
        """INVARIANT: rejected cases have no progress, ever."""
        blotters.reject(blotter.id, captain, "Not within barangay jurisdiction")

        with pytest.raises(IllegalTransition):
            blotters.advance_progress(blotter.id, captain, target)

        rejected = blotters.get(blotter.id)
        assert rejected.approval_state == ApprovalState.REJECTED
        assert rejected.progress is None
        assert rejected.rejection_remarks == "Not within barangay jurisdiction"

    def test_reject_requires_remarks(self, blotters, blotter, captain):
        with pytest.raises(ValidationError):
            blotters.reject(blotter.id, captain, "")
        assert blotters.get(blotter.id).approval_state == ApprovalState.PENDING

    def test_staff_cannot_advance(self, blotters, blotter, captain, staff):
        blotters.approve(blotter.id, captain)

        with pytest.raises(PermissionDenied):
            blotters.advance_progress(blotter.id, staff, "Ongoing")

    def test_purok_leader_cannot_approve(self, blotters, blotter, purok_leader):
        with pytest.raises(PermissionDenied):
            blotters.approve(blotter.id, purok_leader)

    def test_missing_blotter(self, blotters, captain):
        with pytest.raises(RecordNotFound):
            blotters.approve(12345, captain)


class TestBlotterQueries:
    def test_list_and_statistics(self, blotters, staff, captain, clock, make_blotter_payload):
        ids = []
        for _ in range(5):
            ids.append(blotters.submit(staff, make_blotter_payload()).id)
            clock.advance(minutes=5)
        blotters.approve(ids[0], captain)
        blotters.approve(ids[1], captain)
        blotters.advance_progress(ids[1], captain, "Ongoing")
        blotters.approve(ids[2], captain)
        blotters.advance_progress(ids[2], captain, "Resolved")
        blotters.reject(ids[3], captain, "Duplicate entry")

        assert blotters.statistics() == {
            "total": 5,
            "pending": 1,
            "rejected": 1,
            "open": 1,
            "ongoing": 1,
            "resolved": 1,
        }
        assert [b.id for b in blotters.list_cases()] == list(reversed(ids))
        assert [b.id for b in blotters.list_cases(approval_state=ApprovalState.PENDING)] == [ids[4]]
        assert [b.id for b in blotters.list_cases(progress=BlotterProgress.ONGOING)] == [ids[1]]
        assert [b.id for b in blotters.list_pending()] == [ids[4]]

    def test_case_numbers_past_four_digits(self, db_session, blotters, staff, make_blotter_payload):
        first = blotters.submit(staff, make_blotter_payload())
        second = blotters.submit(staff, make_blotter_payload())
        db_session.query(BlotterCase).filter(BlotterCase.id == first.id).update(
            {"case_number": "BLOTTER-2026-9999"}
        )
        db_session.query(BlotterCase).filter(BlotterCase.id == second.id).update(
            {"case_number": "BLOTTER-2026-10000"}
        )
        db_session.commit()

        third = blotters.submit(staff, make_blotter_payload())
        fourth = blotters.submit(staff, make_blotter_payload())

        assert third.case_number == "BLOTTER-2026-10001"
        assert fourth.case_number == "BLOTTER-2026-10002"


class TestResidentFlags:
    @pytest.mark.parametrize("flag", [False, "false", "0", 0, "no", None])
    def test_false_values_mean_non_resident(self, blotters, staff, make_blotter_payload, flag):
        blotter = blotters.submit(staff, make_blotter_payload(respondent_is_resident=flag))

        assert blotter.respondent_is_resident is False
        assert blotter.respondent_name == "Pedro Reyes"

    @pytest.mark.parametrize("flag", [True, "true", "1", 1, "Yes"])
    def test_true_values_mean_resident(self, blotters, staff, make_blotter_payload, flag):
        blotter = blotters.submit(staff, make_blotter_payload(complainant_is_resident=flag))

        assert blotter.complainant_is_resident is True

    def test_unreadable_flag(self, blotters, staff, make_blotter_payload):
        with pytest.raises(ValidationError) as exc:
            blotters.submit(staff, make_blotter_payload(complainant_is_resident="maybe"))

        assert exc.value.field == "complainant_is_resident"


class TestUpdateDetails:
    @pytest.fixture
    def blotter(self, blotters, staff, make_blotter_payload):
        return blotters.submit(staff, make_blotter_payload())

    def test_edit_pending_blotter(self, db_session, blotters, blotter, staff, make_blotter_payload):
        payload = make_blotter_payload(
            incident_location="Covered court",
            respondent_is_resident=True,
            respondent_resident_ref="205",
            respondent_full_name=None,
            respondent_age=None,
            respondent_address=None,
        )

        blotters.update_details(blotter.id, staff, payload)

        db_session.expire_all()
        updated = blotters.get(blotter.id)
        assert updated.case_number == "BLOTTER-2026-0001"
        assert updated.incident_location == "Covered court"
        assert updated.respondent_is_resident is True
        assert updated.respondent_resident_ref == "205"
        assert updated.respondent_full_name is None
        assert updated.respondent_age is None
        assert updated.respondent_address is None
        assert updated.approval_state == ApprovalState.PENDING

    def test_switching_to_non_resident_clears_reference(self, blotters, blotter, staff, make_blotter_payload):
        payload = make_blotter_payload(
            complainant_is_resident=False,
            complainant_resident_ref=None,
            complainant_full_name="Ana Cruz",
            complainant_age=35,
            complainant_address="Purok 2",
        )

        updated = blotters.update_details(blotter.id, staff, payload)

        assert updated.complainant_resident_ref is None
        assert updated.complainant_name == "Ana Cruz"

    def test_edit_is_validated_like_submit(self, blotters, blotter, staff, make_blotter_payload):
        with pytest.raises(ValidationError) as exc:
            blotters.update_details(blotter.id, staff, make_blotter_payload(respondent_full_name=""))

        assert exc.value.field == "respondent_full_name"
        assert blotters.get(blotter.id).respondent_full_name == "Pedro Reyes"

    def test_decided_blotter_is_frozen(self, blotters, blotter, staff, captain, make_blotter_payload):
        blotters.approve(blotter.id, captain)

        with pytest.raises(IllegalTransition):
            blotters.update_details(blotter.id, staff, make_blotter_payload(incident_location="Elsewhere"))
        assert blotters.get(blotter.id).incident_location == "Basketball court"

    def test_viewer_cannot_edit(self, blotters, blotter, viewer, make_blotter_payload):
        with pytest.raises(PermissionDenied):
            blotters.update_details(blotter.id, viewer, make_blotter_payload())

    def test_edit_pending_incident(self, incidents, staff, captain, make_incident_payload):
        incident = incidents.submit(staff, make_incident_payload())

        updated = incidents.update_details(
            incident.id, staff, make_incident_payload(persons_involved=["Juan Dela Cruz", "Rosa Lim"])
        )
        assert updated.persons_involved == ["Juan Dela Cruz", "Rosa Lim"]

        incidents.reject(incident.id, captain, "Duplicate report")
        with pytest.raises(IllegalTransition):
            incidents.update_details(incident.id, staff, make_incident_payload())


class TestIncidents:
    @pytest.fixture
    def incident(self, incidents, staff, make_incident_payload):
        return incidents.submit(staff, make_incident_payload())

    def test_submit(self, incident):
        assert incident.approval_state == ApprovalState.PENDING
        assert incident.progress is None
        assert incident.persons_involved == ["Juan Dela Cruz"]
        assert incident.subject_reference == "officer-7"

    @pytest.mark.parametrize("overrides, field", [
        ({"incident_title": ""}, "incident_title"),
        ({"incident_title": "t" * 256}, "incident_title"),
        ({"location": None}, "location"),
        ({"incident_date": None}, "incident_date"),
        ({"incident_time": "7:5"}, "incident_time"),
        ({"persons_involved": 7}, "persons_involved"),
    ])
    def test_payload_rules(self, incidents, staff, make_incident_payload, overrides, field):
        with pytest.raises(ValidationError) as exc:
            incidents.submit(staff, make_incident_payload(**overrides))
        assert exc.value.field == field

    def test_approval_records_the_incident(self, incidents, incident, captain):
        incidents.approve(incident.id, captain)

        assert incident.progress == IncidentProgress.RECORDED

    def test_monitoring_then_resolved(self, incidents, incident, captain, clock):
        incidents.approve(incident.id, captain)
        incidents.advance_progress(incident.id, captain, "Monitoring")
        clock.advance(days=2)
        incidents.advance_progress(incident.id, captain, "Resolved")

        assert incident.progress == IncidentProgress.RESOLVED
        assert incident.resolved_at == clock.now

    def test_blotter_values_are_not_incident_values(self, incidents, incident, captain):
        incidents.approve(incident.id, captain)

        with pytest.raises(ValidationError):
            incidents.advance_progress(incident.id, captain, "Ongoing")

    def test_progress_on_pending_is_illegal(self, incidents, incident, captain):
        with pytest.raises(IllegalTransition):
            incidents.advance_progress(incident.id, captain, "Monitoring")

    def test_statistics(self, incidents, incident, captain, staff, make_incident_payload):
        other = incidents.submit(staff, make_incident_payload())
        incidents.approve(incident.id, captain)
        incidents.reject(other.id, captain, "Not an incident")

        assert incidents.statistics() == {
            "total": 2,
            "pending": 0,
            "rejected": 1,
            "recorded": 1,
            "monitoring": 0,
            "resolved": 0,
        }
