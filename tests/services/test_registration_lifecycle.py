"""
Tests for the registration state machine: register, approve, reject, cancel, attendance.
"""

import asyncio
import pytest
from datetime import timedelta

from registrations_service.core.exceptions import (
    NotFound, RegistrationClosed, DuplicateRegistration, MissingRequiredAnswer,
    ParticipationModeNotAllowed, InvalidPromoCode, CapacityExceeded,
    InvalidTransition, NotApproved, Unauthorized
)
from registrations_service.models.base import utcnow
from registrations_service.models.event import ParticipationMode
from registrations_service.models.registration import RegistrationStatus, SLOT_HOLDING_STATUSES
from registrations_service.schemas.common import Actor
from registrations_service.services.registration_service import registration_service


class TestRegister:
    """Register validation and capacity placement."""

    @pytest.mark.asyncio
    async def test_register_within_capacity_is_pending(self, create_event, register, attendee):
        event_id = create_event(capacity=2)

        registration = await register(event_id, attendee("a"))

        assert registration.status == RegistrationStatus.PENDING
        assert registration.participant_id == "user-a"
        assert registration.attended is False
        assert registration.payment_details is None

    @pytest.mark.asyncio
    async def test_register_when_full_is_waitlisted(self, create_event, register, attendee):
        event_id = create_event(capacity=1)

        first = await register(event_id, attendee("a"))
        second = await register(event_id, attendee("b"))

        assert first.status == RegistrationStatus.PENDING
        assert second.status == RegistrationStatus.WAITLISTED

    @pytest.mark.asyncio
    async def test_waitlisted_entrants_count_towards_placement(self, create_event, register, attendee,
                                                               insert_registration):
        event_id = create_event(capacity=2)
        insert_registration(event_id, "x", status=RegistrationStatus.REJECTED)
        insert_registration(event_id, "y", status=RegistrationStatus.PENDING)
        insert_registration(event_id, "z", status=RegistrationStatus.WAITLISTED)

        registration = await register(event_id, attendee("a"))

        # Rejected does not count, waitlisted does
        assert registration.status == RegistrationStatus.WAITLISTED

    @pytest.mark.asyncio
    async def test_unknown_event(self, register, attendee):
        with pytest.raises(NotFound):
            await register("missing-event", attendee("a"))

    @pytest.mark.asyncio
    async def test_closed_registration(self, create_event, register, attendee):
        event_id = create_event(is_registration_open=False)

        with pytest.raises(RegistrationClosed):
            await register(event_id, attendee("a"))

    @pytest.mark.asyncio
    async def test_started_event_is_closed(self, create_event, register, attendee):
        event_id = create_event(
            starts_at=utcnow() - timedelta(hours=1),
            ends_at=utcnow() + timedelta(hours=2),
        )

        with pytest.raises(RegistrationClosed):
            await register(event_id, attendee("a"))

    @pytest.mark.asyncio
    async def test_duplicate_email_is_case_insensitive(self, create_event, register, attendee, status_count):
        event_id = create_event(capacity=5)
        await register(event_id, attendee("a"))

        # No email claim in the token, so the submitted address is used
        other = Actor(user_id="user-other", name="Other")
        with pytest.raises(DuplicateRegistration):
            await register(event_id, other, participant_email="A@Example.COM")

        assert status_count(event_id, RegistrationStatus.PENDING) == 1

    @pytest.mark.asyncio
    async def test_same_participant_cannot_register_twice_under_another_email(
            self, create_event, register, attendee, status_count):
        event_id = create_event(capacity=2)
        await register(event_id, attendee("a"))

        with pytest.raises(DuplicateRegistration):
            await register(event_id, attendee("a"), participant_email="alias@example.com")

        assert status_count(event_id, RegistrationStatus.PENDING) == 1

    @pytest.mark.asyncio
    async def test_token_email_overrides_submitted_email(self, create_event, register, attendee):
        event_id = create_event(capacity=5)

        registration = await register(event_id, attendee("a"), participant_email="b@example.com")
        owner = await register(event_id, attendee("b"))

        assert registration.participant_email == "a@example.com"
        assert owner.status == RegistrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_rejected_registration_still_blocks_email(self, create_event, register, attendee,
                                                            organizer):
        event_id = create_event(capacity=5)
        registration = await register(event_id, attendee("a"))
        await registration_service.reject_registration(registration.id, organizer)

        with pytest.raises(DuplicateRegistration):
            await register(event_id, attendee("a"))

    @pytest.mark.asyncio
    async def test_missing_required_answer(self, create_event, register, attendee):
        event_id = create_event(custom_questions=[
            {"id": "q1", "question": "T-shirt size?", "type": "select", "required": True, "options": ["S", "M"]},
            {"id": "q2", "question": "Anything else?", "type": "text", "required": False, "options": []},
        ])

        with pytest.raises(MissingRequiredAnswer) as exc_info:
            await register(event_id, attendee("a"), answers={"q1": "   ", "q2": "no"})
        assert exc_info.value.details["missing_question_ids"] == ["q1"]

        registration = await register(event_id, attendee("a"), answers={"q1": "M"})
        assert registration.answers == {"q1": "M"}

    @pytest.mark.asyncio
    async def test_individual_not_allowed_on_team_only_event(self, create_event, register, attendee):
        event_id = create_event(participation_mode=ParticipationMode.TEAM, max_team_size=3)

        with pytest.raises(ParticipationModeNotAllowed):
            await register(event_id, attendee("a"))

    @pytest.mark.asyncio
    async def test_unknown_promo_code(self, paid_event, register, attendee):
        with pytest.raises(InvalidPromoCode):
            await register(paid_event, attendee("a"), promo_code="NOPE")

    @pytest.mark.asyncio
    async def test_promo_code_is_stored_in_canonical_form(self, paid_event, register, attendee):
        registration = await register(paid_event, attendee("a"), promo_code="half")

        assert registration.promo_code == "HALF"

    @pytest.mark.asyncio
    async def test_register_takes_event_lock_and_notifies(self, create_event, register, attendee,
                                                         fake_redis, sent_notifications):
        event_id = create_event()

        await register(event_id, attendee("a"))

        assert f"registration:event:{event_id}" in fake_redis["locks"].acquired_keys
        channels = [call.args[0] for call in fake_redis["publish"].call_args_list]
        assert "eventhorizon:registrations:registration_created" in channels
        task_names = [call.args[0] for call in sent_notifications.call_args_list]
        assert "email_workers.tasks.send_registration_status_update" in task_names


class TestCapacityUnderConcurrency:
    """Capacity is never exceeded by concurrent registrations."""

    @pytest.mark.asyncio
    async def test_concurrent_registrations_respect_capacity(self, create_event, register, attendee,
                                                             status_count):
        event_id = create_event(capacity=3)

        results = await asyncio.gather(*[
            register(event_id, attendee(f"p{i}")) for i in range(10)
        ])

        pending = [r for r in results if r.status == RegistrationStatus.PENDING]
        waitlisted = [r for r in results if r.status == RegistrationStatus.WAITLISTED]
        assert len(pending) == 3
        assert len(waitlisted) == 7
        assert sum(status_count(event_id, s) for s in SLOT_HOLDING_STATUSES) == 3

    @pytest.mark.asyncio
    async def test_capacity_holds_across_mixed_operations(self, create_event, register, attendee,
                                                          organizer, status_count):
        event_id = create_event(capacity=2)
        regs = [await register(event_id, attendee(f"p{i}")) for i in range(5)]

        await registration_service.approve_registration(regs[0].id, organizer)
        await registration_service.reject_registration(regs[1].id, organizer)
        await registration_service.cancel_registration(regs[0].id, attendee("p0"))
        await registration_service.approve_registration(regs[2].id, organizer)

        assert sum(status_count(event_id, s) for s in SLOT_HOLDING_STATUSES) <= 2


class TestScenarioA:
    """Capacity 2, free: A and B pending, C waitlisted, rejecting A promotes C."""

    @pytest.mark.asyncio
    async def test_reject_promotes_waitlisted(self, create_event, register, attendee, organizer,
                                              load_registration, status_count, sent_notifications):
        event_id = create_event(capacity=2)

        a = await register(event_id, attendee("a"))
        b = await register(event_id, attendee("b"))
        c = await register(event_id, attendee("c"))
        assert (a.status, b.status, c.status) == (
            RegistrationStatus.PENDING, RegistrationStatus.PENDING, RegistrationStatus.WAITLISTED
        )

        rejected = await registration_service.reject_registration(a.id, organizer)

        assert rejected.status == RegistrationStatus.REJECTED
        assert load_registration(c.id).status == RegistrationStatus.PENDING
        assert status_count(event_id, RegistrationStatus.WAITLISTED) == 0
        task_names = [call.args[0] for call in sent_notifications.call_args_list]
        assert "email_workers.tasks.send_waitlist_promoted" in task_names


class TestApprove:

    @pytest.mark.asyncio
    async def test_free_event_approves_directly(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        approved = await registration_service.approve_registration(registration.id, organizer)

        assert approved.status == RegistrationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_collaborator_can_approve(self, create_event, register, attendee, collaborator):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        approved = await registration_service.approve_registration(registration.id, collaborator)

        assert approved.status == RegistrationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_attendee_cannot_approve(self, create_event, register, attendee):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        with pytest.raises(Unauthorized):
            await registration_service.approve_registration(registration.id, attendee("a"))

    @pytest.mark.asyncio
    async def test_approve_rejected_is_invalid(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))
        await registration_service.reject_registration(registration.id, organizer)

        with pytest.raises(InvalidTransition):
            await registration_service.approve_registration(registration.id, organizer)

    @pytest.mark.asyncio
    async def test_approve_waitlisted_without_free_slot(self, create_event, register, attendee, organizer):
        event_id = create_event(capacity=1)
        await register(event_id, attendee("a"))
        waitlisted = await register(event_id, attendee("b"))

        with pytest.raises(CapacityExceeded):
            await registration_service.approve_registration(waitlisted.id, organizer)

    @pytest.mark.asyncio
    async def test_approve_waitlisted_with_free_slot(self, create_event, insert_registration, organizer):
        event_id = create_event(capacity=1)
        registration_id = insert_registration(event_id, "a", status=RegistrationStatus.WAITLISTED)

        approved = await registration_service.approve_registration(registration_id, organizer)

        assert approved.status == RegistrationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_approve_is_idempotent_by_recomputation(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        await registration_service.approve_registration(registration.id, organizer)
        again = await registration_service.approve_registration(registration.id, organizer)

        assert again.status == RegistrationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unknown_registration(self, organizer):
        with pytest.raises(NotFound):
            await registration_service.approve_registration("missing", organizer)


class TestReject:

    @pytest.mark.asyncio
    async def test_reject_waitlisted_does_not_promote_others(self, create_event, register, attendee,
                                                             organizer, load_registration):
        event_id = create_event(capacity=1)
        await register(event_id, attendee("a"))
        b = await register(event_id, attendee("b"))
        c = await register(event_id, attendee("c"))

        await registration_service.reject_registration(b.id, organizer)

        assert load_registration(c.id).status == RegistrationStatus.WAITLISTED

    @pytest.mark.asyncio
    async def test_reject_twice_is_invalid(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))
        await registration_service.reject_registration(registration.id, organizer)

        with pytest.raises(InvalidTransition):
            await registration_service.reject_registration(registration.id, organizer)


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_deletes_and_promotes(self, create_event, register, attendee,
                                               load_registration):
        event_id = create_event(capacity=1)
        a = await register(event_id, attendee("a"))
        b = await register(event_id, attendee("b"))

        cancelled = await registration_service.cancel_registration(a.id, attendee("a"))

        assert cancelled["id"] == a.id
        assert load_registration(a.id) is None
        assert load_registration(b.id).status == RegistrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_allows_reregistration(self, create_event, register, attendee):
        event_id = create_event()
        a = await register(event_id, attendee("a"))
        await registration_service.cancel_registration(a.id, attendee("a"))

        again = await register(event_id, attendee("a"))

        assert again.status == RegistrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_only_owner_can_cancel(self, create_event, register, attendee):
        event_id = create_event()
        a = await register(event_id, attendee("a"))

        with pytest.raises(Unauthorized):
            await registration_service.cancel_registration(a.id, attendee("b"))

    @pytest.mark.asyncio
    async def test_cancel_keeps_audit_trail(self, create_event, register, attendee, organizer):
        event_id = create_event()
        a = await register(event_id, attendee("a"))
        await registration_service.cancel_registration(a.id, attendee("a"), reason="Cannot attend")

        history = await registration_service.get_registration_history(a.id, organizer)

        actions = [entry.action for entry in history]
        assert "REGISTER" in actions
        assert "CANCEL" in actions


class TestMarkAttendance:

    @pytest.mark.asyncio
    async def test_mark_attendance_once(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))
        await registration_service.approve_registration(registration.id, organizer)

        checked_in = await registration_service.mark_attendance(registration.id, organizer)

        assert checked_in.attended is True
        assert checked_in.attendance_time is not None

        with pytest.raises(NotApproved):
            await registration_service.mark_attendance(registration.id, organizer)

    @pytest.mark.asyncio
    async def test_pending_cannot_be_checked_in(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        with pytest.raises(NotApproved):
            await registration_service.mark_attendance(registration.id, organizer)


class TestBulkUpdateStatus:

    @pytest.mark.asyncio
    async def test_bulk_reports_per_item(self, create_event, register, attendee, organizer):
        event_id = create_event(capacity=5)
        a = await register(event_id, attendee("a"))
        b = await register(event_id, attendee("b"))

        results = await registration_service.bulk_update_status([a.id, "missing", b.id], "approve", organizer)

        assert [r["success"] for r in results] == [True, False, True]
        assert results[0]["status"] == RegistrationStatus.APPROVED
        assert results[1]["error_code"] == "NOT_FOUND"


class TestQueries:

    @pytest.mark.asyncio
    async def test_list_event_registrations_requires_manager(self, create_event, register, attendee, organizer):
        event_id = create_event(capacity=5)
        await register(event_id, attendee("a"))
        await register(event_id, attendee("b"))

        registrations = await registration_service.list_event_registrations(event_id, organizer)
        assert len(registrations) == 2

        with pytest.raises(Unauthorized):
            await registration_service.list_event_registrations(event_id, attendee("a"))

    @pytest.mark.asyncio
    async def test_list_user_registrations(self, create_event, register, attendee):
        first = create_event()
        second = create_event()
        await register(first, attendee("a"))
        await register(second, attendee("a"))
        await register(second, attendee("b"))

        registrations = await registration_service.list_user_registrations(attendee("a"))

        assert {r.event_id for r in registrations} == {first, second}

    @pytest.mark.asyncio
    async def test_get_registration_visibility(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        assert (await registration_service.get_registration(registration.id, attendee("a"))).id == registration.id
        assert (await registration_service.get_registration(registration.id, organizer)).id == registration.id
        with pytest.raises(Unauthorized):
            await registration_service.get_registration(registration.id, attendee("b"))
