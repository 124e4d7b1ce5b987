"""
Tests for capacity summaries and their Redis cache.
"""

import pytest
from unittest.mock import patch, AsyncMock

from registrations_service.core.exceptions import NotFound
from registrations_service.db.redis_client import redis_manager
from registrations_service.models.registration import RegistrationStatus
from registrations_service.services.availability_service import availability_service
from registrations_service.services.registration_service import registration_service


class TestAvailabilitySummary:

    @pytest.mark.asyncio
    async def test_counts_by_status(self, create_event, insert_registration):
        event_id = create_event(capacity=4)
        insert_registration(event_id, "a", status=RegistrationStatus.PENDING)
        insert_registration(event_id, "b", status=RegistrationStatus.APPROVED)
        insert_registration(event_id, "c", status=RegistrationStatus.AWAITING_PAYMENT)
        insert_registration(event_id, "d", status=RegistrationStatus.REJECTED)
        insert_registration(event_id, "e", status=RegistrationStatus.WAITLISTED)

        summary = await availability_service.get_event_availability(event_id)

        assert summary["slot_holders"] == 3
        assert summary["pending"] == 1
        assert summary["approved"] == 1
        assert summary["awaiting_payment"] == 1
        assert summary["rejected"] == 1
        assert summary["waitlisted"] == 1
        assert summary["available"] == 1
        assert summary["is_full"] is False

    @pytest.mark.asyncio
    async def test_full_event(self, create_event, insert_registration):
        event_id = create_event(capacity=1)
        insert_registration(event_id, "a", status=RegistrationStatus.APPROVED)

        summary = await availability_service.get_event_availability(event_id, use_cache=False)

        assert summary["available"] == 0
        assert summary["is_full"] is True

    @pytest.mark.asyncio
    async def test_unknown_event(self):
        with pytest.raises(NotFound):
            await availability_service.get_event_availability("missing")


class TestAvailabilityCache:

    @pytest.mark.asyncio
    async def test_cached_summary_is_returned(self, create_event):
        event_id = create_event()
        cached = {"event_id": event_id, "available": 42}

        with patch.object(redis_manager, "get_json", AsyncMock(return_value=cached)):
            summary = await availability_service.get_event_availability(event_id)

        assert summary == cached

    @pytest.mark.asyncio
    async def test_summary_is_cached_with_ttl(self, create_event):
        event_id = create_event()

        await availability_service.get_event_availability(event_id)

        redis_manager.set_json.assert_awaited_once()
        call = redis_manager.set_json.call_args
        assert call.args[0] == f"registration:availability:{event_id}"
        assert call.kwargs["ttl"] == 30

    @pytest.mark.asyncio
    async def test_writes_invalidate_cache(self, create_event, register, attendee):
        event_id = create_event()

        await register(event_id, attendee("a"))

        redis_manager.delete.assert_any_await(f"registration:availability:{event_id}")

    @pytest.mark.asyncio
    async def test_invalidate_failure_is_logged(self, create_event, register, attendee, organizer):
        event_id = create_event()
        registration = await register(event_id, attendee("a"))

        with patch.object(redis_manager, "delete", AsyncMock(side_effect=ConnectionError("redis down"))):
            approved = await registration_service.approve_registration(registration.id, organizer)

        assert approved.status == RegistrationStatus.APPROVED
