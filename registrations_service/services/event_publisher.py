"""
Event Publisher Service for Registrations Service.
Publishes registration domain events to Redis channels for realtime fan-out.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any

from registrations_service.db.redis_client import RedisManager, redis_manager

logger = logging.getLogger(__name__)


class RegistrationEventKind:
    """Domain event kinds emitted by the engine."""
    REGISTRATION_CREATED = "registration_created"
    STATUS_CHANGED = "status_changed"
    REGISTRATION_CANCELLED = "registration_cancelled"
    WAITLIST_PROMOTED = "waitlist_promoted"
    TEAM_CREATED = "team_created"
    TEAM_JOINED = "team_joined"
    PAYMENT_COMPLETED = "payment_completed"
    ATTENDANCE_MARKED = "attendance_marked"
    EVENT_UPDATED = "event_updated"
    EVENT_DELETED = "event_deleted"


class RegistrationEventPublisher:
    """
    Publishes domain events to Redis channels. Delivery is fire-and-forget:
    failures are logged and never reach the caller.
    """

    def __init__(self, redis_manager: RedisManager):
        self.redis_manager = redis_manager
        self.channel_prefix = "eventhorizon:registrations"

    async def emit(self, kind: str, payload: Dict[str, Any]) -> bool:
        """
        Publish a domain event.

        Args:
            kind: One of RegistrationEventKind
            payload: JSON-serializable event data

        Returns:
            True if the message was handed to Redis, False otherwise
        """
        try:
            channel = f"{self.channel_prefix}:{kind}"
            message = {
                "type": kind,
                "data": payload,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

            await self.redis_manager.publish(channel, json.dumps(message, default=str))
            logger.info(f"Published {kind} on {channel}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish {kind}: {e}")
            return False


# Global publisher instance
event_publisher = RegistrationEventPublisher(redis_manager)
