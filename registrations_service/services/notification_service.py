"""
Notification Service for Registrations Service.
Dispatches user-facing notifications (email and in-app) to Celery workers.
"""
import ssl
import logging
from typing import Optional, Dict, Any

from celery import Celery

from registrations_service.core.config import config
from registrations_service.models.registration import RegistrationStatus

logger = logging.getLogger(__name__)


STATUS_MESSAGES = {
    RegistrationStatus.APPROVED: (
        "Registration Approved!",
        "You're in! Your registration for \"{title}\" was approved.",
        "success",
    ),
    RegistrationStatus.AWAITING_PAYMENT: (
        "Action Required: Payment",
        "Your registration for \"{title}\" is tentatively approved. "
        "Please proceed to payment to confirm your spot.",
        "warning",
    ),
    RegistrationStatus.REJECTED: (
        "Registration Update",
        "Unfortunately, we are unable to approve your registration for \"{title}\" at this time.",
        "info",
    ),
    RegistrationStatus.WAITLISTED: (
        "You're on the Waitlist",
        "\"{title}\" is full. You have been added to the waitlist.",
        "info",
    ),
    RegistrationStatus.PENDING: (
        "Registration Received",
        "Your registration for \"{title}\" was received and is waiting for approval.",
        "info",
    ),
}


class NotificationService:
    """
    Sends notification tasks to the email worker queue. Every public method
    returns a bool and never raises: delivery is not awaited by the engine.
    """

    def __init__(self):
        self.enabled = True
        self._celery_app = None
        self._initialized = False

    async def _initialize_celery(self):
        """Initialize Celery app for task dispatch."""
        if self._initialized:
            return

        try:
            registration_config = await config.get_registration_config()
            self.enabled = registration_config["enable_notifications"]

            self._celery_app = Celery('registrations_service')
            redis_url = await config.get_redis_url()

            celery_conf = dict(
                broker_url=redis_url,
                task_serializer='json',
                accept_content=['json'],
                broker_connection_timeout=5,
                task_routes={
                    'email_workers.tasks.*': {'queue': 'email_notifications'},
                },
            )
            if redis_url.startswith("rediss://"):
                celery_conf["broker_use_ssl"] = {'ssl_cert_reqs': ssl.CERT_REQUIRED}
            self._celery_app.conf.update(**celery_conf)

            self._initialized = True
            logger.info("Celery app initialized for notification dispatch")

        except Exception as e:
            logger.error(f"Failed to initialize Celery app: {e}")
            self._celery_app = None
            self._initialized = False

    async def _send_task(self, task_name: str, user_id: str, data: Dict[str, Any]) -> bool:
        """
        Send a notification task to Celery workers.

        Args:
            task_name: Name of the Celery task
            user_id: Recipient user ID
            data: Task data

        Returns:
            True if task sent successfully, False otherwise
        """
        try:
            if not self._initialized:
                await self._initialize_celery()

            if not self.enabled:
                logger.info(f"Notifications disabled, skipping {task_name}")
                return True

            if not self._celery_app:
                logger.error("Celery app not initialized, cannot send notification task")
                return False

            task = self._celery_app.send_task(
                task_name,
                args=[user_id, data],
                queue='email_notifications',
                retry=False,
            )

            logger.info(f"Notification task {task_name} sent for user {user_id} with ID: {task.id}")
            return True

        except Exception as e:
            logger.error(f"Failed to send notification task {task_name}: {e}")
            return False

    async def send_status_update(
        self,
        registration_data: Dict[str, Any],
        event_data: Dict[str, Any],
    ) -> bool:
        """
        Notify a participant that their registration status changed.

        Args:
            registration_data: Registration.to_dict() output
            event_data: Event.to_dict() output

        Returns:
            True if the task was dispatched
        """
        status = RegistrationStatus(registration_data["status"])
        title, message, kind = STATUS_MESSAGES[status]
        task_data = {
            'registration_id': registration_data["id"],
            'email': registration_data["participant_email"],
            'participant_name': registration_data["participant_name"],
            'event_id': event_data["id"],
            'event_name': event_data["title"],
            'status': status.value,
            'title': title,
            'message': message.format(title=event_data["title"]),
            'type': kind,
            'link': 'my-tickets',
        }
        return await self._send_task(
            'email_workers.tasks.send_registration_status_update',
            registration_data["participant_id"],
            task_data
        )

    async def send_waitlist_promoted(
        self,
        registration_data: Dict[str, Any],
        event_data: Dict[str, Any],
    ) -> bool:
        """Tell a participant a slot opened and their registration is back under review."""
        task_data = {
            'registration_id': registration_data["id"],
            'email': registration_data["participant_email"],
            'event_id': event_data["id"],
            'event_name': event_data["title"],
            'title': 'A Spot Opened Up',
            'message': f"A spot opened up for \"{event_data['title']}\". "
                       f"Your registration is now pending organizer approval.",
        }
        return await self._send_task(
            'email_workers.tasks.send_waitlist_promoted',
            registration_data["participant_id"],
            task_data
        )

    async def send_team_created(
        self,
        leader_id: str,
        team_data: Dict[str, Any],
        event_data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Send the team leader their invite code."""
        task_data = {
            'team_id': team_data["id"],
            'team_name': team_data["name"],
            'invite_code': team_data["invite_code"],
            'event_name': event_data["title"] if event_data else 'Event',
        }
        return await self._send_task(
            'email_workers.tasks.send_team_created',
            leader_id,
            task_data
        )

    async def send_payment_confirmation(
        self,
        registration_data: Dict[str, Any],
        event_data: Dict[str, Any],
    ) -> bool:
        """Confirm a completed payment and the resulting approval."""
        payment = registration_data.get("payment_details") or {}
        task_data = {
            'registration_id': registration_data["id"],
            'email': registration_data["participant_email"],
            'event_name': event_data["title"],
            'amount': payment.get("amount"),
            'currency': payment.get("currency"),
            'transaction_id': payment.get("transaction_id"),
        }
        return await self._send_task(
            'email_workers.tasks.send_payment_confirmation',
            registration_data["participant_id"],
            task_data
        )

    def enable(self):
        """Enable the notification service."""
        self.enabled = True
        logger.info("Notification service enabled")

    def disable(self):
        """Disable the notification service."""
        self.enabled = False
        logger.info("Notification service disabled")


# Global notification service instance
notification_service = NotificationService()
