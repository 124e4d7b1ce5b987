"""
Payment Service for Registrations Service.
Prepares gateway orders and applies the trusted payment-completion callback.
"""

from decimal import Decimal
from typing import Optional, Dict, Any
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import InvalidTransition, Unauthorized
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import get_distributed_lock, event_lock_key
from registrations_service.models.base import utcnow
from registrations_service.models.registration import RegistrationStatus, PaymentStatus
from registrations_service.schemas.common import Actor
from registrations_service.schemas.registration import PaymentProof
from .audit_log import log_status_change
from .availability_service import availability_service
from .event_publisher import event_publisher, RegistrationEventKind
from .notification_service import notification_service
from .promo_service import effective_price, find_promo, normalize_code
from .registration_service import registration_service, ensure_owner

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Gateway amounts are integers in the currency's minor unit."""
    return int((amount * 100).to_integral_value())


class PaymentService:
    """
    Payment gate. Only AwaitingPayment registrations can be paid; a completed
    payment is recorded once and moves the registration to Approved.
    """

    def __init__(self):
        self.consistency_config = None
        self.registration_config = None

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.consistency_config:
            self.consistency_config = await config.get_consistency_config()
        if not self.registration_config:
            self.registration_config = await config.get_registration_config()

    def _lock(self, event_id: str):
        return get_distributed_lock(
            event_lock_key(event_id),
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        )

    async def create_payment_order(self, registration_id: str, actor: Actor) -> Dict[str, Any]:
        """
        Build the order payload for the payment gateway.
        When a promo covers the whole price the registration is approved directly.

        Args:
            registration_id: Registration to pay for
            actor: Registration owner

        Returns:
            Order payload dict

        Raises:
            NotFound, Unauthorized, InvalidTransition
        """
        await self._get_configs()
        event_id = registration_service.resolve_event_id(registration_id)

        async with self._lock(event_id):
            with db_manager.get_transaction_session() as session:
                registration = registration_service.load_registration(session, registration_id)
                ensure_owner(registration, actor)
                event = registration.event

                if registration.status != RegistrationStatus.AWAITING_PAYMENT:
                    raise InvalidTransition(
                        "Payment is only possible once the registration is approved",
                        details={"registration_id": registration_id, "status": registration.status.value}
                    )

                amount = effective_price(event, registration.promo_code, strict=False)
                currency = event.currency or self.registration_config["default_currency"]

                if amount > 0:
                    return {
                        "requires_payment": True,
                        "amount": float(amount),
                        "amount_minor": to_minor_units(amount),
                        "currency": currency,
                        "receipt": f"receipt_{registration.id}",
                        "notes": {
                            "registration_id": registration.id,
                            "event_id": event.id,
                            "participant_id": registration.participant_id,
                            "promo_code": registration.promo_code,
                        },
                    }

                registration.status = RegistrationStatus.APPROVED
                log_status_change(
                    session, registration, "PROMO_APPROVE", RegistrationStatus.AWAITING_PAYMENT,
                    changed_by=actor.user_id, reason="Promo code covered the entire cost"
                )
                session.commit()
                event_data = event.to_dict()

        logger.info(f"Registration {registration_id} approved without payment: promo covered the cost")

        await availability_service.invalidate(event_id)
        await registration_service.announce_status(
            registration, event_data, RegistrationStatus.AWAITING_PAYMENT
        )

        return {
            "requires_payment": False,
            "currency": currency,
            "message": "Promo code covered the entire cost",
            "registration": registration,
        }

    async def complete_payment(self, registration_id: str, proof: PaymentProof, actor: Optional[Actor] = None):
        """
        Record a completed payment and approve the registration.
        Repeating the call for an already paid registration changes nothing.

        Args:
            registration_id: Registration that was paid for
            proof: Gateway payment details
            actor: Caller, when invoked over HTTP; must be the payment gateway or an admin

        Returns:
            The registration

        Raises:
            NotFound, Unauthorized, InvalidTransition
        """
        await self._get_configs()

        if actor and not actor.is_trusted_service:
            raise Unauthorized("Only the payment gateway can complete payments")

        event_id = registration_service.resolve_event_id(registration_id)

        async with self._lock(event_id):
            with db_manager.get_transaction_session() as session:
                registration = registration_service.load_registration(session, registration_id)

                if registration.is_payment_completed:
                    logger.info(f"Payment for registration {registration_id} already completed")
                    return registration

                if registration.status != RegistrationStatus.AWAITING_PAYMENT:
                    raise InvalidTransition(
                        "Registration is not awaiting payment",
                        details={"registration_id": registration_id, "status": registration.status.value}
                    )

                event = registration.event
                promo_code = registration.promo_code
                if proof.promo_code and proof.promo_code.strip():
                    promo = find_promo(event, proof.promo_code)
                    if promo is None:
                        logger.warning(
                            f"Payment for registration {registration_id} names unknown promo code "
                            f"'{proof.promo_code}', recording it as given"
                        )
                        promo_code = normalize_code(proof.promo_code)
                    else:
                        promo_code = promo.code

                expected = effective_price(event, promo_code, strict=False)
                if Decimal(str(proof.amount)) != expected:
                    logger.warning(
                        f"Payment amount {proof.amount} for registration {registration_id} "
                        f"differs from expected {expected}"
                    )

                registration.payment_status = PaymentStatus.COMPLETED
                registration.payment_amount = proof.amount
                registration.payment_currency = proof.currency or event.currency
                registration.transaction_id = proof.transaction_id
                registration.order_id = proof.order_id
                registration.promo_code_applied = promo_code
                registration.promo_code = promo_code
                registration.paid_at = utcnow()

                old_status = registration.status
                registration.status = RegistrationStatus.APPROVED
                log_status_change(
                    session, registration, "PAYMENT", old_status,
                    changed_by=actor.user_id if actor else "payment-gateway",
                    reason=f"Transaction {proof.transaction_id}"
                )
                session.commit()
                event_data = event.to_dict()

        logger.info(f"Payment completed for registration {registration_id}, transaction {proof.transaction_id}")

        await availability_service.invalidate(event_id)

        registration_data = registration.to_dict()
        try:
            await event_publisher.emit(RegistrationEventKind.PAYMENT_COMPLETED, registration_data)
        except Exception as e:
            logger.error(f"Failed to publish payment completed event: {e}")

        try:
            await notification_service.send_payment_confirmation(registration_data, event_data)
        except Exception as e:
            logger.error(f"Failed to send payment confirmation: {e}")

        await registration_service.announce_status(registration, event_data, old_status)
        return registration


# Global payment service instance
payment_service = PaymentService()
