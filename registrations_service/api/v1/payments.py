"""
Payment API endpoints for Registrations Service.
Order preparation for the participant and the gateway completion callback.
"""

from fastapi import APIRouter, Depends, Path
import logging

from registrations_service.api.dependencies import get_current_actor, require_payment_gateway
from registrations_service.schemas.common import Actor
from registrations_service.schemas.registration import (
    PaymentProof,
    PaymentOrderResponse,
    RegistrationResponse
)
from registrations_service.services.payment_service import payment_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/registrations/{registration_id}/payment-order", response_model=PaymentOrderResponse)
async def create_payment_order(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """
    Prepare a gateway order for a registration awaiting payment.
    A fully discounted registration is approved immediately instead.
    """
    order = await payment_service.create_payment_order(registration_id, actor)
    registration = order.pop("registration", None)

    return PaymentOrderResponse(
        **order,
        registration=RegistrationResponse.model_validate(registration) if registration else None
    )


@router.post("/payments/{registration_id}/complete", response_model=RegistrationResponse)
async def complete_payment(
    proof: PaymentProof,
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(require_payment_gateway)
):
    """Payment gateway callback: record the payment and approve the registration."""
    registration = await payment_service.complete_payment(registration_id, proof, actor)
    return RegistrationResponse.model_validate(registration)
