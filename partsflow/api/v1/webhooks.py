"""
Payment gateway callback endpoint.

The signature covers the raw request body, so the body is read before it
is parsed.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request
from pydantic import ValidationError as PydanticValidationError

from partsflow.api.deps import DatabaseSession, PaymentServiceDep
from partsflow.core.errors import ValidationError
from partsflow.core.logging import get_logger
from partsflow.schemas.common import field_errors_from_pydantic
from partsflow.schemas.notifications import PaymentCallbackRequest, PaymentCallbackResponse
from partsflow.services.payments.service import PaymentCallback

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/payments",
    response_model=PaymentCallbackResponse,
    summary="Payment gateway callback",
)
async def payment_callback(
    request: Request,
    service: PaymentServiceDep,
    db: DatabaseSession,
    x_signature: Annotated[Optional[str], Header(alias="X-Signature")] = None,
) -> PaymentCallbackResponse:
    body = await request.body()
    service.verify_signature(body, x_signature)

    try:
        payload = PaymentCallbackRequest.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed payment callback",
            errors=field_errors_from_pydantic(e.errors()),
        ) from e

    outcome = await service.handle_callback(
        PaymentCallback(
            payment_id=payload.payment_id,
            amount=payload.amount,
            currency=payload.currency,
            status=payload.status,
            provider_reference=payload.provider_reference,
        )
    )
    await db.commit()
    await service.dispatcher.send_pending()

    logger.info(
        "Payment callback processed",
        payment_id=str(outcome.payment_id),
        payment_status=outcome.payment_status.value,
        duplicate=outcome.duplicate,
    )
    return PaymentCallbackResponse(
        payment_id=outcome.payment_id,
        payment_status=outcome.payment_status,
        order_status=outcome.order_status,
        duplicate=outcome.duplicate,
    )
