import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gymaccess.core.exceptions import InvalidRequestError
from gymaccess.db.session import get_db
from gymaccess.middleware.rate_limit import limiter, RATE_LIMITS
from gymaccess.schemas.subscription import WebhookResponse
from gymaccess.services.billing_gateway import BillingGateway, get_billing_gateway
from gymaccess.services.subscriptions import subscription_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe", response_model=WebhookResponse)
@limiter.limit(RATE_LIMITS["billing_webhook"])
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> WebhookResponse:
    """
    Webhook para eventos de facturación de Stripe.

    Solo se procesan eventos con firma válida. Los pagos fallidos abren el
    periodo de gracia; los pagos correctos marcan la suscripción como
    recuperada; las cancelaciones restringen el acceso.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise InvalidRequestError("Falta signature de Stripe")

    event = gateway.construct_event(payload, signature)
    result = subscription_service.handle_billing_event(db, event)
    logger.info(f"Webhook de Stripe procesado: {result.event_type} ({result.status})")
    return result
