"""
Interfaz mínima con la pasarela de pagos.

El motor de acceso solo necesita crear clientes y suscripciones, cancelarlas
(compensación cuando la admisión falla después de cobrar) y verificar la
firma de los webhooks. Todo lo demás del procesamiento de pagos queda fuera.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
import json
import logging

import stripe

from gymaccess.core.config import get_settings
from gymaccess.core.exceptions import BillingGatewayError, InvalidRequestError

logger = logging.getLogger(__name__)


@dataclass
class GatewaySubscription:
    id: str
    status: str
    client_secret: Optional[str] = None


class BillingGateway(ABC):

    @abstractmethod
    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        ...

    @abstractmethod
    def create_subscription(self, *, customer_id: str, price_id: str, metadata: Dict[str, str]) -> GatewaySubscription:
        ...

    @abstractmethod
    def cancel_subscription(self, subscription_id: str) -> None:
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        ...


class StripeBillingGateway(BillingGateway):
    """Implementación sobre el SDK oficial de Stripe."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        stripe.api_key = self.api_key

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        try:
            customer = stripe.Customer.create(
                email=email,
                metadata={"user_id": str(user_id)},
            )
        except stripe.StripeError as e:
            logger.error(f"Error creando cliente de Stripe para usuario {user_id}: {e}")
            raise BillingGatewayError()
        logger.info(f"Cliente de Stripe {customer.id} creado para usuario {user_id}")
        return customer.id

    def create_subscription(self, *, customer_id: str, price_id: str, metadata: Dict[str, str]) -> GatewaySubscription:
        try:
            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                payment_behavior="default_incomplete",
                expand=["latest_invoice.payment_intent"],
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"Error creando suscripción de Stripe para cliente {customer_id}: {e}")
            raise BillingGatewayError()

        client_secret = None
        invoice = subscription.latest_invoice
        payment_intent = getattr(invoice, "payment_intent", None) if invoice else None
        if payment_intent is not None and not isinstance(payment_intent, str):
            client_secret = payment_intent.client_secret

        return GatewaySubscription(id=subscription.id, status=subscription.status, client_secret=client_secret)

    def cancel_subscription(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.delete(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Error cancelando suscripción de Stripe {subscription_id}: {e}")
            raise BillingGatewayError()
        logger.info(f"Suscripción de Stripe {subscription_id} cancelada")

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verifica la firma del webhook y devuelve el evento como diccionario.

        Raises:
            InvalidRequestError: Si falta el secreto, el payload es inválido o la firma no coincide
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET no configurado - webhook rechazado por seguridad")
            raise InvalidRequestError("Webhook no configurado")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Payload inválido en webhook: {str(e)}")
            raise InvalidRequestError("Payload inválido")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Firma inválida en webhook: {str(e)}")
            raise InvalidRequestError("Firma inválida")

        return json.loads(payload)


def get_billing_gateway() -> BillingGateway:
    """Dependencia FastAPI; los tests la sustituyen con dependency_overrides."""
    return StripeBillingGateway()
