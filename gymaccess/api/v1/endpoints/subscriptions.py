import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from gymaccess.core.auth import get_current_user
from gymaccess.db.session import get_db
from gymaccess.middleware.rate_limit import limiter, RATE_LIMITS
from gymaccess.models.user import User
from gymaccess.schemas.subscription import (
    AccessStateName, AccessStateResponse, SubscriptionCreate, SubscriptionCreated
)
from gymaccess.services.billing_gateway import BillingGateway, get_billing_gateway
from gymaccess.services.subscriptions import subscription_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=SubscriptionCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["billing_create"])
async def create_subscription(
    request: Request,
    subscription_in: SubscriptionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> SubscriptionCreated:
    """
    Crea una suscripción en una sede.

    Si la sede está llena y aplica límite duro se responde 409 CAPACITY_BLOCKED
    sin cobrar. `capacity_warning=True` avisa de que la sede está cerca de su
    límite.

    Args:
        request: Request (necesario para el rate limiting)
        subscription_in: Plan y sede a contratar
        db: Sesión de base de datos
        current_user: Usuario autenticado
        gateway: Pasarela de pago

    Returns:
        SubscriptionCreated con el client_secret para confirmar el primer pago
    """
    return subscription_service.create_gym_subscription(
        db, user=current_user, request=subscription_in, gateway=gateway
    )


@router.get("/access-state", response_model=AccessStateResponse)
async def read_access_state(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AccessStateResponse:
    """
    Estado de acceso del miembro autenticado (active, grace o restricted).

    Tras regularizar un pago, `recovered=True` se devuelve una sola vez.
    """
    _, state = subscription_service.get_access_state(db, current_user)
    return AccessStateResponse(
        **state.model_dump(),
        can_check_in=state.state in (AccessStateName.active, AccessStateName.grace),
    )
