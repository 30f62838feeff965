from typing import Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field


class AccessStateName(str, Enum):
    """Estado de acceso físico derivado de la suscripción actual"""
    active = "active"
    grace = "grace"
    restricted = "restricted"


class AccessState(BaseModel):
    """Resultado de derivar el estado de acceso en un instante dado"""
    state: AccessStateName
    reason: Optional[str] = None
    grace_period_until: Optional[datetime] = None
    recovered: bool = False


class AccessStateResponse(AccessState):
    can_check_in: bool


class SubscriptionCreate(BaseModel):
    """Solicitud de alta de suscripción en una sede"""
    plan_id: int = Field(..., description="Plan de membresía a contratar")
    gym_id: int = Field(..., description="Sede que se convierte en HOME")


class SubscriptionCreated(BaseModel):
    status: str = "created"
    subscription_id: int
    stripe_subscription_id: Optional[str] = None
    client_secret: Optional[str] = None
    capacity_warning: bool = Field(
        False, description="La sede está cerca de su límite de capacidad"
    )


class WebhookResponse(BaseModel):
    status: str
    event_type: Optional[str] = None
    message: Optional[str] = None
