from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from gymaccess.models.checkin import CheckinSource, AccessDecision


class CheckinTokenResponse(BaseModel):
    """Token QR recién emitido. El valor en claro solo se devuelve aquí."""
    token: str
    expires_at: datetime
    member_id: int


class ValidateTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, description="Valor leído del código QR")
    gym_id: int = Field(..., description="Sede donde se escanea el código")
    override: bool = Field(False, description="Forzar la entrada (solo MANAGER/ADMIN)")


class CheckinResult(BaseModel):
    """Resultado de un check-in aceptado"""
    checkin_id: int
    member_id: int
    gym_id: int
    access_decision: AccessDecision
    decision_reason: Optional[str] = None
    access_type: Optional[str] = None


class ManualCheckinRequest(BaseModel):
    member_id: int
    gym_id: int


class Checkin(BaseModel):
    id: int
    member_id: int
    gym_id: int
    checked_in_at: datetime
    source: CheckinSource
    staff_user_id: Optional[int] = None
    access_decision: AccessDecision
    decision_reason: Optional[str] = None

    model_config = {"from_attributes": True}
