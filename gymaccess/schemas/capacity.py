from typing import Literal, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator


class CapacityStatusName(str, Enum):
    OK = "OK"
    NEAR_LIMIT = "NEAR_LIMIT"
    AT_CAPACITY = "AT_CAPACITY"
    BLOCK_NEW = "BLOCK_NEW"


class CapacityStatusRequest(BaseModel):
    gym_id: int


class CapacityStatus(BaseModel):
    """Estado de capacidad completo, visible para staff y roles de organización"""
    gym_id: int
    active_members_count: int
    max_active_members: Optional[int] = None
    soft_limit_threshold: float
    hard_limit_enforced: bool = False
    capacity_percent: Optional[float] = None
    status: CapacityStatusName


class CapacityStatusPublic(BaseModel):
    """Vista reducida para miembros: solo el estado"""
    status: CapacityStatusName


class CapacityManageRequest(BaseModel):
    """Acción de administración de capacidad"""
    action: Literal["UPSERT_GYM_CAPACITY_LIMIT"]
    gym_id: int
    max_active_members: Optional[int] = Field(None, ge=0, description="None = ilimitado")
    soft_limit_threshold: Optional[float] = Field(None, description="Fracción en (0, 1]")
    hard_limit_enforced: bool = False

    @field_validator('soft_limit_threshold')
    def validate_soft_limit(cls, v):
        if v is not None and not 0 < v <= 1:
            raise ValueError('soft_limit_threshold must be in (0, 1]')
        return v


class CapacityLimit(BaseModel):
    id: int
    gym_id: int
    max_active_members: Optional[int] = None
    soft_limit_threshold: Optional[float] = None
    hard_limit_enforced: bool
    updated_by_user_id: Optional[int] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PlanCapacityStatusName(str, Enum):
    NO_LIMIT = "NO_LIMIT"
    OK = "OK"
    AT_CAPACITY = "AT_CAPACITY"


class PlanCapacityStatus(BaseModel):
    """Ocupación del cupo de un plan en una sede"""
    plan_id: int
    gym_id: int
    active_members_count: int
    max_active_members: Optional[int] = None
    status: PlanCapacityStatusName


class PlanCapacityManageRequest(BaseModel):
    """Alta, cambio o retirada del cupo de un plan en una sede"""
    action: Literal["UPSERT_PLAN_CAPACITY_LIMIT", "REMOVE_PLAN_CAPACITY_LIMIT"]
    plan_id: int
    gym_id: int
    max_active_members: Optional[int] = Field(None, ge=0, description="None = sin cupo")


class PlanCapacityManageResponse(BaseModel):
    status: str = "ok"
    action: str
    plan_id: int
    gym_id: int
    max_active_members: Optional[int] = None
