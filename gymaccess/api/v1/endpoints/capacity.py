from typing import Union
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymaccess.core.auth import get_current_user
from gymaccess.db.session import get_db
from gymaccess.models.user import User
from gymaccess.schemas.capacity import (
    CapacityLimit, CapacityManageRequest, CapacityStatus, CapacityStatusPublic, CapacityStatusRequest,
    PlanCapacityManageRequest, PlanCapacityManageResponse
)
from gymaccess.services.capacity import capacity_admission_controller

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/status", response_model=Union[CapacityStatus, CapacityStatusPublic])
async def read_capacity_status(
    request: CapacityStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Estado de capacidad de una sede.

    El staff de la sede y los roles de organización de la cadena reciben las
    cifras completas; el resto de usuarios solo el campo `status`.
    """
    return capacity_admission_controller.get_capacity_status_for_viewer(db, current_user, request.gym_id)


@router.post("/manage", response_model=CapacityLimit)
async def manage_capacity(
    request: CapacityManageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CapacityLimit:
    """
    [MANAGER/ADMIN o CORPORATE_ADMIN] Crea o actualiza el límite de capacidad
    de una sede. Cada cambio queda registrado en el historial de accesos.
    """
    limit = capacity_admission_controller.upsert_capacity_limit(db, current_user, request)
    return CapacityLimit.model_validate(limit)


@router.post("/plans/manage", response_model=PlanCapacityManageResponse)
async def manage_plan_capacity(
    request: PlanCapacityManageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PlanCapacityManageResponse:
    """
    [CORPORATE_ADMIN] Fija (UPSERT_PLAN_CAPACITY_LIMIT) o retira
    (REMOVE_PLAN_CAPACITY_LIMIT) el cupo de un plan en una sede.
    """
    return capacity_admission_controller.manage_plan_capacity(db, current_user, request)
