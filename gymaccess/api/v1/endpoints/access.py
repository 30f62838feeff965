from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gymaccess.core.auth import get_current_user
from gymaccess.core.exceptions import PermissionDeniedError
from gymaccess.db.session import get_db
from gymaccess.models.user import User
from gymaccess.repositories.user import member_repository
from gymaccess.schemas.access import AccessibleLocations, SetHomeGymRequest, SetHomeGymResponse
from gymaccess.services.access_resolver import access_grant_resolver

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/locations", response_model=AccessibleLocations)
async def read_accessible_locations(
    stored_gym_id: Optional[int] = Query(None, description="Sede activa guardada en el cliente"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AccessibleLocations:
    """
    Sedes a las que puede entrar el usuario autenticado y cuál queda activa.

    Si la sede guardada ya no es accesible se devuelve `access_changed=True`
    para que el cliente avise al usuario. Una lista vacía no es un error:
    `no_access=True` indica que debe contactar con soporte.
    """
    return access_grant_resolver.resolve_accessible_locations(db, current_user, stored_gym_id)


@router.post("/home-gym", response_model=SetHomeGymResponse)
async def set_home_gym(
    request: SetHomeGymRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SetHomeGymResponse:
    """Asigna la sede principal (HOME) de un miembro."""
    member_id = request.member_id
    if member_id is None:
        member = member_repository.get_by_user_id(db, current_user.id)
        if member is None:
            raise PermissionDeniedError("No tienes un perfil de miembro")
        member_id = member.id

    member = access_grant_resolver.set_home_gym(
        db, actor=current_user, member_id=member_id, gym_id=request.gym_id
    )
    return SetHomeGymResponse(member_id=member.id, home_gym_id=member.home_gym_id)
