from typing import List, Optional
from pydantic import BaseModel, Field


class LocationSummary(BaseModel):
    """Sede accesible para la identidad actual"""
    id: int
    name: str
    chain_id: int
    address: Optional[str] = None
    timezone: str = "UTC"
    access_type: Optional[str] = Field(
        None, description="HOME, SECONDARY, ALL_ACCESS o STAFF según el origen del acceso"
    )

    model_config = {"from_attributes": True}


class AccessibleLocations(BaseModel):
    """Resultado de resolver las sedes accesibles"""
    locations: List[LocationSummary] = []
    active_location_id: Optional[int] = None
    is_multi_location: bool = False
    no_access: bool = Field(False, description="True cuando no hay ninguna sede accesible")
    access_changed: bool = Field(
        False, description="La sede guardada en el cliente ya no es accesible y se reemplazó"
    )


class SetHomeGymRequest(BaseModel):
    member_id: Optional[int] = Field(None, description="Miembro a modificar; por defecto el del usuario autenticado")
    gym_id: int


class SetHomeGymResponse(BaseModel):
    member_id: int
    home_gym_id: int
