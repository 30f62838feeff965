from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gymaccess.models.access import (
    MemberGymAccess, MemberGymAccessEvent, AccessType, GrantStatus, AccessEventType
)
from gymaccess.repositories.base import BaseRepository


class MemberGymAccessRepository(BaseRepository[MemberGymAccess]):
    """Concesiones de acceso miembro-sede."""

    def get_active_grants(self, db: Session, member_id: int) -> List[MemberGymAccess]:
        return (
            db.query(MemberGymAccess)
            .filter(
                MemberGymAccess.member_id == member_id,
                MemberGymAccess.status == GrantStatus.ACTIVE,
            )
            .order_by(MemberGymAccess.id)
            .all()
        )

    def get_grant(self, db: Session, member_id: int, gym_id: int) -> Optional[MemberGymAccess]:
        return (
            db.query(MemberGymAccess)
            .filter(MemberGymAccess.member_id == member_id, MemberGymAccess.gym_id == gym_id)
            .first()
        )

    def get_home_grant(self, db: Session, member_id: int) -> Optional[MemberGymAccess]:
        return (
            db.query(MemberGymAccess)
            .filter(
                MemberGymAccess.member_id == member_id,
                MemberGymAccess.access_type == AccessType.HOME,
            )
            .first()
        )

    def get_active_member_ids_at_gym(self, db: Session, gym_id: int) -> List[int]:
        """
        IDs distintos de miembros con una concesión explícita ACTIVE en la sede
        (HOME, SECONDARY o la fila ancla de ALL_ACCESS).
        """
        rows = (
            db.query(MemberGymAccess.member_id)
            .filter(
                MemberGymAccess.gym_id == gym_id,
                MemberGymAccess.status == GrantStatus.ACTIVE,
            )
            .distinct()
            .all()
        )
        return [row[0] for row in rows]


class MemberGymAccessEventRepository(BaseRepository[MemberGymAccessEvent]):
    """Registro de auditoría. Solo inserciones."""

    def record(
        self,
        db: Session,
        *,
        event_type: AccessEventType,
        member_id: Optional[int] = None,
        gym_id: Optional[int] = None,
        actor_user_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> MemberGymAccessEvent:
        return self.add(
            db,
            event_type=event_type.value,
            member_id=member_id,
            gym_id=gym_id,
            actor_user_id=actor_user_id,
            payload=payload or {},
        )


member_gym_access_repository = MemberGymAccessRepository(MemberGymAccess)
member_gym_access_event_repository = MemberGymAccessEventRepository(MemberGymAccessEvent)
