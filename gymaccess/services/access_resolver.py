"""
Resolución de sedes accesibles.

Reglas de precedencia:
1. Si la identidad tiene asignaciones de staff, sus sedes accesibles son
   exactamente las asignadas (y activas); las concesiones de miembro no las
   amplían ni las reducen.
2. Si no, las concesiones ACTIVE del miembro. Una concesión ALL_ACCESS abre
   todas las sedes activas de la cadena de su sede ancla, evaluadas en cada
   consulta. Lo mismo hace un plan ALL_ACCESS en la suscripción actual: su
   sede elegida queda como HOME y el resto de la cadena se abre por el plan.

La sede guardada en el cliente es solo una pista: siempre se re-deriva.
"""
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.orm import Session

from gymaccess.core.exceptions import NotFoundError, PermissionDeniedError, InvalidRequestError
from gymaccess.models.access import AccessType, GrantStatus, AccessEventType, MemberGymAccess
from gymaccess.models.gym import Gym
from gymaccess.models.subscription import AccessScope, SubscriptionStatus
from gymaccess.models.user import User, Member, StaffRole
from gymaccess.repositories.access import (
    member_gym_access_repository, member_gym_access_event_repository
)
from gymaccess.repositories.gym import gym_repository
from gymaccess.repositories.subscription import subscription_repository
from gymaccess.repositories.user import member_repository, staff_assignment_repository
from gymaccess.schemas.access import AccessibleLocations, LocationSummary

logger = logging.getLogger(__name__)

STAFF_ACCESS = "STAFF"
MANAGING_STAFF_ROLES = (StaffRole.MANAGER, StaffRole.ADMIN)


class AccessGrantResolver:

    def _plan_all_access_chain_id(self, db: Session, member: Member) -> Optional[int]:
        """Cadena que abre el plan ALL_ACCESS de la suscripción actual, si lo hay."""
        current = subscription_repository.get_current(db, member.id)
        if current is None or current.plan is None or current.status == SubscriptionStatus.canceled:
            return None
        if current.plan.access_scope != AccessScope.ALL_ACCESS:
            return None
        return current.plan.chain_id

    def _member_gyms(
        self, db: Session, grants: List[MemberGymAccess], plan_chain_ids: Sequence[int] = ()
    ) -> Tuple[List[Gym], Dict[int, str]]:
        """
        Expande las concesiones activas de un miembro a sedes activas.

        Returns:
            (sedes ordenadas por nombre e ID, {gym_id: tipo de acceso})
        """
        access_types: Dict[int, str] = {}
        explicit_ids = []
        all_access_chain_ids = set(plan_chain_ids)

        for grant in grants:
            explicit_ids.append(grant.gym_id)
            access_types[grant.gym_id] = grant.access_type.value
            if grant.access_type == AccessType.ALL_ACCESS:
                anchor = gym_repository.get(db, grant.gym_id)
                if anchor is not None:
                    all_access_chain_ids.add(anchor.chain_id)

        gyms_by_id = {gym.id: gym for gym in gym_repository.get_active_by_ids(db, explicit_ids)}
        for gym in gym_repository.get_active_in_chains(db, sorted(all_access_chain_ids)):
            gyms_by_id.setdefault(gym.id, gym)
            access_types.setdefault(gym.id, AccessType.ALL_ACCESS.value)

        gyms = sorted(gyms_by_id.values(), key=lambda g: (g.name, g.id))
        return gyms, access_types

    def resolve_accessible_locations(
        self, db: Session, user: User, stored_gym_id: Optional[int] = None
    ) -> AccessibleLocations:
        """
        Resuelve las sedes a las que la identidad puede acceder y la sede activa.

        Args:
            db: Sesión de base de datos
            user: Identidad autenticada
            stored_gym_id: Última sede elegida por el cliente (pista, puede estar obsoleta)

        Returns:
            AccessibleLocations; un conjunto vacío es el estado `no_access`, no un error
        """
        home_gym_id = None
        assignments = staff_assignment_repository.get_for_user(db, user.id)

        if assignments:
            gyms = gym_repository.get_active_by_ids(db, [a.gym_id for a in assignments])
            access_types = {gym.id: STAFF_ACCESS for gym in gyms}
        else:
            member = member_repository.get_by_user_id(db, user.id)
            if member is None:
                gyms, access_types = [], {}
            else:
                grants = member_gym_access_repository.get_active_grants(db, member.id)
                plan_chain_id = self._plan_all_access_chain_id(db, member)
                gyms, access_types = self._member_gyms(
                    db, grants, [plan_chain_id] if plan_chain_id is not None else []
                )
                home = next((g for g in grants if g.access_type == AccessType.HOME), None)
                home_gym_id = home.gym_id if home else member.home_gym_id

        accessible_ids = [gym.id for gym in gyms]

        if stored_gym_id is not None and stored_gym_id in accessible_ids:
            active_id = stored_gym_id
        elif home_gym_id is not None and home_gym_id in accessible_ids:
            active_id = home_gym_id
        elif accessible_ids:
            active_id = accessible_ids[0]
        else:
            active_id = None

        access_changed = stored_gym_id is not None and stored_gym_id not in accessible_ids
        if access_changed:
            logger.info(f"Sede guardada {stored_gym_id} ya no es accesible para usuario {user.id}")

        return AccessibleLocations(
            locations=[
                LocationSummary(
                    id=gym.id,
                    name=gym.name,
                    chain_id=gym.chain_id,
                    address=gym.address,
                    timezone=gym.timezone or "UTC",
                    access_type=access_types.get(gym.id),
                )
                for gym in gyms
            ],
            active_location_id=active_id,
            is_multi_location=len(gyms) > 1,
            no_access=not gyms,
            access_changed=access_changed,
        )

    def member_has_access(
        self, db: Session, member: Member, gym: Gym
    ) -> Tuple[bool, Optional[AccessType]]:
        """
        Comprueba si un miembro puede entrar en una sede concreta.

        Returns:
            (permitido, tipo de acceso que lo permite)
        """
        if not gym.is_active:
            return False, None

        grant = member_gym_access_repository.get_grant(db, member.id, gym.id)
        if grant is not None and grant.status == GrantStatus.ACTIVE:
            return True, grant.access_type

        for candidate in member_gym_access_repository.get_active_grants(db, member.id):
            if candidate.access_type != AccessType.ALL_ACCESS:
                continue
            anchor = gym_repository.get(db, candidate.gym_id)
            if anchor is not None and anchor.chain_id == gym.chain_id:
                return True, AccessType.ALL_ACCESS

        if self._plan_all_access_chain_id(db, member) == gym.chain_id:
            return True, AccessType.ALL_ACCESS

        return False, None

    def set_home_gym(
        self, db: Session, *, actor: User, member_id: int, gym_id: int
    ) -> Member:
        """
        Asigna la sede HOME de un miembro.

        Un MANAGER/ADMIN de la sede destino puede cambiarla siempre; el propio
        miembro solo puede fijarla si aún no tiene una.

        Raises:
            NotFoundError: Si el miembro o la sede (activa) no existen
            PermissionDeniedError: Si el actor no puede modificar la sede HOME
        """
        member = member_repository.get(db, member_id)
        if member is None:
            raise NotFoundError("Miembro no encontrado", member_id=member_id)

        gym = gym_repository.get_active(db, gym_id)
        if gym is None:
            raise NotFoundError("Sede no encontrada o inactiva", gym_id=gym_id)

        assignment = staff_assignment_repository.get_for_user_and_gym(db, actor.id, gym_id)
        can_manage = assignment is not None and assignment.role in MANAGING_STAFF_ROLES
        if not can_manage:
            if member.user_id != actor.id:
                raise PermissionDeniedError("No puedes cambiar la sede principal de otro miembro")
            if member.home_gym_id is not None:
                raise PermissionDeniedError(
                    "Tu sede principal ya está asignada. Contacta con el staff para cambiarla."
                )

        previous_home_gym_id = member.home_gym_id
        if previous_home_gym_id == gym_id:
            raise InvalidRequestError("La sede ya es la sede principal del miembro", gym_id=gym_id)

        # Degradar la HOME anterior antes de crear la nueva (índice parcial único)
        previous_home = member_gym_access_repository.get_home_grant(db, member.id)
        if previous_home is not None:
            current = subscription_repository.get_current(db, member.id)
            single_gym = current is None or current.plan is None or current.plan.access_scope == AccessScope.SINGLE_GYM
            previous_home.access_type = AccessType.SECONDARY
            if single_gym:
                previous_home.status = GrantStatus.EXPIRED
            db.flush()

        grant = member_gym_access_repository.get_grant(db, member.id, gym_id)
        if grant is None:
            member_gym_access_repository.add(
                db,
                member_id=member.id,
                gym_id=gym_id,
                access_type=AccessType.HOME,
                status=GrantStatus.ACTIVE,
            )
        else:
            grant.access_type = AccessType.HOME
            grant.status = GrantStatus.ACTIVE

        member.home_gym_id = gym_id
        member_gym_access_event_repository.record(
            db,
            event_type=AccessEventType.HOME_GYM_CHANGED,
            member_id=member.id,
            gym_id=gym_id,
            actor_user_id=actor.id,
            payload={"previous_home_gym_id": previous_home_gym_id},
        )
        db.commit()
        db.refresh(member)
        logger.info(
            f"Sede principal del miembro {member.id} cambiada de {previous_home_gym_id} a {gym_id} "
            f"por usuario {actor.id}"
        )
        return member


access_grant_resolver = AccessGrantResolver()
