"""
Control de capacidad y admisión de nuevas suscripciones por sede.

El conteo de miembros activos usa la misma derivación de estado que el
check-in: un miembro cuenta en una sede si tiene una concesión explícita
ACTIVE allí (las ALL_ACCESS cuentan solo en su sede ancla) y su suscripción
actual no está restringida o está pendiente del primer cobro.

Los planes pueden tener además un cupo propio por sede, que solo
administra un CORPORATE_ADMIN de la cadena del plan.
"""
from datetime import datetime
from typing import Optional, Tuple, Union
import logging

from sqlalchemy.orm import Session

from gymaccess.core.config import get_settings
from gymaccess.core.exceptions import (
    CapacityBlockedError, InvalidRequestError, NotFoundError, PermissionDeniedError, PlanCapacityBlockedError
)
from gymaccess.core.timezone_utils import utcnow
from gymaccess.models.access import AccessEventType
from gymaccess.models.capacity import GymCapacityLimit
from gymaccess.models.subscription import MembershipPlan
from gymaccess.models.gym import Gym
from gymaccess.models.user import User, StaffRole, OrganizationRoleType
from gymaccess.repositories.access import (
    member_gym_access_repository, member_gym_access_event_repository
)
from gymaccess.repositories.capacity import (
    gym_capacity_limit_repository, plan_location_capacity_limit_repository
)
from gymaccess.repositories.gym import gym_repository
from gymaccess.repositories.subscription import membership_plan_repository, subscription_repository
from gymaccess.repositories.user import staff_assignment_repository, organization_role_repository
from gymaccess.schemas.capacity import (
    CapacityStatus, CapacityStatusName, CapacityStatusPublic, CapacityManageRequest,
    PlanCapacityManageRequest, PlanCapacityManageResponse, PlanCapacityStatus, PlanCapacityStatusName
)
from gymaccess.services.subscription_state import holds_capacity_slot

logger = logging.getLogger(__name__)


def classify_capacity(
    active_count: int,
    max_active_members: Optional[int],
    soft_limit_threshold: float,
    hard_limit_enforced: bool,
) -> CapacityStatusName:
    """
    Clasifica la ocupación de una sede.

    Args:
        active_count: Miembros activos contados en la sede
        max_active_members: Máximo configurado (None = ilimitado)
        soft_limit_threshold: Fracción del máximo a partir de la cual se avisa
        hard_limit_enforced: Si al llegar al máximo se bloquean altas nuevas

    Returns:
        OK, NEAR_LIMIT, AT_CAPACITY o BLOCK_NEW
    """
    if max_active_members is None:
        return CapacityStatusName.OK
    if active_count >= max_active_members:
        if hard_limit_enforced:
            return CapacityStatusName.BLOCK_NEW
        return CapacityStatusName.AT_CAPACITY
    if active_count >= max_active_members * soft_limit_threshold:
        return CapacityStatusName.NEAR_LIMIT
    return CapacityStatusName.OK


class CapacityAdmissionController:

    def _get_gym(self, db: Session, gym_id: int) -> Gym:
        gym = gym_repository.get(db, gym_id)
        if gym is None:
            raise NotFoundError("Sede no encontrada", gym_id=gym_id)
        return gym

    def count_active_members(self, db: Session, gym_id: int, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        member_ids = member_gym_access_repository.get_active_member_ids_at_gym(db, gym_id)
        current = subscription_repository.get_current_for_members(db, member_ids)
        return sum(
            1 for member_id in member_ids
            if holds_capacity_slot(current.get(member_id), now)
        )

    def is_member_counted(
        self, db: Session, gym_id: int, member_id: int, now: Optional[datetime] = None
    ) -> bool:
        """True si el miembro ya ocupa una plaza en la sede."""
        now = now or utcnow()
        if member_id not in member_gym_access_repository.get_active_member_ids_at_gym(db, gym_id):
            return False
        return holds_capacity_slot(subscription_repository.get_current(db, member_id), now)

    def _build_status(
        self, gym_id: int, active_count: int, limit: Optional[GymCapacityLimit]
    ) -> CapacityStatus:
        default_soft = get_settings().CAPACITY_DEFAULT_SOFT_THRESHOLD
        max_members = limit.max_active_members if limit else None
        soft = limit.soft_limit_threshold if limit and limit.soft_limit_threshold is not None else default_soft
        hard = bool(limit.hard_limit_enforced) if limit else False

        percent = None
        if max_members is not None:
            # Con máximo 0 cualquier ocupación se considera llena
            percent = round(active_count / max_members * 100, 1) if max_members > 0 else 100.0

        return CapacityStatus(
            gym_id=gym_id,
            active_members_count=active_count,
            max_active_members=max_members,
            soft_limit_threshold=soft,
            hard_limit_enforced=hard,
            capacity_percent=percent,
            status=classify_capacity(active_count, max_members, soft, hard),
        )

    def get_capacity_status(
        self, db: Session, gym_id: int, now: Optional[datetime] = None
    ) -> CapacityStatus:
        """
        Calcula el estado de capacidad actual de una sede.

        Raises:
            NotFoundError: Si la sede no existe
        """
        self._get_gym(db, gym_id)
        limit = gym_capacity_limit_repository.get_by_gym(db, gym_id)
        return self._build_status(gym_id, self.count_active_members(db, gym_id, now), limit)

    def can_view_full_status(self, db: Session, user: User, gym: Gym) -> bool:
        """Staff de la sede o cualquier rol de organización de su cadena."""
        if staff_assignment_repository.get_for_user_and_gym(db, user.id, gym.id) is not None:
            return True
        return any(
            role.chain_id == gym.chain_id
            for role in organization_role_repository.get_for_user(db, user.id)
        )

    def get_capacity_status_for_viewer(
        self, db: Session, user: User, gym_id: int
    ) -> Union[CapacityStatus, CapacityStatusPublic]:
        """
        Estado de capacidad según quién lo consulta: los miembros solo reciben
        el campo `status`, sin cifras de ocupación.
        """
        gym = self._get_gym(db, gym_id)
        status = self.get_capacity_status(db, gym_id)
        if self.can_view_full_status(db, user, gym):
            return status
        return CapacityStatusPublic(status=status.status)

    def can_manage_capacity(self, db: Session, user: User, gym: Gym) -> bool:
        assignment = staff_assignment_repository.get_for_user_and_gym(db, user.id, gym.id)
        if assignment is not None and assignment.role in (StaffRole.MANAGER, StaffRole.ADMIN):
            return True
        return organization_role_repository.has_role(
            db, user.id, gym.chain_id, OrganizationRoleType.CORPORATE_ADMIN
        )

    def upsert_capacity_limit(
        self, db: Session, actor: User, request: CapacityManageRequest
    ) -> GymCapacityLimit:
        """
        Crea o actualiza el límite de capacidad de una sede.

        Raises:
            NotFoundError: Si la sede no existe
            PermissionDeniedError: Si el actor no es MANAGER/ADMIN de la sede ni
                CORPORATE_ADMIN de la cadena
        """
        gym = self._get_gym(db, request.gym_id)
        if not self.can_manage_capacity(db, actor, gym):
            raise PermissionDeniedError(
                "Solo MANAGER/ADMIN de la sede o CORPORATE_ADMIN pueden modificar la capacidad"
            )

        limit = gym_capacity_limit_repository.get_by_gym(db, gym.id, for_update=True)
        previous = None
        if limit is None:
            limit = gym_capacity_limit_repository.add(
                db,
                gym_id=gym.id,
                max_active_members=request.max_active_members,
                soft_limit_threshold=request.soft_limit_threshold,
                hard_limit_enforced=request.hard_limit_enforced,
                updated_by_user_id=actor.id,
            )
        else:
            previous = {
                "max_active_members": limit.max_active_members,
                "soft_limit_threshold": limit.soft_limit_threshold,
                "hard_limit_enforced": limit.hard_limit_enforced,
            }
            limit.max_active_members = request.max_active_members
            limit.soft_limit_threshold = request.soft_limit_threshold
            limit.hard_limit_enforced = request.hard_limit_enforced
            limit.updated_by_user_id = actor.id

        member_gym_access_event_repository.record(
            db,
            event_type=AccessEventType.CAPACITY_LIMIT_UPDATED,
            gym_id=gym.id,
            actor_user_id=actor.id,
            payload={
                "previous": previous,
                "max_active_members": request.max_active_members,
                "soft_limit_threshold": request.soft_limit_threshold,
                "hard_limit_enforced": request.hard_limit_enforced,
            },
        )
        db.commit()
        db.refresh(limit)
        logger.info(
            f"Límite de capacidad de la sede {gym.id} actualizado por usuario {actor.id}: "
            f"max={limit.max_active_members}, soft={limit.soft_limit_threshold}, "
            f"hard={limit.hard_limit_enforced}"
        )
        return limit

    def admit_new_subscription(
        self, db: Session, gym_id: int, member_id: int, now: Optional[datetime] = None
    ) -> Tuple[CapacityStatus, bool]:
        """
        Comprobación previa a la inserción, dentro de la transacción del alta.

        Bloquea la fila de capacidad (SELECT ... FOR UPDATE) para serializar
        admisiones concurrentes en la misma sede. Un miembro que ya cuenta en
        la sede nunca se bloquea.

        Returns:
            (estado de capacidad, si el miembro ya contaba en la sede)

        Raises:
            CapacityBlockedError: Si la sede aplica límite duro y está llena
        """
        now = now or utcnow()
        limit = gym_capacity_limit_repository.get_by_gym(db, gym_id, for_update=True)
        status = self._build_status(gym_id, self.count_active_members(db, gym_id, now), limit)
        already_counted = self.is_member_counted(db, gym_id, member_id, now)

        if status.status == CapacityStatusName.BLOCK_NEW:
            if already_counted:
                logger.info(f"Miembro {member_id} ya cuenta en la sede {gym_id}; se admite pese a BLOCK_NEW")
                return status, already_counted
            logger.info(
                f"Alta bloqueada en sede {gym_id}: {status.active_members_count}/"
                f"{status.max_active_members} miembros activos"
            )
            raise CapacityBlockedError(gym_id=gym_id)
        return status, already_counted

    def verify_admission(
        self,
        db: Session,
        gym_id: int,
        member_id: int,
        *,
        already_counted: bool = False,
        now: Optional[datetime] = None,
    ) -> CapacityStatus:
        """
        Re-conteo posterior a la inserción. Si el límite duro quedó superado,
        el llamador debe deshacer la transacción.

        Una suscripción recién creada pendiente del primer cobro ya ocupa su
        plaza en este re-conteo.

        Raises:
            CapacityBlockedError: Si la ocupación supera el máximo con límite duro
                y el miembro no ocupaba ya una plaza
        """
        now = now or utcnow()
        limit = gym_capacity_limit_repository.get_by_gym(db, gym_id)
        active_count = self.count_active_members(db, gym_id, now)
        if not self.is_member_counted(db, gym_id, member_id, now):
            active_count += 1
        status = self._build_status(gym_id, active_count, limit)
        if (
            not already_counted
            and status.hard_limit_enforced
            and status.max_active_members is not None
            and status.active_members_count > status.max_active_members
        ):
            logger.warning(
                f"Sobrepaso de capacidad detectado en sede {gym_id} "
                f"({status.active_members_count}/{status.max_active_members}); se revierte el alta"
            )
            raise CapacityBlockedError(gym_id=gym_id)
        return status

    # Cupo por plan y sede

    def _get_plan(self, db: Session, plan_id: int) -> MembershipPlan:
        plan = membership_plan_repository.get(db, plan_id)
        if plan is None:
            raise NotFoundError("Plan no encontrado", plan_id=plan_id)
        return plan

    def _holds_plan_slot(self, subscription, plan_id: int, gym_id: int, now: datetime) -> bool:
        return (
            subscription is not None
            and subscription.plan_id == plan_id
            and subscription.gym_id == gym_id
            and holds_capacity_slot(subscription, now)
        )

    def count_plan_members_at_gym(
        self, db: Session, plan_id: int, gym_id: int, now: Optional[datetime] = None
    ) -> int:
        """Miembros cuya suscripción actual es este plan en esta sede y ocupa plaza."""
        now = now or utcnow()
        member_ids = subscription_repository.get_member_ids_with_plan_at_gym(db, plan_id, gym_id)
        current = subscription_repository.get_current_for_members(db, member_ids)
        return sum(
            1 for subscription in current.values()
            if self._holds_plan_slot(subscription, plan_id, gym_id, now)
        )

    def check_plan_capacity_for_gym(
        self,
        db: Session,
        plan_id: int,
        gym_id: int,
        now: Optional[datetime] = None,
        *,
        for_update: bool = False,
    ) -> PlanCapacityStatus:
        """
        Estado del cupo de un plan en una sede.

        Returns:
            PlanCapacityStatus con NO_LIMIT, OK o AT_CAPACITY
        """
        now = now or utcnow()
        limit = plan_location_capacity_limit_repository.get_for_plan_and_gym(
            db, plan_id, gym_id, for_update=for_update
        )
        max_members = limit.max_active_members if limit else None
        active_count = self.count_plan_members_at_gym(db, plan_id, gym_id, now)

        if max_members is None:
            status = PlanCapacityStatusName.NO_LIMIT
        elif active_count >= max_members:
            status = PlanCapacityStatusName.AT_CAPACITY
        else:
            status = PlanCapacityStatusName.OK

        return PlanCapacityStatus(
            plan_id=plan_id,
            gym_id=gym_id,
            active_members_count=active_count,
            max_active_members=max_members,
            status=status,
        )

    def ensure_plan_capacity(
        self,
        db: Session,
        plan_id: int,
        gym_id: int,
        member_id: int,
        now: Optional[datetime] = None,
        *,
        lock: bool = False,
    ) -> PlanCapacityStatus:
        """
        Rechaza el alta si el plan agotó su cupo en la sede. El cupo siempre es
        duro. Un miembro que ya ocupa plaza con este plan nunca se bloquea.

        Args:
            lock: Bloquear la fila del cupo; usar dentro de la transacción del alta

        Raises:
            PlanCapacityBlockedError: Si el cupo está completo
        """
        now = now or utcnow()
        status = self.check_plan_capacity_for_gym(db, plan_id, gym_id, now, for_update=lock)
        if status.status != PlanCapacityStatusName.AT_CAPACITY:
            return status

        current = subscription_repository.get_current(db, member_id)
        if self._holds_plan_slot(current, plan_id, gym_id, now):
            return status

        logger.info(
            f"Alta bloqueada por cupo del plan {plan_id} en sede {gym_id}: "
            f"{status.active_members_count}/{status.max_active_members}"
        )
        raise PlanCapacityBlockedError(plan_id=plan_id, gym_id=gym_id)

    def manage_plan_capacity(
        self, db: Session, actor: User, request: PlanCapacityManageRequest
    ) -> PlanCapacityManageResponse:
        """
        Crea, actualiza o retira el cupo de un plan en una sede.

        Raises:
            NotFoundError: Si el plan o la sede no existen
            PermissionDeniedError: Si el actor no es CORPORATE_ADMIN de la cadena del plan
            InvalidRequestError: Si la sede no pertenece a la cadena del plan
        """
        plan = self._get_plan(db, request.plan_id)
        if not organization_role_repository.has_role(
            db, actor.id, plan.chain_id, OrganizationRoleType.CORPORATE_ADMIN
        ):
            raise PermissionDeniedError("Solo un CORPORATE_ADMIN puede gestionar el cupo de un plan")

        gym = self._get_gym(db, request.gym_id)
        if gym.chain_id != plan.chain_id:
            raise InvalidRequestError("La sede no pertenece a la cadena del plan", gym_id=gym.id)

        limit = plan_location_capacity_limit_repository.get_for_plan_and_gym(
            db, plan.id, gym.id, for_update=True
        )
        previous = limit.max_active_members if limit else None

        if request.action == "UPSERT_PLAN_CAPACITY_LIMIT":
            if limit is None:
                limit = plan_location_capacity_limit_repository.add(
                    db,
                    plan_id=plan.id,
                    gym_id=gym.id,
                    max_active_members=request.max_active_members,
                    updated_by_user_id=actor.id,
                )
            else:
                limit.max_active_members = request.max_active_members
                limit.updated_by_user_id = actor.id
            event_type = AccessEventType.PLAN_CAPACITY_LIMIT_UPDATED
            max_members = request.max_active_members
        else:
            if limit is None:
                logger.info(f"El plan {plan.id} no tenía cupo en la sede {gym.id}; nada que retirar")
                return PlanCapacityManageResponse(action=request.action, plan_id=plan.id, gym_id=gym.id)
            db.delete(limit)
            event_type = AccessEventType.PLAN_CAPACITY_LIMIT_REMOVED
            max_members = None

        member_gym_access_event_repository.record(
            db,
            event_type=event_type,
            gym_id=gym.id,
            actor_user_id=actor.id,
            payload={"plan_id": plan.id, "previous": previous, "max_active_members": max_members},
        )
        db.commit()
        logger.info(
            f"Cupo del plan {plan.id} en sede {gym.id} ({request.action}) por usuario {actor.id}: "
            f"{previous} -> {max_members}"
        )
        return PlanCapacityManageResponse(
            action=request.action, plan_id=plan.id, gym_id=gym.id, max_active_members=max_members,
        )


capacity_admission_controller = CapacityAdmissionController()
