from typing import Optional

from sqlalchemy.orm import Session

from gymaccess.models.capacity import GymCapacityLimit, PlanLocationCapacityLimit
from gymaccess.repositories.base import BaseRepository


class GymCapacityLimitRepository(BaseRepository[GymCapacityLimit]):

    def get_by_gym(
        self, db: Session, gym_id: int, *, for_update: bool = False
    ) -> Optional[GymCapacityLimit]:
        """
        Obtener el límite de capacidad de una sede.

        Args:
            db: Sesión de base de datos
            gym_id: ID de la sede
            for_update: Bloquear la fila (SELECT ... FOR UPDATE) hasta el fin
                de la transacción; serializa las admisiones en la sede

        Returns:
            El límite o None si la sede no tiene límite configurado
        """
        query = db.query(GymCapacityLimit).filter(GymCapacityLimit.gym_id == gym_id)
        if for_update:
            query = query.with_for_update()
        return query.first()


class PlanLocationCapacityLimitRepository(BaseRepository[PlanLocationCapacityLimit]):

    def get_for_plan_and_gym(
        self, db: Session, plan_id: int, gym_id: int, *, for_update: bool = False
    ) -> Optional[PlanLocationCapacityLimit]:
        query = db.query(PlanLocationCapacityLimit).filter(
            PlanLocationCapacityLimit.plan_id == plan_id,
            PlanLocationCapacityLimit.gym_id == gym_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()


gym_capacity_limit_repository = GymCapacityLimitRepository(GymCapacityLimit)
plan_location_capacity_limit_repository = PlanLocationCapacityLimitRepository(PlanLocationCapacityLimit)
