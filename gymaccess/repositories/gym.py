from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from gymaccess.models.gym import Gym
from gymaccess.repositories.base import BaseRepository


class GymRepository(BaseRepository[Gym]):
    """Repositorio de sedes. Las sedes inactivas nunca son accesibles."""

    def get_active(self, db: Session, gym_id: int) -> Optional[Gym]:
        return db.query(Gym).filter(Gym.id == gym_id, Gym.is_active == True).first()

    def get_active_by_ids(self, db: Session, gym_ids: Sequence[int]) -> List[Gym]:
        """
        Obtener las sedes activas de una lista de IDs, ordenadas por nombre e ID.

        Args:
            db: Sesión de base de datos
            gym_ids: IDs de sedes candidatas

        Returns:
            Lista de sedes activas (las inactivas se descartan)
        """
        if not gym_ids:
            return []
        return (
            db.query(Gym)
            .filter(Gym.id.in_(list(gym_ids)), Gym.is_active == True)
            .order_by(Gym.name, Gym.id)
            .all()
        )

    def get_active_in_chains(self, db: Session, chain_ids: Sequence[int]) -> List[Gym]:
        """
        Obtener todas las sedes activas de las cadenas indicadas.

        Se evalúa en cada consulta, de modo que una sede añadida a la cadena
        después de contratar un plan ALL_ACCESS queda incluida.
        """
        if not chain_ids:
            return []
        return (
            db.query(Gym)
            .filter(Gym.chain_id.in_(list(chain_ids)), Gym.is_active == True)
            .order_by(Gym.name, Gym.id)
            .all()
        )


gym_repository = GymRepository(Gym)
