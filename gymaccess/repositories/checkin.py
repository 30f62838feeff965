from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from gymaccess.models.checkin import CheckinToken, Checkin
from gymaccess.repositories.base import BaseRepository


class CheckinTokenRepository(BaseRepository[CheckinToken]):
    """
    Tokens QR. Todas las transiciones de consumo son updates condicionales
    para que dos validaciones concurrentes no puedan consumir el mismo token.
    """

    def get_by_hash(self, db: Session, token_hash: str) -> Optional[CheckinToken]:
        return db.query(CheckinToken).filter(CheckinToken.token_hash == token_hash).first()

    def supersede_unconsumed(self, db: Session, member_id: int, now: datetime) -> int:
        """Marca como consumidos todos los tokens pendientes del miembro."""
        result = db.execute(
            update(CheckinToken)
            .where(CheckinToken.member_id == member_id, CheckinToken.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def consume(self, db: Session, token_id: int, now: datetime) -> int:
        """
        Consume el token si sigue pendiente y vigente.

        Returns:
            1 si esta llamada ganó el consumo, 0 si ya estaba consumido o expiró
        """
        result = db.execute(
            update(CheckinToken)
            .where(
                CheckinToken.id == token_id,
                CheckinToken.consumed_at.is_(None),
                CheckinToken.expires_at >= now,
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def burn(self, db: Session, token_id: int, now: datetime) -> int:
        """Invalida el token sin importar su vigencia (acceso restringido)."""
        result = db.execute(
            update(CheckinToken)
            .where(CheckinToken.id == token_id, CheckinToken.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, db: Session, before: datetime) -> int:
        """Borra tokens expirados antes de `before` que ningún check-in referencia."""
        referenced = select(Checkin.id).where(Checkin.token_id == CheckinToken.id).exists()
        result = db.execute(
            delete(CheckinToken)
            .where(CheckinToken.expires_at < before, ~referenced)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class CheckinRepository(BaseRepository[Checkin]):

    def list_between(
        self, db: Session, gym_id: int, start: datetime, end: datetime
    ) -> List[Checkin]:
        """Check-ins de la sede en [start, end), del más reciente al más antiguo."""
        return (
            db.query(Checkin)
            .filter(
                Checkin.gym_id == gym_id,
                Checkin.checked_in_at >= start,
                Checkin.checked_in_at < end,
            )
            .order_by(Checkin.checked_in_at.desc(), Checkin.id.desc())
            .all()
        )


checkin_token_repository = CheckinTokenRepository(CheckinToken)
checkin_repository = CheckinRepository(Checkin)
