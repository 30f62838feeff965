"""
Emisión y validación de tokens QR de check-in.

El valor del token solo existe en claro en la respuesta de emisión; en base de
datos se guarda su SHA-256. El consumo es un único UPDATE condicional, así que
dos escáneres que validan el mismo token a la vez no pueden producir dos
check-ins.
"""
from datetime import datetime, timedelta
from typing import List, Optional
import hashlib
import logging
import secrets

from redis.asyncio import Redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymaccess.core.config import get_settings
from gymaccess.core.exceptions import (
    AccessRestrictedError, LocationAccessDeniedError, NotFoundError, PermissionDeniedError,
    TokenAlreadyUsedError, TokenExpiredError, TokenNotFoundError
)
from gymaccess.core.timezone_utils import ensure_utc, local_day_bounds_utc, utcnow
from gymaccess.models.access import AccessType, AccessEventType
from gymaccess.models.checkin import AccessDecision, Checkin, CheckinSource, CheckinToken
from gymaccess.models.gym import Gym
from gymaccess.models.user import Member, MemberStatus, User, StaffRole
from gymaccess.repositories.access import member_gym_access_event_repository
from gymaccess.repositories.checkin import checkin_repository, checkin_token_repository
from gymaccess.repositories.gym import gym_repository
from gymaccess.repositories.user import (
    member_repository, organization_role_repository, staff_assignment_repository
)
from gymaccess.schemas.checkin import CheckinResult, CheckinTokenResponse
from gymaccess.services.access_resolver import access_grant_resolver
from gymaccess.services.checkin_fanout import checkin_fanout
from gymaccess.services.subscription_state import subscription_state_machine, can_issue_checkin_token

logger = logging.getLogger(__name__)

DECISION_BY_ACCESS_TYPE = {
    AccessType.HOME: (AccessDecision.ALLOWED_HOME, "Acceso a sede principal"),
    AccessType.SECONDARY: (AccessDecision.ALLOWED_SECONDARY, "Acceso a sede secundaria"),
    AccessType.ALL_ACCESS: (AccessDecision.ALLOWED_ALL_ACCESS, "Membresía de acceso total"),
}
OVERRIDE_ROLES = (StaffRole.MANAGER, StaffRole.ADMIN)


def generate_token_value() -> str:
    return secrets.token_urlsafe(32)


def hash_token(raw_token: str) -> str:
    """SHA-256 hexadecimal del valor del token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class CheckInTokenService:

    def _require_staff_at_gym(self, db: Session, staff: User, gym_id: int):
        assignment = staff_assignment_repository.get_for_user_and_gym(db, staff.id, gym_id)
        if assignment is None:
            raise PermissionDeniedError("No estás asignado como staff de esta sede", gym_id=gym_id)
        return assignment

    def _get_active_gym(self, db: Session, gym_id: int) -> Gym:
        gym = gym_repository.get_active(db, gym_id)
        if gym is None:
            raise NotFoundError("Sede no encontrada o inactiva", gym_id=gym_id)
        return gym

    def _deny(
        self,
        db: Session,
        *,
        member_id: int,
        gym_id: int,
        actor_user_id: int,
        reason: str,
        token_id: Optional[int] = None,
    ) -> None:
        member_gym_access_event_repository.record(
            db,
            event_type=AccessEventType.CHECKIN_DENIED,
            member_id=member_id,
            gym_id=gym_id,
            actor_user_id=actor_user_id,
            payload={"reason": reason, "token_id": token_id},
        )
        db.commit()
        logger.info(f"Check-in denegado para miembro {member_id} en sede {gym_id}: {reason}")

    def _check_member_can_enter(self, member: Member, now: datetime, db: Session) -> Optional[str]:
        """Devuelve el motivo de restricción o None si el miembro puede entrar."""
        if member.status != MemberStatus.active:
            return "MEMBER_INACTIVE"
        subscription, state = subscription_state_machine.get_current_state(db, member.id, now)
        if not can_issue_checkin_token(subscription, now):
            return state.reason or "ACCESS_RESTRICTED"
        return None

    def issue_token(
        self, db: Session, user: User, now: Optional[datetime] = None
    ) -> CheckinTokenResponse:
        """
        Emite un token QR para el miembro autenticado.

        Cualquier token anterior sin consumir queda invalidado en la misma
        transacción que la inserción del nuevo.

        Raises:
            PermissionDeniedError: Si el usuario no tiene perfil de miembro
            AccessRestrictedError: Si el miembro está inactivo o su suscripción no permite entrar
        """
        now = now or utcnow()
        member = member_repository.get_by_user_id(db, user.id)
        if member is None:
            raise PermissionDeniedError("No tienes un perfil de miembro")

        reason = self._check_member_can_enter(member, now, db)
        if reason is not None:
            logger.info(f"Emisión de token rechazada para miembro {member.id}: {reason}")
            raise AccessRestrictedError(reason=reason)

        ttl = timedelta(seconds=get_settings().CHECKIN_TOKEN_TTL_SECONDS)

        # Un emisor concurrente puede ganar el índice parcial único; se reintenta una vez
        for attempt in range(2):
            raw_token = generate_token_value()
            token_hash = hash_token(raw_token)
            try:
                checkin_token_repository.supersede_unconsumed(db, member.id, now)
                token = checkin_token_repository.add(
                    db,
                    token_hash=token_hash,
                    member_id=member.id,
                    issued_at=now,
                    expires_at=now + ttl,
                    created_by_user_id=user.id,
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                if attempt == 1:
                    raise
                logger.warning(f"Conflicto emitiendo token para miembro {member.id}; reintentando")
                continue

            logger.info(f"Token QR emitido para miembro {member.id} (hash {token_hash[:8]}...)")
            return CheckinTokenResponse(
                token=raw_token,
                expires_at=ensure_utc(token.expires_at),
                member_id=member.id,
            )

    async def validate_token(
        self,
        db: Session,
        *,
        staff: User,
        token: str,
        gym_id: int,
        override: bool = False,
        redis: Optional[Redis] = None,
        now: Optional[datetime] = None,
    ) -> CheckinResult:
        """
        Valida un token QR escaneado en una sede y registra el check-in.

        Orden de comprobaciones: existencia, expiración, consumo previo,
        estado de la suscripción (re-derivado ahora) y acceso a la sede.

        Args:
            db: Sesión de base de datos
            staff: Usuario que escanea (debe ser staff de la sede)
            token: Valor leído del QR
            gym_id: Sede donde se escanea
            override: Forzar la entrada sin acceso a la sede (solo MANAGER/ADMIN)
            redis: Cliente Redis para la difusión en tiempo real
            now: Instante de evaluación (por defecto, ahora)

        Returns:
            CheckinResult con el ID del check-in y la decisión

        Raises:
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError,
            AccessRestrictedError, LocationAccessDeniedError, PermissionDeniedError
        """
        now = now or utcnow()
        assignment = self._require_staff_at_gym(db, staff, gym_id)
        gym = self._get_active_gym(db, gym_id)

        record: Optional[CheckinToken] = checkin_token_repository.get_by_hash(db, hash_token(token))
        if record is None:
            raise TokenNotFoundError()
        if now > ensure_utc(record.expires_at):
            raise TokenExpiredError()
        if record.consumed_at is not None:
            raise TokenAlreadyUsedError()

        member = member_repository.get(db, record.member_id)
        reason = self._check_member_can_enter(member, now, db)
        if reason is not None:
            # El token se quema: el miembro debe regularizar el pago y generar otro
            checkin_token_repository.burn(db, record.id, now)
            self._deny(
                db, member_id=member.id, gym_id=gym_id, actor_user_id=staff.id,
                reason=reason, token_id=record.id,
            )
            raise AccessRestrictedError(reason=reason)

        allowed, access_type = access_grant_resolver.member_has_access(db, member, gym)
        if allowed:
            decision, decision_reason = DECISION_BY_ACCESS_TYPE[access_type]
        elif override and assignment.role in OVERRIDE_ROLES:
            decision, decision_reason = AccessDecision.ALLOWED_OVERRIDE, "Entrada forzada por el staff"
        else:
            self._deny(
                db, member_id=member.id, gym_id=gym_id, actor_user_id=staff.id,
                reason="NO_GYM_ACCESS", token_id=record.id,
            )
            if override:
                raise LocationAccessDeniedError(
                    "Solo un MANAGER o ADMIN puede forzar la entrada", gym_id=gym_id
                )
            raise LocationAccessDeniedError(gym_id=gym_id)

        if checkin_token_repository.consume(db, record.id, now) == 0:
            db.rollback()
            db.refresh(record)
            if record.consumed_at is None and now > ensure_utc(record.expires_at):
                raise TokenExpiredError()
            logger.info(f"Token {record.id} consumido por una validación concurrente")
            raise TokenAlreadyUsedError()

        checkin = checkin_repository.add(
            db,
            member_id=member.id,
            gym_id=gym_id,
            checked_in_at=now,
            source=CheckinSource.qr,
            staff_user_id=staff.id,
            token_id=record.id,
            access_decision=decision,
            decision_reason=decision_reason,
        )
        if decision == AccessDecision.ALLOWED_OVERRIDE:
            member_gym_access_event_repository.record(
                db,
                event_type=AccessEventType.CHECKIN_OVERRIDE,
                member_id=member.id,
                gym_id=gym_id,
                actor_user_id=staff.id,
                payload={"token_id": record.id, "checkin_id": checkin.id},
            )
        db.commit()
        db.refresh(checkin)
        logger.info(
            f"Check-in {checkin.id} registrado: miembro {member.id}, sede {gym_id}, decisión {decision.value}"
        )

        await checkin_fanout.publish_checkin(redis, checkin)

        return CheckinResult(
            checkin_id=checkin.id,
            member_id=member.id,
            gym_id=gym_id,
            access_decision=decision,
            decision_reason=decision_reason,
            access_type=access_type.value if access_type else None,
        )

    async def manual_checkin(
        self,
        db: Session,
        *,
        staff: User,
        member_id: int,
        gym_id: int,
        redis: Optional[Redis] = None,
        now: Optional[datetime] = None,
    ) -> CheckinResult:
        """
        Registra un check-in manual (sin QR) hecho por el staff, con las mismas
        comprobaciones de suscripción y de acceso a la sede.
        """
        now = now or utcnow()
        self._require_staff_at_gym(db, staff, gym_id)
        gym = self._get_active_gym(db, gym_id)

        member = member_repository.get(db, member_id)
        if member is None:
            raise NotFoundError("Miembro no encontrado", member_id=member_id)

        reason = self._check_member_can_enter(member, now, db)
        if reason is not None:
            self._deny(db, member_id=member.id, gym_id=gym_id, actor_user_id=staff.id, reason=reason)
            raise AccessRestrictedError(reason=reason)

        allowed, access_type = access_grant_resolver.member_has_access(db, member, gym)
        if not allowed:
            self._deny(db, member_id=member.id, gym_id=gym_id, actor_user_id=staff.id, reason="NO_GYM_ACCESS")
            raise LocationAccessDeniedError(gym_id=gym_id)

        decision, _ = DECISION_BY_ACCESS_TYPE[access_type]
        checkin = checkin_repository.add(
            db,
            member_id=member.id,
            gym_id=gym_id,
            checked_in_at=now,
            source=CheckinSource.manual,
            staff_user_id=staff.id,
            access_decision=decision,
            decision_reason="Check-in manual",
        )
        db.commit()
        db.refresh(checkin)
        logger.info(f"Check-in manual {checkin.id}: miembro {member.id}, sede {gym_id}, staff {staff.id}")

        await checkin_fanout.publish_checkin(redis, checkin)

        return CheckinResult(
            checkin_id=checkin.id,
            member_id=member.id,
            gym_id=gym_id,
            access_decision=decision,
            decision_reason=checkin.decision_reason,
            access_type=access_type.value,
        )

    def list_today(
        self, db: Session, *, viewer: User, gym_id: int, now: Optional[datetime] = None
    ) -> List[Checkin]:
        """
        Check-ins del día local de la sede. Es la fuente de verdad con la que
        el panel del staff se resincroniza tras cada reconexión.
        """
        gym = gym_repository.get(db, gym_id)
        if gym is None:
            raise NotFoundError("Sede no encontrada", gym_id=gym_id)

        is_staff = staff_assignment_repository.get_for_user_and_gym(db, viewer.id, gym_id) is not None
        is_org = any(
            role.chain_id == gym.chain_id
            for role in organization_role_repository.get_for_user(db, viewer.id)
        )
        if not (is_staff or is_org):
            raise PermissionDeniedError("No tienes acceso a los check-ins de esta sede")

        start, end = local_day_bounds_utc(gym.timezone or "UTC", now)
        return checkin_repository.list_between(db, gym_id, start, end)


checkin_token_service = CheckInTokenService()
