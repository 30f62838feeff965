"""
Máquina de estados de la suscripción.

El estado de acceso (active / grace / restricted más el aviso `recovered`) es
una función pura de la suscripción actual y del reloj: nunca se cachea, se
re-deriva en la emisión y en la validación de cada token. Las transiciones
disparadas por facturación (webhooks) solo tocan los campos persistidos.
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple
import logging

from sqlalchemy.orm import Session

from gymaccess.core.config import get_settings
from gymaccess.core.timezone_utils import ensure_utc, utcnow
from gymaccess.models.subscription import Subscription, SubscriptionStatus, DelinquencyState
from gymaccess.repositories.subscription import subscription_repository
from gymaccess.schemas.subscription import AccessState, AccessStateName

logger = logging.getLogger(__name__)

# Estados de facturación que restringen el acceso sin importar la morosidad
TERMINAL_BILLING_STATUSES = (SubscriptionStatus.canceled, SubscriptionStatus.unpaid)

# Alta creada en la pasarela pero sin primer cobro: no entra, pero ocupa plaza
PENDING_FIRST_PAYMENT_STATUSES = (SubscriptionStatus.incomplete,)


def derive_access_state(subscription: Optional[Subscription], now: datetime) -> AccessState:
    """
    Deriva el estado de acceso de una suscripción en el instante `now`.

    Args:
        subscription: Suscripción actual del miembro (o None)
        now: Instante de evaluación (UTC)

    Returns:
        AccessState con estado, motivo, fin del periodo de gracia y aviso de recuperación
    """
    if subscription is None:
        return AccessState(state=AccessStateName.restricted, reason="NO_SUBSCRIPTION")

    if subscription.status in TERMINAL_BILLING_STATUSES + PENDING_FIRST_PAYMENT_STATUSES:
        return AccessState(
            state=AccessStateName.restricted,
            reason=f"SUBSCRIPTION_{subscription.status.value.upper()}",
        )

    delinquency = subscription.delinquency_state
    grace_until = ensure_utc(subscription.grace_period_until)

    if delinquency == DelinquencyState.restricted:
        return AccessState(state=AccessStateName.restricted, reason="PAYMENT_OVERDUE")

    if delinquency == DelinquencyState.grace:
        # En el instante exacto de fin de gracia el acceso ya está restringido
        if grace_until is not None and ensure_utc(now) < grace_until:
            return AccessState(
                state=AccessStateName.grace,
                reason="PAYMENT_FAILED",
                grace_period_until=grace_until,
            )
        return AccessState(
            state=AccessStateName.restricted,
            reason="GRACE_PERIOD_ELAPSED",
            grace_period_until=grace_until,
        )

    if delinquency == DelinquencyState.recovered:
        return AccessState(state=AccessStateName.active, reason="PAYMENT_RECOVERED", recovered=True)

    return AccessState(state=AccessStateName.active)


def can_issue_checkin_token(subscription: Optional[Subscription], now: datetime) -> bool:
    """True si el estado derivado permite entrar (active o grace)."""
    state = derive_access_state(subscription, now).state
    return state in (AccessStateName.active, AccessStateName.grace)


def holds_capacity_slot(subscription: Optional[Subscription], now: datetime) -> bool:
    """
    True si la suscripción ocupa plaza en los conteos de capacidad.

    Además de las que permiten entrar, ocupa plaza un alta pendiente del
    primer cobro: si no contara, cada alta en curso vería la sede libre.
    """
    if subscription is None:
        return False
    if subscription.status in PENDING_FIRST_PAYMENT_STATUSES:
        return subscription.delinquency_state == DelinquencyState.current
    return derive_access_state(subscription, now).state != AccessStateName.restricted


class SubscriptionStateMachine:
    """Transiciones persistidas a partir de eventos de facturación."""

    def get_current_state(
        self, db: Session, member_id: int, now: Optional[datetime] = None
    ) -> Tuple[Optional[Subscription], AccessState]:
        """
        Obtiene la suscripción actual del miembro y su estado derivado.
        """
        now = now or utcnow()
        subscription = subscription_repository.get_current(db, member_id)
        return subscription, derive_access_state(subscription, now)

    def apply_payment_failed(
        self, subscription: Subscription, now: datetime, grace_days: Optional[int] = None
    ) -> bool:
        """
        Pago fallido: current/recovered pasan a grace con una ventana nueva.

        Un fallo repetido durante la gracia nunca extiende la ventana.

        Returns:
            True si cambió el estado de morosidad
        """
        if grace_days is None:
            grace_days = get_settings().GRACE_PERIOD_DAYS

        # Sin un primer cobro no hay acceso que conservar durante una gracia
        if subscription.status in PENDING_FIRST_PAYMENT_STATUSES:
            logger.info(f"Primer cobro fallido en suscripción {subscription.id}; sigue pendiente")
            return False

        if subscription.status not in TERMINAL_BILLING_STATUSES:
            subscription.status = SubscriptionStatus.past_due

        if subscription.delinquency_state in (DelinquencyState.current, DelinquencyState.recovered):
            subscription.delinquency_state = DelinquencyState.grace
            subscription.grace_period_until = now + timedelta(days=grace_days)
            logger.info(
                f"Suscripción {subscription.id} entra en gracia hasta {subscription.grace_period_until.isoformat()}"
            )
            return True

        logger.info(
            f"Pago fallido en suscripción {subscription.id} ya en estado "
            f"{subscription.delinquency_state.value}; sin cambios"
        )
        return False

    def apply_payment_succeeded(self, subscription: Subscription, now: datetime) -> bool:
        """
        Cobro exitoso: grace o restricted pasan a recovered.

        Returns:
            True si cambió el estado de morosidad
        """
        # Una suscripción unpaid vuelve a active al cobrarse; una cancelada no
        if subscription.status == SubscriptionStatus.canceled:
            logger.warning(
                f"Cobro exitoso en suscripción {subscription.id} con estado "
                f"{subscription.status.value}; se ignora"
            )
            return False

        subscription.status = SubscriptionStatus.active
        if subscription.delinquency_state in (DelinquencyState.grace, DelinquencyState.restricted):
            previous = subscription.delinquency_state
            subscription.delinquency_state = DelinquencyState.recovered
            subscription.grace_period_until = None
            logger.info(f"Suscripción {subscription.id} recuperada desde {previous.value}")
            return True
        return False

    def apply_subscription_canceled(self, subscription: Subscription) -> bool:
        if subscription.status == SubscriptionStatus.canceled:
            return False
        subscription.status = SubscriptionStatus.canceled
        logger.info(f"Suscripción {subscription.id} cancelada")
        return True

    def expire_grace(self, subscription: Subscription, now: datetime) -> bool:
        """
        Persiste grace -> restricted cuando la ventana ya venció.

        La derivación ya trata la gracia vencida como restricted; esto solo
        materializa el estado para consultas y reportes.
        """
        if subscription.delinquency_state != DelinquencyState.grace:
            return False
        grace_until = ensure_utc(subscription.grace_period_until)
        if grace_until is not None and ensure_utc(now) < grace_until:
            return False
        subscription.delinquency_state = DelinquencyState.restricted
        logger.info(f"Periodo de gracia vencido para suscripción {subscription.id}")
        return True

    def acknowledge_recovery(self, db: Session, subscription: Subscription) -> bool:
        """
        Consume el aviso `recovered` exactamente una vez (recovered -> current).

        Returns:
            True si esta llamada consumió el aviso
        """
        consumed = subscription_repository.clear_recovered(db, subscription.id) == 1
        db.commit()
        db.refresh(subscription)
        if consumed:
            logger.info(f"Aviso de recuperación consumido para suscripción {subscription.id}")
        return consumed


subscription_state_machine = SubscriptionStateMachine()
