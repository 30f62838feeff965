"""
Alta de suscripciones con control de capacidad y procesamiento de eventos de
facturación.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gymaccess.core.exceptions import (
    AccessControlError, BillingGatewayError, CapacityBlockedError, InvalidRequestError,
    NotFoundError, PermissionDeniedError
)
from gymaccess.core.timezone_utils import utcnow
from gymaccess.models.access import AccessType, AccessEventType, GrantStatus
from gymaccess.models.gym import Gym
from gymaccess.models.subscription import (
    AccessScope, MembershipPlan, SubscriptionStatus, DelinquencyState
)
from gymaccess.models.user import Member, User
from gymaccess.repositories.access import (
    member_gym_access_repository, member_gym_access_event_repository
)
from gymaccess.repositories.gym import gym_repository
from gymaccess.repositories.subscription import (
    membership_plan_repository, processed_billing_event_repository, subscription_repository
)
from gymaccess.repositories.user import member_repository
from gymaccess.schemas.capacity import CapacityStatusName
from gymaccess.schemas.subscription import SubscriptionCreate, SubscriptionCreated, WebhookResponse
from gymaccess.services.billing_gateway import BillingGateway
from gymaccess.services.capacity import capacity_admission_controller
from gymaccess.services.subscription_state import subscription_state_machine

logger = logging.getLogger(__name__)

# Estados de Stripe -> estado de facturación interno
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.trialing,
    "past_due": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
    "unpaid": SubscriptionStatus.unpaid,
    "incomplete": SubscriptionStatus.incomplete,
    "incomplete_expired": SubscriptionStatus.canceled,
    "paused": SubscriptionStatus.unpaid,
}

WARNING_STATUSES = (CapacityStatusName.NEAR_LIMIT, CapacityStatusName.AT_CAPACITY)


def map_gateway_status(status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get(status or "", SubscriptionStatus.unpaid)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """El ID de suscripción de una factura cambió de sitio entre versiones del API."""
    subscription_id = invoice.get("subscription")
    if isinstance(subscription_id, dict):
        subscription_id = subscription_id.get("id")
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


class SubscriptionService:

    def _grant_plan_access(self, db: Session, member: Member, gym: Gym, plan: MembershipPlan) -> None:
        """
        Concede el acceso que otorga el plan: la sede elegida pasa a ser la
        HOME del miembro. El alcance de cadena completa de un plan ALL_ACCESS
        se deriva del plan de la suscripción actual, no de la concesión.
        """
        previous_home = member_gym_access_repository.get_home_grant(db, member.id)
        if previous_home is not None and previous_home.gym_id != gym.id:
            previous_home.access_type = AccessType.SECONDARY
            if plan.access_scope == AccessScope.SINGLE_GYM:
                previous_home.status = GrantStatus.EXPIRED
            db.flush()

        grant = member_gym_access_repository.get_grant(db, member.id, gym.id)
        if grant is None:
            member_gym_access_repository.add(
                db, member_id=member.id, gym_id=gym.id,
                access_type=AccessType.HOME, status=GrantStatus.ACTIVE,
            )
        else:
            grant.access_type = AccessType.HOME
            grant.status = GrantStatus.ACTIVE
        member.home_gym_id = gym.id
        db.flush()

    def create_gym_subscription(
        self,
        db: Session,
        *,
        user: User,
        request: SubscriptionCreate,
        gateway: BillingGateway,
        now: Optional[datetime] = None,
    ) -> SubscriptionCreated:
        """
        Crea una suscripción en una sede respetando su capacidad.

        La capacidad se comprueba antes de cobrar y otra vez dentro de la
        transacción de alta con la fila de capacidad bloqueada. Si la
        comprobación final falla, se cancela la suscripción en la pasarela.

        Raises:
            PermissionDeniedError: Si el usuario no tiene perfil de miembro
            NotFoundError: Si el plan o la sede no existen o no están activos
            InvalidRequestError: Si el plan no pertenece a la cadena de la sede o no tiene precio
            CapacityBlockedError: Si la sede está llena con límite duro
            PlanCapacityBlockedError: Si el plan agotó su cupo en la sede
            BillingGatewayError: Si la pasarela falla
        """
        now = now or utcnow()
        member = member_repository.get_by_user_id(db, user.id)
        if member is None:
            raise PermissionDeniedError("No tienes un perfil de miembro")

        plan = membership_plan_repository.get_active(db, request.plan_id)
        if plan is None:
            raise NotFoundError("Plan no disponible", plan_id=request.plan_id)
        gym = gym_repository.get_active(db, request.gym_id)
        if gym is None:
            raise NotFoundError("Sede no encontrada o inactiva", gym_id=request.gym_id)
        if plan.chain_id != gym.chain_id:
            raise InvalidRequestError("El plan no está disponible en esta sede")
        if not plan.stripe_price_id:
            raise InvalidRequestError("El plan no tiene precio configurado en la pasarela")

        # Comprobación previa sin bloqueo para no cobrar en una sede llena
        status = capacity_admission_controller.get_capacity_status(db, gym.id, now)
        if status.status == CapacityStatusName.BLOCK_NEW and not capacity_admission_controller.is_member_counted(
            db, gym.id, member.id, now
        ):
            logger.info(f"Alta rechazada antes de cobrar: sede {gym.id} llena")
            raise CapacityBlockedError(gym_id=gym.id)
        capacity_admission_controller.ensure_plan_capacity(db, plan.id, gym.id, member.id, now)

        if not member.stripe_customer_id:
            member.stripe_customer_id = gateway.create_customer(email=user.email, user_id=user.id)
            db.commit()

        gateway_subscription = gateway.create_subscription(
            customer_id=member.stripe_customer_id,
            price_id=plan.stripe_price_id,
            metadata={"member_id": str(member.id), "gym_id": str(gym.id), "plan_id": str(plan.id)},
        )

        try:
            status, already_counted = capacity_admission_controller.admit_new_subscription(
                db, gym.id, member.id, now
            )
            capacity_admission_controller.ensure_plan_capacity(
                db, plan.id, gym.id, member.id, now, lock=True
            )
            subscription = subscription_repository.add(
                db,
                member_id=member.id,
                plan_id=plan.id,
                gym_id=gym.id,
                status=map_gateway_status(gateway_subscription.status),
                delinquency_state=DelinquencyState.current,
                stripe_subscription_id=gateway_subscription.id,
                created_at=now,
            )
            self._grant_plan_access(db, member, gym, plan)
            capacity_admission_controller.verify_admission(
                db, gym.id, member.id, already_counted=already_counted, now=now
            )
            member_gym_access_event_repository.record(
                db,
                event_type=AccessEventType.SUBSCRIPTION_CREATED,
                member_id=member.id,
                gym_id=gym.id,
                actor_user_id=user.id,
                payload={"subscription_id": subscription.id, "plan_id": plan.id},
            )
            db.commit()
        except (AccessControlError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning(
                f"Alta revertida para miembro {member.id} en sede {gym.id} ({e.code}); "
                f"cancelando suscripción {gateway_subscription.id} en la pasarela"
            )
            try:
                gateway.cancel_subscription(gateway_subscription.id)
            except BillingGatewayError:
                logger.error(
                    f"No se pudo cancelar la suscripción {gateway_subscription.id}; requiere revisión manual"
                )
            if isinstance(e, CapacityBlockedError):
                member_gym_access_event_repository.record(
                    db,
                    event_type=AccessEventType.ADMISSION_ROLLED_BACK,
                    member_id=member.id,
                    gym_id=gym.id,
                    actor_user_id=user.id,
                    payload={"stripe_subscription_id": gateway_subscription.id, "error": e.code},
                )
                db.commit()
            raise

        logger.info(
            f"Suscripción {subscription.id} creada para miembro {member.id} en sede {gym.id} "
            f"(capacidad {status.status.value})"
        )
        return SubscriptionCreated(
            subscription_id=subscription.id,
            stripe_subscription_id=gateway_subscription.id,
            client_secret=gateway_subscription.client_secret,
            capacity_warning=status.status in WARNING_STATUSES,
        )

    def _apply_billing_event(
        self, db: Session, event_type: Optional[str], obj: Dict[str, Any], now: datetime
    ) -> WebhookResponse:
        if event_type in ("invoice.payment_failed", "invoice.paid", "invoice.payment_succeeded"):
            stripe_subscription_id = _invoice_subscription_id(obj)
        elif event_type in ("customer.subscription.deleted", "customer.subscription.updated"):
            stripe_subscription_id = obj.get("id")
        else:
            logger.debug(f"Evento no manejado: {event_type}")
            return WebhookResponse(status="ignored", event_type=event_type)

        subscription = (
            subscription_repository.get_by_stripe_id(db, stripe_subscription_id)
            if stripe_subscription_id else None
        )
        if subscription is None:
            logger.warning(f"Evento {event_type} para suscripción desconocida {stripe_subscription_id}")
            return WebhookResponse(
                status="ignored", event_type=event_type, message="Suscripción desconocida"
            )

        if event_type == "invoice.payment_failed":
            subscription_state_machine.apply_payment_failed(subscription, now)
        elif event_type in ("invoice.paid", "invoice.payment_succeeded"):
            subscription_state_machine.apply_payment_succeeded(subscription, now)
        elif event_type == "customer.subscription.deleted":
            subscription_state_machine.apply_subscription_canceled(subscription)
        else:
            new_status = map_gateway_status(obj.get("status"))
            if new_status == SubscriptionStatus.canceled:
                subscription_state_machine.apply_subscription_canceled(subscription)
            elif new_status == SubscriptionStatus.unpaid:
                subscription.status = SubscriptionStatus.unpaid
            elif (
                new_status in (SubscriptionStatus.active, SubscriptionStatus.trialing)
                and subscription.status == SubscriptionStatus.incomplete
            ):
                # El primer cobro se confirmó antes de recibir la factura
                subscription.status = new_status

        return WebhookResponse(status="processed", event_type=event_type)

    def handle_billing_event(
        self, db: Session, event: Dict[str, Any], now: Optional[datetime] = None
    ) -> WebhookResponse:
        """
        Aplica un evento de facturación verificado a la máquina de estados.

        Cada event_id se registra en la misma transacción que sus efectos, así
        que una reentrega (o dos entregas simultáneas) se aplica una sola vez.

        Args:
            db: Sesión de base de datos
            event: Evento de la pasarela ya verificado
            now: Instante de procesamiento

        Returns:
            WebhookResponse con status "processed", "ignored" o "duplicate"
        """
        now = now or utcnow()
        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        logger.info(f"Procesando evento de facturación: {event_type} ({event_id})")

        if event_id:
            if processed_billing_event_repository.get_by_event_id(db, event_id) is not None:
                logger.info(f"Evento {event_id} ya procesado; se ignora la reentrega")
                return WebhookResponse(status="duplicate", event_type=event_type)
            try:
                processed_billing_event_repository.add(
                    db, event_id=event_id, event_type=event_type, processed_at=now
                )
            except IntegrityError:
                db.rollback()
                logger.info(f"Evento {event_id} registrado por una entrega concurrente")
                return WebhookResponse(status="duplicate", event_type=event_type)

        response = self._apply_billing_event(db, event_type, obj, now)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Evento {event_id} registrado por una entrega concurrente")
            return WebhookResponse(status="duplicate", event_type=event_type)
        return response

    def get_access_state(self, db: Session, user: User, now: Optional[datetime] = None):
        """
        Estado de acceso del miembro autenticado. Si la suscripción estaba
        `recovered`, el aviso se devuelve una vez y se consume.
        """
        now = now or utcnow()
        member = member_repository.get_by_user_id(db, user.id)
        if member is None:
            raise PermissionDeniedError("No tienes un perfil de miembro")

        subscription, state = subscription_state_machine.get_current_state(db, member.id, now)
        if state.recovered and subscription is not None:
            if not subscription_state_machine.acknowledge_recovery(db, subscription):
                # Otro request ya mostró el aviso
                state = state.model_copy(update={"recovered": False, "reason": None})
        return subscription, state

    def expire_elapsed_grace_periods(self, db: Session, now: Optional[datetime] = None) -> int:
        """Persiste grace -> restricted para todas las ventanas vencidas."""
        now = now or utcnow()
        updated = 0
        for subscription in subscription_repository.get_with_elapsed_grace(db, now):
            if subscription_state_machine.expire_grace(subscription, now):
                updated += 1
        db.commit()
        return updated


subscription_service = SubscriptionService()
