from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from gymaccess.models.subscription import (
    MembershipPlan, Subscription, DelinquencyState, ProcessedBillingEvent
)
from gymaccess.repositories.base import BaseRepository


class MembershipPlanRepository(BaseRepository[MembershipPlan]):

    def get_active(self, db: Session, plan_id: int) -> Optional[MembershipPlan]:
        return (
            db.query(MembershipPlan)
            .filter(MembershipPlan.id == plan_id, MembershipPlan.is_active == True)
            .first()
        )


class SubscriptionRepository(BaseRepository[Subscription]):
    """
    Suscripciones. La "actual" de un miembro es la más reciente por
    created_at (con el ID como desempate).
    """

    def get_current(self, db: Session, member_id: int) -> Optional[Subscription]:
        return (
            db.query(Subscription)
            .filter(Subscription.member_id == member_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def get_current_for_members(
        self, db: Session, member_ids: Sequence[int]
    ) -> Dict[int, Subscription]:
        """
        Obtener la suscripción actual de cada miembro en una sola consulta.

        Returns:
            Diccionario {member_id: suscripción actual}; los miembros sin
            suscripción no aparecen
        """
        if not member_ids:
            return {}
        rows = (
            db.query(Subscription)
            .filter(Subscription.member_id.in_(list(member_ids)))
            .order_by(Subscription.member_id, Subscription.created_at.desc(), Subscription.id.desc())
            .all()
        )
        current: Dict[int, Subscription] = {}
        for row in rows:
            current.setdefault(row.member_id, row)
        return current

    def get_member_ids_with_plan_at_gym(self, db: Session, plan_id: int, gym_id: int) -> List[int]:
        """
        Miembros con alguna suscripción al plan en la sede. Puede incluir
        suscripciones ya sustituidas: el llamador filtra por la actual.
        """
        rows = (
            db.query(Subscription.member_id)
            .filter(Subscription.plan_id == plan_id, Subscription.gym_id == gym_id)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def get_by_stripe_id(self, db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
        return (
            db.query(Subscription)
            .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
            .first()
        )

    def get_with_elapsed_grace(self, db: Session, now: datetime) -> List[Subscription]:
        return (
            db.query(Subscription)
            .filter(
                Subscription.delinquency_state == DelinquencyState.grace,
                # Una gracia sin fecha de fin ya se considera vencida
                or_(Subscription.grace_period_until.is_(None), Subscription.grace_period_until <= now),
            )
            .all()
        )

    def clear_recovered(self, db: Session, subscription_id: int) -> int:
        """
        Consume el aviso `recovered` con un update condicional.

        Returns:
            Filas afectadas; 0 si otro request ya lo había consumido
        """
        result = db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.delinquency_state == DelinquencyState.recovered,
            )
            .values(delinquency_state=DelinquencyState.current, grace_period_until=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class ProcessedBillingEventRepository(BaseRepository[ProcessedBillingEvent]):

    def get_by_event_id(self, db: Session, event_id: str) -> Optional[ProcessedBillingEvent]:
        return (
            db.query(ProcessedBillingEvent)
            .filter(ProcessedBillingEvent.event_id == event_id)
            .first()
        )


membership_plan_repository = MembershipPlanRepository(MembershipPlan)
subscription_repository = SubscriptionRepository(Subscription)
processed_billing_event_repository = ProcessedBillingEventRepository(ProcessedBillingEvent)
