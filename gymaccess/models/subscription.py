from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum, Text, Index
from sqlalchemy.orm import relationship
import enum

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class AccessScope(str, enum.Enum):
    """Alcance de sedes que concede un plan."""
    SINGLE_GYM = "SINGLE_GYM"
    MULTI_GYM = "MULTI_GYM"
    ALL_ACCESS = "ALL_ACCESS"


class BillingInterval(str, enum.Enum):
    month = "month"
    year = "year"


class SubscriptionStatus(str, enum.Enum):
    """Estado de facturación tal y como lo reporta la pasarela."""
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    canceled = "canceled"
    unpaid = "unpaid"
    incomplete = "incomplete"   # Alta pendiente del primer cobro


class DelinquencyState(str, enum.Enum):
    """
    Estado de morosidad que gobierna el acceso físico.
    `recovered` es un aviso de un solo uso: se consume al mostrarse.
    """
    current = "current"
    grace = "grace"
    restricted = "restricted"
    recovered = "recovered"


class MembershipPlan(Base):
    """
    Plan de precios de una cadena.
    """
    __tablename__ = "membership_plans"

    id = Column(Integer, primary_key=True, index=True)
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Precio en centavos para evitar problemas de precisión
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), default="EUR", nullable=False)
    billing_interval = Column(Enum(BillingInterval), nullable=False, default=BillingInterval.month)
    access_scope = Column(Enum(AccessScope), nullable=False, default=AccessScope.SINGLE_GYM)

    stripe_price_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def price_amount(self) -> float:
        """Precio en formato decimal (euros, dólares, etc.)"""
        return self.price_cents / 100.0


class Subscription(Base):
    """
    Suscripción de un miembro a un plan. La "actual" es la más reciente por
    fecha de creación; el estado de acceso se deriva de ella y del reloj.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("membership_plans.id"), nullable=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=True, index=True)

    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.active)
    delinquency_state = Column(Enum(DelinquencyState), nullable=False, default=DelinquencyState.current)
    grace_period_until = Column(DateTime(timezone=True), nullable=True)

    stripe_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relaciones
    member = relationship("Member", back_populates="subscriptions")
    plan = relationship("MembershipPlan")
    gym = relationship("Gym")

    __table_args__ = (
        Index('ix_subscriptions_member_created', 'member_id', 'created_at'),
    )


class ProcessedBillingEvent(Base):
    """
    Eventos de la pasarela ya aplicados. La pasarela reintenta y reordena
    entregas; un mismo event_id solo se aplica una vez.
    """
    __tablename__ = "processed_billing_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=True)
    processed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
