from sqlalchemy import Column, Integer, Boolean, Float, DateTime, ForeignKey
from sqlalchemy.schema import UniqueConstraint
from sqlalchemy.orm import relationship

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class GymCapacityLimit(Base):
    """
    Límite de miembros activos de una sede. Sin fila, o con
    max_active_members nulo, la sede es ilimitada.
    """
    __tablename__ = "gym_capacity_limits"

    id = Column(Integer, primary_key=True, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), unique=True, nullable=False)
    max_active_members = Column(Integer, nullable=True)
    soft_limit_threshold = Column(Float, nullable=True)  # Fracción en (0, 1]
    hard_limit_enforced = Column(Boolean, default=False, nullable=False)
    updated_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    gym = relationship("Gym", back_populates="capacity_limit")


class PlanLocationCapacityLimit(Base):
    """
    Cupo de un plan en una sede concreta, independiente del límite de la
    sede. Sin fila, o con max_active_members nulo, el plan no tiene cupo.
    """
    __tablename__ = "plan_location_capacity_limits"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("membership_plans.id"), nullable=False, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=False, index=True)
    max_active_members = Column(Integer, nullable=True)
    updated_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    plan = relationship("MembershipPlan")
    gym = relationship("Gym")

    __table_args__ = (
        UniqueConstraint('plan_id', 'gym_id', name='uq_plan_location_capacity'),
    )
