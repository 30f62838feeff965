from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, JSON, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint
import enum

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class AccessType(str, enum.Enum):
    """
    Tipo de concesión de acceso de un miembro a una sede.
    """
    HOME = "HOME"               # Sede principal, como máximo una por miembro
    SECONDARY = "SECONDARY"     # Sede adicional de un plan multi-sede
    ALL_ACCESS = "ALL_ACCESS"   # Ancla de un plan de cadena completa


class GrantStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"


class AccessEventType(str, enum.Enum):
    """Tipos de eventos del registro de auditoría de accesos."""
    HOME_GYM_CHANGED = "HOME_GYM_CHANGED"
    CHECKIN_OVERRIDE = "CHECKIN_OVERRIDE"
    CHECKIN_DENIED = "CHECKIN_DENIED"
    CAPACITY_LIMIT_UPDATED = "CAPACITY_LIMIT_UPDATED"
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    ADMISSION_ROLLED_BACK = "ADMISSION_ROLLED_BACK"
    PLAN_CAPACITY_LIMIT_UPDATED = "PLAN_CAPACITY_LIMIT_UPDATED"
    PLAN_CAPACITY_LIMIT_REMOVED = "PLAN_CAPACITY_LIMIT_REMOVED"


class MemberGymAccess(Base):
    """
    Concesión de acceso (miembro, sede). Las filas ALL_ACCESS anclan el plan a
    una sede; la expansión a toda la cadena se resuelve en tiempo de consulta.
    """
    __tablename__ = "member_gym_access"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=False, index=True)
    access_type = Column(Enum(AccessType), nullable=False)
    status = Column(Enum(GrantStatus), nullable=False, default=GrantStatus.ACTIVE, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    member = relationship("Member", back_populates="access_grants")
    gym = relationship("Gym")

    __table_args__ = (
        UniqueConstraint('member_id', 'gym_id', name='uq_member_gym_access'),
        # Como máximo una sede HOME por miembro
        Index(
            'uq_member_gym_access_home',
            'member_id',
            unique=True,
            postgresql_where=text("access_type = 'HOME'"),
            sqlite_where=text("access_type = 'HOME'"),
        ),
    )


class MemberGymAccessEvent(Base):
    """Registro de auditoría de solo inserción."""
    __tablename__ = "member_gym_access_events"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=True, index=True)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    event_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
