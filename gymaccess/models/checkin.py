from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Index, text
from sqlalchemy.orm import relationship
import enum

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class CheckinSource(str, enum.Enum):
    qr = "qr"
    manual = "manual"


class AccessDecision(str, enum.Enum):
    """Decisión registrada con cada check-in."""
    ALLOWED_HOME = "ALLOWED_HOME"
    ALLOWED_SECONDARY = "ALLOWED_SECONDARY"
    ALLOWED_ALL_ACCESS = "ALLOWED_ALL_ACCESS"
    ALLOWED_OVERRIDE = "ALLOWED_OVERRIDE"


class CheckinToken(Base):
    """
    Credencial QR de corta duración. Solo se guarda el hash SHA-256 del
    valor; el valor en claro solo lo ve el miembro.
    """
    __tablename__ = "checkin_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    member = relationship("Member")

    __table_args__ = (
        # Como máximo un token sin consumir por miembro
        Index(
            'uq_checkin_tokens_member_unconsumed',
            'member_id',
            unique=True,
            postgresql_where=text("consumed_at IS NULL"),
            sqlite_where=text("consumed_at IS NULL"),
        ),
    )


class Checkin(Base):
    """Evento de check-in. Solo inserción, nunca se modifica."""
    __tablename__ = "checkins"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=False, index=True)
    checked_in_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    source = Column(Enum(CheckinSource), nullable=False, default=CheckinSource.qr)
    staff_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    token_id = Column(Integer, ForeignKey("checkin_tokens.id"), nullable=True)
    access_decision = Column(Enum(AccessDecision), nullable=False)
    decision_reason = Column(String(255), nullable=True)

    member = relationship("Member")
    gym = relationship("Gym")

    __table_args__ = (
        Index('ix_checkins_gym_checked_in', 'gym_id', 'checked_in_at'),
    )
