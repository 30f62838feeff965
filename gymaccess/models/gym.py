from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class Chain(Base):
    """
    Cadena (organización) propietaria de una o varias sedes.
    Un plan ALL_ACCESS da acceso a todas las sedes activas de su cadena.
    """
    __tablename__ = "chains"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    gyms = relationship("Gym", back_populates="chain")


class Gym(Base):
    """
    Sede física. Nunca se borra: se desactiva con is_active=False y deja de
    aparecer en el conjunto de sedes accesibles.
    """
    __tablename__ = "gyms"

    id = Column(Integer, primary_key=True, index=True)
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=True)
    address = Column(String(255), nullable=True)
    timezone = Column(String(50), nullable=False, default='UTC')  # Zona horaria de la sede (ej: 'America/Mexico_City')
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relaciones
    chain = relationship("Chain", back_populates="gyms")
    capacity_limit = relationship("GymCapacityLimit", back_populates="gym", uselist=False)
