from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.schema import UniqueConstraint
import enum

from gymaccess.db.base_class import Base
from gymaccess.core.timezone_utils import utcnow


class UserRole(str, enum.Enum):
    """Rol global de la identidad autenticada."""
    member = "member"
    staff = "staff"
    owner = "owner"


class MemberStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class StaffRole(str, enum.Enum):
    """
    Roles del staff dentro de una sede.
    """
    FRONT_DESK = "FRONT_DESK"   # Recepción, valida QRs
    TRAINER = "TRAINER"         # Entrenador
    MANAGER = "MANAGER"         # Gerente de sede, puede forzar check-ins
    ADMIN = "ADMIN"             # Administrador de sede


class OrganizationRoleType(str, enum.Enum):
    CORPORATE_ADMIN = "CORPORATE_ADMIN"
    REGIONAL_MANAGER = "REGIONAL_MANAGER"


class User(Base):
    """
    Identidad autenticada. auth_id es el claim `sub` del JWT del proveedor.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    auth_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.member)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relaciones
    member = relationship("Member", back_populates="user", uselist=False)
    staff_assignments = relationship("StaffAssignment", back_populates="user")
    organization_roles = relationship("OrganizationRole", back_populates="user")


class Member(Base):
    """Perfil de miembro asociado a una identidad."""
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    home_gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=True, index=True)
    status = Column(Enum(MemberStatus), nullable=False, default=MemberStatus.active)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relaciones
    user = relationship("User", back_populates="member")
    home_gym = relationship("Gym")
    access_grants = relationship("MemberGymAccess", back_populates="member")
    subscriptions = relationship("Subscription", back_populates="member")


class StaffAssignment(Base):
    """
    Asignación de un usuario como staff de una sede.
    Si un usuario tiene asignaciones, su conjunto de sedes accesibles es
    exactamente el de sus asignaciones activas.
    """
    __tablename__ = "staff_assignments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    gym_id = Column(Integer, ForeignKey("gyms.id"), nullable=False, index=True)
    role = Column(Enum(StaffRole), nullable=False, default=StaffRole.FRONT_DESK)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="staff_assignments")
    gym = relationship("Gym")

    # Un usuario solo puede tener un rol por sede
    __table_args__ = (
        UniqueConstraint('user_id', 'gym_id', name='uq_staff_assignment_user_gym'),
    )


class OrganizationRole(Base):
    """Rol de un usuario a nivel de cadena."""
    __tablename__ = "organization_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    chain_id = Column(Integer, ForeignKey("chains.id"), nullable=False, index=True)
    role = Column(Enum(OrganizationRoleType), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="organization_roles")

    __table_args__ = (
        UniqueConstraint('user_id', 'chain_id', 'role', name='uq_organization_role'),
    )
