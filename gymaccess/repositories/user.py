from typing import List, Optional

from sqlalchemy.orm import Session

from gymaccess.models.user import (
    User, Member, StaffAssignment, OrganizationRole, OrganizationRoleType
)
from gymaccess.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):

    def get_by_auth_id(self, db: Session, auth_id: str) -> Optional[User]:
        """Busca la identidad por el claim `sub` del JWT."""
        return db.query(User).filter(User.auth_id == auth_id).first()


class MemberRepository(BaseRepository[Member]):

    def get_by_user_id(self, db: Session, user_id: int) -> Optional[Member]:
        return db.query(Member).filter(Member.user_id == user_id).first()


class StaffAssignmentRepository(BaseRepository[StaffAssignment]):

    def get_for_user(self, db: Session, user_id: int) -> List[StaffAssignment]:
        return (
            db.query(StaffAssignment)
            .filter(StaffAssignment.user_id == user_id)
            .order_by(StaffAssignment.gym_id)
            .all()
        )

    def get_for_user_and_gym(self, db: Session, user_id: int, gym_id: int) -> Optional[StaffAssignment]:
        return (
            db.query(StaffAssignment)
            .filter(StaffAssignment.user_id == user_id, StaffAssignment.gym_id == gym_id)
            .first()
        )


class OrganizationRoleRepository(BaseRepository[OrganizationRole]):

    def has_role(
        self, db: Session, user_id: int, chain_id: int, role: OrganizationRoleType
    ) -> bool:
        query = db.query(OrganizationRole.id).filter(
            OrganizationRole.user_id == user_id,
            OrganizationRole.chain_id == chain_id,
            OrganizationRole.role == role,
        )
        return db.query(query.exists()).scalar()

    def get_for_user(self, db: Session, user_id: int) -> List[OrganizationRole]:
        return db.query(OrganizationRole).filter(OrganizationRole.user_id == user_id).all()


user_repository = UserRepository(User)
member_repository = MemberRepository(Member)
staff_assignment_repository = StaffAssignmentRepository(StaffAssignment)
organization_role_repository = OrganizationRoleRepository(OrganizationRole)
