# Inicializador del paquete repositories
from gymaccess.repositories.base import BaseRepository

from gymaccess.repositories.gym import gym_repository
from gymaccess.repositories.user import (
    user_repository,
    member_repository,
    staff_assignment_repository,
    organization_role_repository,
)
from gymaccess.repositories.access import (
    member_gym_access_repository,
    member_gym_access_event_repository,
)
from gymaccess.repositories.subscription import (
    membership_plan_repository,
    subscription_repository,
    processed_billing_event_repository,
)
from gymaccess.repositories.capacity import (
    gym_capacity_limit_repository,
    plan_location_capacity_limit_repository,
)
from gymaccess.repositories.checkin import checkin_token_repository, checkin_repository

__all__ = [
    "BaseRepository",
    "gym_repository",
    "user_repository",
    "member_repository",
    "staff_assignment_repository",
    "organization_role_repository",
    "member_gym_access_repository",
    "member_gym_access_event_repository",
    "membership_plan_repository",
    "subscription_repository",
    "processed_billing_event_repository",
    "gym_capacity_limit_repository",
    "plan_location_capacity_limit_repository",
    "checkin_token_repository",
    "checkin_repository",
]
