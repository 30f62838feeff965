# Importar todos los modelos para que Alembic los detecte
from gymaccess.db.base_class import Base  # noqa
from gymaccess.models.gym import Chain, Gym  # noqa
from gymaccess.models.user import User, Member, StaffAssignment, OrganizationRole  # noqa
from gymaccess.models.access import MemberGymAccess, MemberGymAccessEvent  # noqa
from gymaccess.models.subscription import MembershipPlan, Subscription, ProcessedBillingEvent  # noqa
from gymaccess.models.capacity import GymCapacityLimit, PlanLocationCapacityLimit  # noqa
from gymaccess.models.checkin import CheckinToken, Checkin  # noqa
