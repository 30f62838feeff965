from gymaccess.models.gym import Chain, Gym
from gymaccess.models.user import (
    User, Member, StaffAssignment, OrganizationRole,
    UserRole, MemberStatus, StaffRole, OrganizationRoleType
)
from gymaccess.models.access import (
    MemberGymAccess, MemberGymAccessEvent, AccessType, GrantStatus, AccessEventType
)
from gymaccess.models.subscription import (
    MembershipPlan, Subscription, AccessScope, BillingInterval,
    SubscriptionStatus, DelinquencyState, ProcessedBillingEvent
)
from gymaccess.models.capacity import GymCapacityLimit, PlanLocationCapacityLimit
from gymaccess.models.checkin import CheckinToken, Checkin, CheckinSource, AccessDecision
