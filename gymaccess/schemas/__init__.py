from gymaccess.schemas.access import (
    LocationSummary, AccessibleLocations, SetHomeGymRequest, SetHomeGymResponse
)
from gymaccess.schemas.subscription import (
    AccessStateName, AccessState, AccessStateResponse,
    SubscriptionCreate, SubscriptionCreated, WebhookResponse
)
from gymaccess.schemas.capacity import (
    CapacityStatusName, CapacityStatusRequest, CapacityStatus, CapacityStatusPublic,
    CapacityManageRequest, CapacityLimit
)
from gymaccess.schemas.checkin import (
    CheckinTokenResponse, ValidateTokenRequest, CheckinResult, ManualCheckinRequest, Checkin
)
