import pytest

from gymaccess.schemas.capacity import CapacityStatusName
from gymaccess.services.capacity import classify_capacity


@pytest.mark.parametrize(
    "count, max_members, soft, hard, expected",
    [
        (1000, None, 0.9, True, CapacityStatusName.OK),
        (0, 10, 0.9, False, CapacityStatusName.OK),
        (8, 10, 0.9, False, CapacityStatusName.OK),
        (9, 10, 0.9, False, CapacityStatusName.NEAR_LIMIT),
        (10, 10, 0.9, False, CapacityStatusName.AT_CAPACITY),
        (12, 10, 0.9, False, CapacityStatusName.AT_CAPACITY),
        (10, 10, 0.9, True, CapacityStatusName.BLOCK_NEW),
        (9, 10, 0.9, True, CapacityStatusName.NEAR_LIMIT),
        (5, 10, 0.5, False, CapacityStatusName.NEAR_LIMIT),
        (0, 0, 0.9, True, CapacityStatusName.BLOCK_NEW),
    ],
)
def test_classify_capacity(count, max_members, soft, hard, expected):
    assert classify_capacity(count, max_members, soft, hard) == expected
