"""
Tests de los endpoints de check-in: emisión y validación de QR, check-in
manual, listado del día y WebSocket.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from jose import jwt
from starlette.websockets import WebSocketDisconnect

from gymaccess.models.checkin import CheckinToken
from gymaccess.models.subscription import SubscriptionStatus
from gymaccess.models.user import StaffRole


@pytest.fixture
def gyms(factory):
    chain = factory.chain()
    home = factory.gym(chain, "Centro")
    other = factory.gym(chain, "Norte")
    return {
        "home": home,
        "other": other,
        "member": factory.active_member(home),
        "staff_home": factory.staff(home, StaffRole.FRONT_DESK),
        "staff_other": factory.staff(other, StaffRole.FRONT_DESK),
    }


class TestCheckinTokenEndpoints:

    def test_requires_authentication(self, client):
        response = client.post("/api/v1/checkins/tokens")
        assert response.status_code == 401

    def test_issue_and_validate_token(self, client, auth, gyms, redis_mock):
        auth.login(gyms["member"].user)
        issued = client.post("/api/v1/checkins/tokens")
        assert issued.status_code == 201
        token = issued.json()["token"]

        auth.login(gyms["staff_home"])
        response = client.post("/api/v1/checkins/validate", json={"token": token, "gym_id": gyms["home"].id})

        assert response.status_code == 200
        data = response.json()
        assert data["member_id"] == gyms["member"].id
        assert data["access_decision"] == "ALLOWED_HOME"
        redis_mock.publish.assert_awaited_once()

    def test_token_cannot_be_used_twice(self, client, auth, gyms):
        auth.login(gyms["member"].user)
        token = client.post("/api/v1/checkins/tokens").json()["token"]

        auth.login(gyms["staff_home"])
        body = {"token": token, "gym_id": gyms["home"].id}
        assert client.post("/api/v1/checkins/validate", json=body).status_code == 200
        second = client.post("/api/v1/checkins/validate", json=body)

        assert second.status_code == 409
        assert second.json()["error"] == "TOKEN_ALREADY_USED"

    def test_unknown_token(self, client, auth, gyms):
        auth.login(gyms["staff_home"])
        response = client.post("/api/v1/checkins/validate", json={"token": "nope", "gym_id": gyms["home"].id})

        assert response.status_code == 404
        assert response.json()["error"] == "TOKEN_NOT_FOUND"

    def test_expired_token(self, client, auth, gyms, db):
        auth.login(gyms["member"].user)
        token = client.post("/api/v1/checkins/tokens").json()["token"]
        stored = db.query(CheckinToken).one()
        stored.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        db.commit()

        auth.login(gyms["staff_home"])
        response = client.post("/api/v1/checkins/validate", json={"token": token, "gym_id": gyms["home"].id})

        assert response.status_code == 410
        assert response.json()["error"] == "TOKEN_EXPIRED"

    def test_location_denied_for_home_only_member(self, client, auth, gyms):
        auth.login(gyms["member"].user)
        token = client.post("/api/v1/checkins/tokens").json()["token"]

        auth.login(gyms["staff_other"])
        response = client.post("/api/v1/checkins/validate", json={"token": token, "gym_id": gyms["other"].id})

        assert response.status_code == 403
        assert response.json()["error"] == "LOCATION_ACCESS_DENIED"

    def test_restricted_member_cannot_issue(self, client, auth, factory):
        gym = factory.gym(factory.chain())
        member = factory.active_member(gym, status=SubscriptionStatus.canceled)
        auth.login(member.user)

        response = client.post("/api/v1/checkins/tokens")

        assert response.status_code == 403
        assert response.json()["error"] == "ACCESS_RESTRICTED"


class TestManualCheckinAndListing:

    def test_manual_checkin_then_listed_today(self, client, auth, gyms):
        auth.login(gyms["staff_home"])
        response = client.post(
            "/api/v1/checkins/manual", json={"member_id": gyms["member"].id, "gym_id": gyms["home"].id}
        )
        assert response.status_code == 200

        today = client.get("/api/v1/checkins/today", params={"gym_id": gyms["home"].id})

        assert today.status_code == 200
        assert [c["member_id"] for c in today.json()] == [gyms["member"].id]
        assert today.json()[0]["source"] == "manual"

    def test_member_cannot_list(self, client, auth, gyms):
        auth.login(gyms["member"].user)
        response = client.get("/api/v1/checkins/today", params={"gym_id": gyms["home"].id})

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"


def make_token(user):
    claims = {
        "sub": user.auth_id,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    return jwt.encode(claims, "test-secret", algorithm="HS256")


class FakeSubscriber:
    """Suscriptor que no toca Redis: espera hasta que se le pide parar."""

    def __init__(self, gym_id, deliver, refetch):
        self.gym_id = gym_id
        self._stopped = False

    async def run(self):
        while not self._stopped:
            await asyncio.sleep(0.01)

    def stop(self):
        self._stopped = True


class TestCheckinWebSocket:

    def test_rejects_missing_token(self, client, gyms):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/v1/checkins/ws?gym_id={gyms['home'].id}") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_rejects_member(self, client, gyms):
        token = make_token(gyms["member"].user)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(
                f"/api/v1/checkins/ws?gym_id={gyms['home'].id}&access_token={token}"
            ) as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_staff_receives_connection_message(self, client, gyms):
        token = make_token(gyms["staff_home"])
        with patch("gymaccess.api.v1.endpoints.checkins.CheckinStreamSubscriber", FakeSubscriber):
            with client.websocket_connect(
                f"/api/v1/checkins/ws?gym_id={gyms['home'].id}&access_token={token}"
            ) as ws:
                message = ws.receive_json()

        assert message["type"] == "connection"
        assert message["gym_id"] == gyms["home"].id
