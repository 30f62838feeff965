"""
Tests de emisión y validación de tokens QR de check-in.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update

from gymaccess.core.exceptions import (
    AccessRestrictedError, LocationAccessDeniedError, NotFoundError, PermissionDeniedError,
    TokenAlreadyUsedError, TokenExpiredError, TokenNotFoundError
)
from gymaccess.models.access import AccessType, AccessEventType
from gymaccess.models.checkin import AccessDecision, Checkin, CheckinSource, CheckinToken
from gymaccess.models.subscription import SubscriptionStatus, DelinquencyState
from gymaccess.models.user import MemberStatus, StaffRole
from gymaccess.repositories.checkin import checkin_repository, checkin_token_repository
from gymaccess.services.checkin_tokens import checkin_token_service, hash_token


@pytest.fixture
def scenario(factory):
    """Cadena con dos sedes, un miembro con HOME en la primera y staff en ambas."""
    chain = factory.chain()
    home = factory.gym(chain, "Centro")
    other = factory.gym(chain, "Norte")
    member = factory.active_member(home)
    return {
        "chain": chain,
        "home": home,
        "other": other,
        "member": member,
        "front_desk_home": factory.staff(home, StaffRole.FRONT_DESK),
        "front_desk_other": factory.staff(other, StaffRole.FRONT_DESK),
        "manager_other": factory.staff(other, StaffRole.MANAGER),
    }


class TestIssueToken:

    def test_issue_returns_raw_token_and_stores_hash(self, db, scenario, now):
        member = scenario["member"]

        issued = checkin_token_service.issue_token(db, member.user, now)

        assert issued.member_id == member.id
        assert issued.expires_at == now + timedelta(seconds=120)
        stored = checkin_token_repository.get_by_hash(db, hash_token(issued.token))
        assert stored is not None
        assert stored.consumed_at is None
        assert db.query(CheckinToken).filter(CheckinToken.token_hash == issued.token).first() is None

    def test_new_token_supersedes_previous(self, db, scenario, now):
        member = scenario["member"]

        first = checkin_token_service.issue_token(db, member.user, now)
        second = checkin_token_service.issue_token(db, member.user, now + timedelta(seconds=5))

        assert first.token != second.token
        pending = db.query(CheckinToken).filter(
            CheckinToken.member_id == member.id, CheckinToken.consumed_at.is_(None)
        ).all()
        assert [t.token_hash for t in pending] == [hash_token(second.token)]

    def test_non_member_cannot_issue(self, db, factory, now):
        with pytest.raises(PermissionDeniedError):
            checkin_token_service.issue_token(db, factory.user(), now)

    def test_restricted_member_cannot_issue(self, db, factory, now):
        gym = factory.gym(factory.chain())
        member = factory.active_member(gym, status=SubscriptionStatus.canceled)

        with pytest.raises(AccessRestrictedError) as exc_info:
            checkin_token_service.issue_token(db, member.user, now)
        assert exc_info.value.context["reason"] == "SUBSCRIPTION_CANCELED"

    def test_inactive_member_cannot_issue(self, db, factory, now):
        gym = factory.gym(factory.chain())
        member = factory.member(home_gym=gym, status=MemberStatus.inactive)
        factory.grant(member, gym)
        factory.subscription(member)

        with pytest.raises(AccessRestrictedError) as exc_info:
            checkin_token_service.issue_token(db, member.user, now)
        assert exc_info.value.context["reason"] == "MEMBER_INACTIVE"

    def test_member_in_grace_can_issue(self, db, factory, now):
        gym = factory.gym(factory.chain())
        member = factory.active_member(
            gym, delinquency_state=DelinquencyState.grace, grace_period_until=now + timedelta(days=2)
        )

        assert checkin_token_service.issue_token(db, member.user, now).member_id == member.id


class TestValidateToken:

    @pytest.mark.asyncio
    async def test_home_gym_checkin(self, db, scenario, now, redis_mock):
        """Escenario 1: el miembro entra en su sede principal."""
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_home"], token=issued.token,
            gym_id=scenario["home"].id, redis=redis_mock, now=now + timedelta(seconds=10),
        )

        assert result.access_decision == AccessDecision.ALLOWED_HOME
        assert result.access_type == "HOME"
        checkin = checkin_repository.get(db, result.checkin_id)
        assert checkin.source == CheckinSource.qr
        assert checkin.staff_user_id == scenario["front_desk_home"].id
        redis_mock.publish.assert_awaited_once()
        channel = redis_mock.publish.await_args.args[0]
        assert channel == f"gym:{scenario['home'].id}:checkins"

    @pytest.mark.asyncio
    async def test_secondary_gym_checkin(self, db, factory, scenario, now):
        """Escenario 2: sede secundaria de un plan multi-sede."""
        factory.grant(scenario["member"], scenario["other"], AccessType.SECONDARY)
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_other"], token=issued.token, gym_id=scenario["other"].id, now=now,
        )

        assert result.access_decision == AccessDecision.ALLOWED_SECONDARY

    @pytest.mark.asyncio
    async def test_all_access_checkin(self, db, factory, scenario, now):
        """Escenario 3: plan de acceso total en una sede distinta a la ancla."""
        member = factory.member()
        factory.grant(member, scenario["home"], AccessType.ALL_ACCESS)
        factory.subscription(member)
        issued = checkin_token_service.issue_token(db, member.user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_other"], token=issued.token, gym_id=scenario["other"].id, now=now,
        )

        assert result.access_decision == AccessDecision.ALLOWED_ALL_ACCESS

    @pytest.mark.asyncio
    async def test_location_denied_does_not_burn_token(self, db, scenario, now, audit_events):
        """Escenario 4: sin acceso a la sede; el token sigue sirviendo en su sede."""
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        with pytest.raises(LocationAccessDeniedError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_other"], token=issued.token, gym_id=scenario["other"].id, now=now,
            )

        events = audit_events(member_id=scenario["member"].id)
        assert [e.event_type for e in events] == [AccessEventType.CHECKIN_DENIED.value]
        assert events[0].payload["reason"] == "NO_GYM_ACCESS"

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_home"], token=issued.token, gym_id=scenario["home"].id, now=now,
        )
        assert result.access_decision == AccessDecision.ALLOWED_HOME

    @pytest.mark.asyncio
    async def test_manager_override_is_audited(self, db, scenario, now, audit_events):
        """Escenario 5: un MANAGER fuerza la entrada en una sede sin acceso."""
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["manager_other"], token=issued.token,
            gym_id=scenario["other"].id, override=True, now=now,
        )

        assert result.access_decision == AccessDecision.ALLOWED_OVERRIDE
        events = audit_events(member_id=scenario["member"].id)
        assert [e.event_type for e in events] == [AccessEventType.CHECKIN_OVERRIDE.value]
        assert events[0].payload["checkin_id"] == result.checkin_id

    @pytest.mark.asyncio
    async def test_front_desk_cannot_override(self, db, scenario, now):
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        with pytest.raises(LocationAccessDeniedError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_other"], token=issued.token,
                gym_id=scenario["other"].id, override=True, now=now,
            )

    @pytest.mark.asyncio
    async def test_token_consumed_only_once(self, db, scenario, now):
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)
        kwargs = dict(staff=scenario["front_desk_home"], token=issued.token, gym_id=scenario["home"].id, now=now)

        await checkin_token_service.validate_token(db, **kwargs)
        with pytest.raises(TokenAlreadyUsedError):
            await checkin_token_service.validate_token(db, **kwargs)

        assert len(db.query(Checkin).filter(Checkin.gym_id == scenario["home"].id).all()) == 1

    @pytest.mark.asyncio
    async def test_concurrent_consumption_loses_cleanly(self, db, scenario, now):
        """Si otra validación consume el token primero, no se crea un segundo check-in."""
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)
        token_id = checkin_token_repository.get_by_hash(db, hash_token(issued.token)).id

        def consumed_elsewhere(session, tid, when):
            session.execute(
                update(CheckinToken).where(CheckinToken.id == tid).values(consumed_at=when)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return 0

        with patch.object(checkin_token_repository, "consume", side_effect=consumed_elsewhere):
            with pytest.raises(TokenAlreadyUsedError):
                await checkin_token_service.validate_token(
                    db, staff=scenario["front_desk_home"], token=issued.token,
                    gym_id=scenario["home"].id, now=now,
                )

        assert db.query(Checkin).filter(Checkin.gym_id == scenario["home"].id).all() == []
        assert db.get(CheckinToken, token_id).consumed_at is not None

    @pytest.mark.asyncio
    async def test_two_connections_race_for_one_token(self, file_factory, file_session_factory, now):
        """Dos validaciones con su propia conexión ven el token pendiente; solo una lo consume."""
        gym = file_factory.gym(file_factory.chain())
        member = file_factory.active_member(gym)
        staff = file_factory.staff(gym, StaffRole.FRONT_DESK)
        issued = checkin_token_service.issue_token(file_factory.db, member.user, now)
        token_hash = hash_token(issued.token)

        first = file_session_factory()
        second = file_session_factory()
        results = []
        real_consume = checkin_token_repository.consume

        def recording_consume(session, token_id, when):
            rowcount = real_consume(session, token_id, when)
            results.append(rowcount)
            return rowcount

        try:
            # Ambas lecturas ocurren antes de cualquier escritura
            for session in (first, second):
                assert checkin_token_repository.get_by_hash(session, token_hash).consumed_at is None

            with patch.object(checkin_token_repository, "consume", side_effect=recording_consume):
                result = await checkin_token_service.validate_token(
                    first, staff=staff, token=issued.token, gym_id=gym.id, now=now,
                )
                with pytest.raises(TokenAlreadyUsedError):
                    await checkin_token_service.validate_token(
                        second, staff=staff, token=issued.token, gym_id=gym.id, now=now,
                    )
        finally:
            first.close()
            second.close()

        assert results == [1, 0]
        verify = file_session_factory()
        try:
            checkins = verify.query(Checkin).filter(Checkin.member_id == member.id).all()
            assert [c.id for c in checkins] == [result.checkin_id]
            assert checkin_token_repository.get_by_hash(verify, token_hash).consumed_at is not None
        finally:
            verify.close()

    @pytest.mark.asyncio
    async def test_expired_token(self, db, scenario, now):
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        with pytest.raises(TokenExpiredError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_home"], token=issued.token,
                gym_id=scenario["home"].id, now=now + timedelta(seconds=121),
            )

    @pytest.mark.asyncio
    async def test_token_valid_at_exact_expiry(self, db, scenario, now):
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_home"], token=issued.token,
            gym_id=scenario["home"].id, now=issued.expires_at,
        )

        assert result.checkin_id is not None

    @pytest.mark.asyncio
    async def test_unknown_token(self, db, scenario, now):
        with pytest.raises(TokenNotFoundError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_home"], token="no-existe", gym_id=scenario["home"].id, now=now,
            )

    @pytest.mark.asyncio
    async def test_expiry_checked_before_consumption(self, db, scenario, now):
        """Un token expirado y reemplazado se informa como expirado."""
        first = checkin_token_service.issue_token(db, scenario["member"].user, now)
        checkin_token_service.issue_token(db, scenario["member"].user, now + timedelta(seconds=200))

        with pytest.raises(TokenExpiredError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_home"], token=first.token,
                gym_id=scenario["home"].id, now=now + timedelta(seconds=200),
            )

    @pytest.mark.asyncio
    async def test_restricted_member_burns_token(self, db, scenario, now, audit_events):
        """Si la suscripción se restringe tras emitir el QR, el token se quema."""
        member = scenario["member"]
        issued = checkin_token_service.issue_token(db, member.user, now)
        subscription = member.subscriptions[0]
        subscription.status = SubscriptionStatus.canceled
        db.commit()

        with pytest.raises(AccessRestrictedError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_home"], token=issued.token, gym_id=scenario["home"].id, now=now,
            )

        stored = checkin_token_repository.get_by_hash(db, hash_token(issued.token))
        db.refresh(stored)
        assert stored.consumed_at is not None
        events = audit_events(member_id=member.id)
        assert events[-1].event_type == AccessEventType.CHECKIN_DENIED.value
        assert events[-1].payload["reason"] == "SUBSCRIPTION_CANCELED"

    @pytest.mark.asyncio
    async def test_grace_elapsed_between_issue_and_scan(self, db, scenario, now):
        member = scenario["member"]
        subscription = member.subscriptions[0]
        subscription.delinquency_state = DelinquencyState.grace
        subscription.grace_period_until = now + timedelta(seconds=30)
        db.commit()
        issued = checkin_token_service.issue_token(db, member.user, now)

        with pytest.raises(AccessRestrictedError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_home"], token=issued.token,
                gym_id=scenario["home"].id, now=now + timedelta(seconds=30),
            )

    @pytest.mark.asyncio
    async def test_staff_must_be_assigned_to_gym(self, db, scenario, now):
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        with pytest.raises(PermissionDeniedError):
            await checkin_token_service.validate_token(
                db, staff=scenario["front_desk_other"], token=issued.token, gym_id=scenario["home"].id, now=now,
            )

    @pytest.mark.asyncio
    async def test_redis_failure_does_not_fail_checkin(self, db, scenario, now, redis_mock):
        from redis.exceptions import ConnectionError as RedisConnectionError
        redis_mock.publish.side_effect = RedisConnectionError("sin conexión")
        issued = checkin_token_service.issue_token(db, scenario["member"].user, now)

        result = await checkin_token_service.validate_token(
            db, staff=scenario["front_desk_home"], token=issued.token,
            gym_id=scenario["home"].id, redis=redis_mock, now=now,
        )

        assert checkin_repository.get(db, result.checkin_id) is not None


class TestManualCheckinAndListing:

    @pytest.mark.asyncio
    async def test_manual_checkin(self, db, scenario, now, redis_mock):
        result = await checkin_token_service.manual_checkin(
            db, staff=scenario["front_desk_home"], member_id=scenario["member"].id,
            gym_id=scenario["home"].id, redis=redis_mock, now=now,
        )

        checkin = checkin_repository.get(db, result.checkin_id)
        assert checkin.source == CheckinSource.manual
        assert checkin.token_id is None
        redis_mock.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_manual_checkin_unknown_member(self, db, scenario, now):
        with pytest.raises(NotFoundError):
            await checkin_token_service.manual_checkin(
                db, staff=scenario["front_desk_home"], member_id=9999, gym_id=scenario["home"].id, now=now,
            )

    @pytest.mark.asyncio
    async def test_list_today_uses_gym_local_day(self, db, factory, scenario, now):
        await checkin_token_service.manual_checkin(
            db, staff=scenario["front_desk_home"], member_id=scenario["member"].id,
            gym_id=scenario["home"].id, now=now - timedelta(days=1),
        )
        second = await checkin_token_service.manual_checkin(
            db, staff=scenario["front_desk_home"], member_id=scenario["member"].id,
            gym_id=scenario["home"].id, now=now,
        )

        today = checkin_token_service.list_today(
            db, viewer=scenario["front_desk_home"], gym_id=scenario["home"].id, now=now
        )

        assert [c.id for c in today] == [second.checkin_id]

    def test_list_today_requires_staff_or_org_role(self, db, factory, scenario, now):
        with pytest.raises(PermissionDeniedError):
            checkin_token_service.list_today(db, viewer=scenario["member"].user, gym_id=scenario["home"].id, now=now)

        corporate = factory.org_role(scenario["chain"])
        assert checkin_token_service.list_today(db, viewer=corporate, gym_id=scenario["home"].id, now=now) == []
