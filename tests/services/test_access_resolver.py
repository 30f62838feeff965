"""
Tests de resolución de sedes accesibles y de asignación de la sede principal.
"""
import pytest

from gymaccess.core.exceptions import InvalidRequestError, NotFoundError, PermissionDeniedError
from gymaccess.models.access import AccessType, GrantStatus, AccessEventType
from gymaccess.models.subscription import AccessScope
from gymaccess.models.user import StaffRole
from gymaccess.repositories.access import member_gym_access_repository
from gymaccess.services.access_resolver import access_grant_resolver


class TestResolveAccessibleLocations:

    def test_single_location_member(self, db, factory):
        chain = factory.chain()
        gym = factory.gym(chain, "Centro")
        member = factory.member(home_gym=gym)
        factory.grant(member, gym, AccessType.HOME)

        result = access_grant_resolver.resolve_accessible_locations(db, member.user)

        assert [loc.id for loc in result.locations] == [gym.id]
        assert result.active_location_id == gym.id
        assert result.is_multi_location is False
        assert result.no_access is False
        assert result.locations[0].access_type == "HOME"

    def test_staff_assignments_override_member_grants(self, db, factory):
        """Un usuario con asignaciones de staff solo ve sus sedes asignadas."""
        chain = factory.chain()
        staff_gym = factory.gym(chain, "Norte")
        member_gym = factory.gym(chain, "Sur")
        user = factory.staff(staff_gym)
        member = factory.member(user, home_gym=member_gym)
        factory.grant(member, member_gym, AccessType.ALL_ACCESS)

        result = access_grant_resolver.resolve_accessible_locations(db, user)

        assert [loc.id for loc in result.locations] == [staff_gym.id]
        assert result.locations[0].access_type == "STAFF"

    def test_all_access_is_superset_including_new_gyms(self, db, factory):
        chain = factory.chain()
        other_chain = factory.chain("Otra")
        anchor = factory.gym(chain, "A")
        factory.gym(chain, "B")
        factory.gym(other_chain, "Z")
        member = factory.member(home_gym=anchor)
        factory.grant(member, anchor, AccessType.ALL_ACCESS)

        first = access_grant_resolver.resolve_accessible_locations(db, member.user)
        assert [loc.name for loc in first.locations] == ["A", "B"]

        # Una sede abierta después se incluye sin crear concesiones nuevas
        factory.gym(chain, "C")
        second = access_grant_resolver.resolve_accessible_locations(db, member.user)
        assert [loc.name for loc in second.locations] == ["A", "B", "C"]
        assert second.is_multi_location is True

    def test_inactive_gyms_and_grants_are_excluded(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain, "Home")
        closed = factory.gym(chain, "Cerrada", is_active=False)
        suspended = factory.gym(chain, "Suspendida")
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        factory.grant(member, closed, AccessType.SECONDARY)
        factory.grant(member, suspended, AccessType.SECONDARY, status=GrantStatus.SUSPENDED)

        result = access_grant_resolver.resolve_accessible_locations(db, member.user)

        assert [loc.id for loc in result.locations] == [home.id]

    def test_stored_gym_kept_when_still_accessible(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain, "A")
        secondary = factory.gym(chain, "B")
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        factory.grant(member, secondary, AccessType.SECONDARY)

        result = access_grant_resolver.resolve_accessible_locations(db, member.user, secondary.id)

        assert result.active_location_id == secondary.id
        assert result.access_changed is False

    def test_stale_stored_gym_falls_back_to_home(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain, "B")
        other = factory.gym(chain, "A")
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        factory.grant(member, other, AccessType.SECONDARY)

        result = access_grant_resolver.resolve_accessible_locations(db, member.user, 9999)

        assert result.active_location_id == home.id
        assert result.access_changed is True

    def test_no_home_falls_back_to_first_location(self, db, factory):
        chain = factory.chain()
        gym_b = factory.gym(chain, "B")
        gym_a = factory.gym(chain, "A")
        member = factory.member()
        factory.grant(member, gym_b, AccessType.SECONDARY)
        factory.grant(member, gym_a, AccessType.SECONDARY)

        result = access_grant_resolver.resolve_accessible_locations(db, member.user)

        assert result.active_location_id == gym_a.id

    def test_no_access_is_a_state_not_an_error(self, db, factory):
        user = factory.user()

        result = access_grant_resolver.resolve_accessible_locations(db, user, 5)

        assert result.locations == []
        assert result.no_access is True
        assert result.active_location_id is None
        assert result.access_changed is True


class TestMemberHasAccess:

    def test_all_access_grants_chain_gyms_only(self, db, factory):
        chain = factory.chain()
        anchor = factory.gym(chain)
        sibling = factory.gym(chain)
        foreign = factory.gym(factory.chain("Otra"))
        member = factory.member()
        factory.grant(member, anchor, AccessType.ALL_ACCESS)

        assert access_grant_resolver.member_has_access(db, member, sibling) == (True, AccessType.ALL_ACCESS)
        assert access_grant_resolver.member_has_access(db, member, foreign) == (False, None)

    def test_inactive_gym_denied(self, db, factory):
        chain = factory.chain()
        gym = factory.gym(chain, is_active=False)
        member = factory.member()
        factory.grant(member, gym, AccessType.HOME)

        assert access_grant_resolver.member_has_access(db, member, gym) == (False, None)


class TestSetHomeGym:

    def test_member_can_set_first_home(self, db, factory, audit_events):
        chain = factory.chain()
        gym = factory.gym(chain)
        member = factory.member()

        updated = access_grant_resolver.set_home_gym(db, actor=member.user, member_id=member.id, gym_id=gym.id)

        assert updated.home_gym_id == gym.id
        home = member_gym_access_repository.get_home_grant(db, member.id)
        assert home.gym_id == gym.id
        events = audit_events(member_id=member.id)
        assert [e.event_type for e in events] == [AccessEventType.HOME_GYM_CHANGED.value]

    def test_member_cannot_change_existing_home(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain)
        other = factory.gym(chain)
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)

        with pytest.raises(PermissionDeniedError):
            access_grant_resolver.set_home_gym(db, actor=member.user, member_id=member.id, gym_id=other.id)

    def test_member_cannot_change_other_member(self, db, factory):
        gym = factory.gym(factory.chain())
        member = factory.member()
        intruder = factory.member()

        with pytest.raises(PermissionDeniedError):
            access_grant_resolver.set_home_gym(db, actor=intruder.user, member_id=member.id, gym_id=gym.id)

    def test_front_desk_cannot_change_home(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain)
        target = factory.gym(chain)
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        front_desk = factory.staff(target, StaffRole.FRONT_DESK)

        with pytest.raises(PermissionDeniedError):
            access_grant_resolver.set_home_gym(db, actor=front_desk, member_id=member.id, gym_id=target.id)

    def test_manager_moves_home_and_expires_single_gym_grant(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain)
        target = factory.gym(chain)
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        factory.subscription(member, plan=factory.plan(chain, AccessScope.SINGLE_GYM), gym=home)
        manager = factory.staff(target, StaffRole.MANAGER)

        access_grant_resolver.set_home_gym(db, actor=manager, member_id=member.id, gym_id=target.id)

        previous = member_gym_access_repository.get_grant(db, member.id, home.id)
        assert previous.access_type == AccessType.SECONDARY
        assert previous.status == GrantStatus.EXPIRED
        new_home = member_gym_access_repository.get_home_grant(db, member.id)
        assert new_home.gym_id == target.id

    def test_multi_gym_plan_keeps_previous_home_as_secondary(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain)
        target = factory.gym(chain)
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        factory.subscription(member, plan=factory.plan(chain, AccessScope.MULTI_GYM), gym=home)
        admin = factory.staff(target, StaffRole.ADMIN)

        access_grant_resolver.set_home_gym(db, actor=admin, member_id=member.id, gym_id=target.id)

        previous = member_gym_access_repository.get_grant(db, member.id, home.id)
        assert previous.access_type == AccessType.SECONDARY
        assert previous.status == GrantStatus.ACTIVE

    def test_same_gym_is_rejected(self, db, factory):
        chain = factory.chain()
        home = factory.gym(chain)
        member = factory.member(home_gym=home)
        factory.grant(member, home, AccessType.HOME)
        manager = factory.staff(home, StaffRole.MANAGER)

        with pytest.raises(InvalidRequestError):
            access_grant_resolver.set_home_gym(db, actor=manager, member_id=member.id, gym_id=home.id)

    def test_inactive_gym_not_found(self, db, factory):
        gym = factory.gym(factory.chain(), is_active=False)
        member = factory.member()

        with pytest.raises(NotFoundError):
            access_grant_resolver.set_home_gym(db, actor=member.user, member_id=member.id, gym_id=gym.id)
