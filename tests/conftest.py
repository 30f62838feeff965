import os

# Configuración de entorno ANTES de importar la aplicación (get_settings está cacheado)
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["AUTH_JWT_AUDIENCE"] = "authenticated"

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gymaccess.core.auth import get_current_user
from gymaccess.core.exceptions import InvalidRequestError
from gymaccess.db.base import Base
from gymaccess.db.redis_client import get_redis_client
from gymaccess.db.session import get_db
from gymaccess.models.access import AccessType, GrantStatus, MemberGymAccess, MemberGymAccessEvent
from gymaccess.models.capacity import GymCapacityLimit, PlanLocationCapacityLimit
from gymaccess.models.gym import Chain, Gym
from gymaccess.models.subscription import (
    AccessScope, DelinquencyState, MembershipPlan, Subscription, SubscriptionStatus
)
from gymaccess.models.user import (
    Member, MemberStatus, OrganizationRole, OrganizationRoleType, StaffAssignment, StaffRole, User, UserRole
)
from gymaccess.services.billing_gateway import BillingGateway, GatewaySubscription, get_billing_gateway
from gymaccess.main import app

# Instante fijo de referencia para los tests que no dependen del reloj real
NOW = datetime(2026, 3, 10, 15, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture(scope="function")
def db_engine():
    """Base de datos SQLite en memoria nueva para cada test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """
    Sesión de base de datos para cada test. Los servicios hacen commit, por
    eso cada test usa su propia base en memoria en lugar de un rollback final.
    """
    session = session_factory()
    yield session
    session.close()


class ModelFactory:
    """Crea filas de prueba con valores por defecto razonables."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def chain(self, name: str = "Cadena Test") -> Chain:
        return self._save(Chain(name=name))

    def gym(self, chain: Chain, name: Optional[str] = None, *, is_active: bool = True,
            timezone_name: str = "UTC") -> Gym:
        n = self._next()
        return self._save(Gym(
            chain_id=chain.id, name=name or f"Sede {n}", code=f"GYM{n}",
            timezone=timezone_name, is_active=is_active,
        ))

    def user(self, role: UserRole = UserRole.member, email: Optional[str] = None) -> User:
        n = self._next()
        return self._save(User(
            auth_id=f"auth|user{n}", email=email or f"user{n}@test.com",
            full_name=f"Usuario {n}", role=role,
        ))

    def member(self, user: Optional[User] = None, *, home_gym: Optional[Gym] = None,
               status: MemberStatus = MemberStatus.active) -> Member:
        user = user or self.user()
        return self._save(Member(
            user_id=user.id, home_gym_id=home_gym.id if home_gym else None, status=status,
        ))

    def staff(self, gym: Gym, role: StaffRole = StaffRole.FRONT_DESK, user: Optional[User] = None) -> User:
        user = user or self.user(role=UserRole.staff)
        self._save(StaffAssignment(user_id=user.id, gym_id=gym.id, role=role))
        return user

    def org_role(self, chain: Chain, role: OrganizationRoleType = OrganizationRoleType.CORPORATE_ADMIN,
                 user: Optional[User] = None) -> User:
        user = user or self.user(role=UserRole.owner)
        self._save(OrganizationRole(user_id=user.id, chain_id=chain.id, role=role))
        return user

    def grant(self, member: Member, gym: Gym, access_type: AccessType = AccessType.HOME,
              status: GrantStatus = GrantStatus.ACTIVE) -> MemberGymAccess:
        return self._save(MemberGymAccess(
            member_id=member.id, gym_id=gym.id, access_type=access_type, status=status,
        ))

    def plan(self, chain: Chain, access_scope: AccessScope = AccessScope.SINGLE_GYM,
             stripe_price_id: Optional[str] = "price_test", is_active: bool = True) -> MembershipPlan:
        n = self._next()
        return self._save(MembershipPlan(
            chain_id=chain.id, name=f"Plan {n}", price_cents=4990, currency="EUR",
            access_scope=access_scope, stripe_price_id=stripe_price_id, is_active=is_active,
        ))

    def subscription(self, member: Member, *, plan: Optional[MembershipPlan] = None, gym: Optional[Gym] = None,
                     status: SubscriptionStatus = SubscriptionStatus.active,
                     delinquency_state: DelinquencyState = DelinquencyState.current,
                     grace_period_until: Optional[datetime] = None,
                     created_at: Optional[datetime] = None,
                     stripe_subscription_id: Optional[str] = None) -> Subscription:
        n = self._next()
        return self._save(Subscription(
            member_id=member.id,
            plan_id=plan.id if plan else None,
            gym_id=gym.id if gym else None,
            status=status,
            delinquency_state=delinquency_state,
            grace_period_until=grace_period_until,
            created_at=created_at or (NOW - timedelta(days=30)),
            stripe_subscription_id=stripe_subscription_id or f"sub_seed_{n}",
        ))

    def capacity(self, gym: Gym, max_active_members: Optional[int], *, soft: Optional[float] = None,
                 hard: bool = False) -> GymCapacityLimit:
        return self._save(GymCapacityLimit(
            gym_id=gym.id, max_active_members=max_active_members,
            soft_limit_threshold=soft, hard_limit_enforced=hard,
        ))

    def plan_capacity(self, plan: MembershipPlan, gym: Gym, max_active_members: Optional[int]) -> PlanLocationCapacityLimit:
        return self._save(PlanLocationCapacityLimit(
            plan_id=plan.id, gym_id=gym.id, max_active_members=max_active_members,
        ))

    def active_member(self, gym: Gym, access_type: AccessType = AccessType.HOME, **subscription_kwargs) -> Member:
        """Miembro con concesión activa en la sede y suscripción al día."""
        member = self.member(home_gym=gym if access_type == AccessType.HOME else None)
        self.grant(member, gym, access_type)
        self.subscription(member, gym=gym, **subscription_kwargs)
        return member


@pytest.fixture(scope="function")
def factory(db):
    return ModelFactory(db)


@pytest.fixture(scope="function")
def audit_events(db):
    """Historial de auditoría filtrado por miembro o por sede, en orden de inserción."""
    def _list(*, member_id: Optional[int] = None, gym_id: Optional[int] = None):
        query = db.query(MemberGymAccessEvent)
        if member_id is not None:
            query = query.filter(MemberGymAccessEvent.member_id == member_id)
        if gym_id is not None:
            query = query.filter(MemberGymAccessEvent.gym_id == gym_id)
        return query.order_by(MemberGymAccessEvent.id).all()
    return _list


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """
    Base SQLite en fichero: cada sesión abre su propia conexión, a diferencia
    de la base en memoria compartida por StaticPool.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'access.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def file_factory(file_session_factory):
    session = file_session_factory()
    yield ModelFactory(session)
    session.close()


class FakeBillingGateway(BillingGateway):
    """Pasarela en memoria: registra las llamadas y acepta la firma 'valid'."""

    def __init__(self, status: str = "active"):
        self.status = status
        self.customers = []
        self.created = []
        self.canceled = []

    def create_customer(self, *, email: Optional[str], user_id: int) -> str:
        customer_id = f"cus_{user_id}"
        self.customers.append(customer_id)
        return customer_id

    def create_subscription(self, *, customer_id: str, price_id: str, metadata: Dict[str, str]) -> GatewaySubscription:
        subscription_id = f"sub_new_{len(self.created) + 1}"
        self.created.append({"id": subscription_id, "customer_id": customer_id, "price_id": price_id, **metadata})
        return GatewaySubscription(id=subscription_id, status=self.status, client_secret="pi_secret_test")

    def cancel_subscription(self, subscription_id: str) -> None:
        self.canceled.append(subscription_id)

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if signature != "valid":
            raise InvalidRequestError("Firma inválida")
        return json.loads(payload)


@pytest.fixture(scope="function")
def gateway():
    return FakeBillingGateway()


@pytest.fixture(scope="function")
def redis_mock():
    """Cliente Redis simulado; publish devuelve el número de suscriptores."""
    redis = AsyncMock()
    redis.publish.return_value = 1
    return redis


class AuthState:
    """Usuario que devuelve la dependencia de autenticación en los tests de API."""

    def __init__(self):
        self.user: Optional[User] = None

    def login(self, user: User) -> None:
        self.user = user


@pytest.fixture(scope="function")
def auth():
    return AuthState()


@pytest.fixture(scope="function")
def client(db, auth, gateway, redis_mock):
    """
    Cliente de prueba con la base de datos, la autenticación, Redis y la
    pasarela de pagos sustituidos.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_current_user():
        if auth.user is None:
            from gymaccess.core.auth import UnauthenticatedException
            raise UnauthenticatedException()
        return auth.user

    async def override_get_redis_client():
        yield redis_mock

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_redis_client] = override_get_redis_client
    app.dependency_overrides[get_billing_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
