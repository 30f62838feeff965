"""
Tests de las tareas programadas con una fábrica de sesiones de prueba.
"""
from datetime import timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from gymaccess.core import scheduler
from gymaccess.core.timezone_utils import utcnow
from gymaccess.models.checkin import CheckinToken
from gymaccess.models.subscription import DelinquencyState
from gymaccess.repositories.subscription import subscription_repository


def test_expire_grace_periods_job(db, factory, session_factory):
    gym = factory.gym(factory.chain())
    factory.active_member(
        gym, delinquency_state=DelinquencyState.grace,
        grace_period_until=utcnow() - timedelta(hours=1), stripe_subscription_id="sub_elapsed",
    )

    assert scheduler.expire_grace_periods(session_factory=session_factory) == 1

    db.expire_all()
    subscription = subscription_repository.get_by_stripe_id(db, "sub_elapsed")
    assert subscription.delinquency_state == DelinquencyState.restricted


def test_purge_expired_tokens_job(db, factory, session_factory):
    member = factory.member()
    old = utcnow() - timedelta(days=3)
    db.add(CheckinToken(token_hash="a" * 64, member_id=member.id, issued_at=old,
                        expires_at=old + timedelta(minutes=2), consumed_at=old))
    db.add(CheckinToken(token_hash="b" * 64, member_id=member.id, issued_at=utcnow(),
                        expires_at=utcnow() + timedelta(minutes=2)))
    db.commit()

    assert scheduler.purge_expired_tokens(session_factory=session_factory) == 1

    db.expire_all()
    assert [t.token_hash for t in db.query(CheckinToken).all()] == ["b" * 64]


def test_retry_on_db_error_retries_then_raises(monkeypatch):
    monkeypatch.setattr(scheduler.time, "sleep", lambda seconds: None)
    failing = Mock(side_effect=OperationalError("SELECT 1", {}, Exception("conexión cerrada")))
    failing.__name__ = "failing"

    wrapped = scheduler.retry_on_db_error(max_retries=3, delay=0)(failing)

    with pytest.raises(OperationalError):
        wrapped()
    assert failing.call_count == 3


def test_init_and_shutdown_scheduler(monkeypatch):
    started = []
    monkeypatch.setattr(scheduler.AsyncIOScheduler, "start", lambda self: started.append(True))

    instance = scheduler.init_scheduler()

    job_ids = {job.id for job in instance.get_jobs()}
    assert job_ids == {"expire_grace_periods", "purge_expired_tokens"}
    assert started == [True]
    assert scheduler.get_scheduler() is instance

    scheduler.shutdown_scheduler()
    assert scheduler.get_scheduler() is None
