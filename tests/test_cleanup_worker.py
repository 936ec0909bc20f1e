import uuid
from datetime import timedelta

from app.core.config import get_settings
from app.core.locking import make_lock
from app.models import OTPPurpose
from app.services import SQLAlchemyOTPStore
from app.services.one_time_password import OneTimePassword
from app.workers import OTPCleanupWorker

from conftest import FakeClock


def _store_otp(session_factory, *, now, ttl_minutes=5):
    session = session_factory()
    try:
        otp = OneTimePassword.issue(
            f"user-{uuid.uuid4().hex[:8]}",
            OTPPurpose.LOGIN,
            ttl=timedelta(minutes=ttl_minutes),
            now=now,
        )
        SQLAlchemyOTPStore(session).save(otp)
        return otp
    finally:
        session.close()


def _exists(session_factory, otp_id):
    session = session_factory()
    try:
        return SQLAlchemyOTPStore(session).get_by_id(otp_id) is not None
    finally:
        session.close()


def test_worker_deletes_expired_records(session_factory):
    clock = FakeClock()
    expired = _store_otp(session_factory, now=clock() - timedelta(hours=2))
    live = _store_otp(session_factory, now=clock())

    worker = OTPCleanupWorker(worker_id="cleanup-test", clock=clock)
    deleted = worker.run_once()

    assert deleted >= 1
    assert not _exists(session_factory, expired.id)
    assert _exists(session_factory, live.id)


def test_worker_grace_period_keeps_recently_expired(session_factory):
    clock = FakeClock()
    recent = _store_otp(session_factory, now=clock() - timedelta(minutes=10))

    OTPCleanupWorker(clock=clock, grace=timedelta(hours=1)).run_once()

    assert _exists(session_factory, recent.id)


def test_worker_skips_round_when_another_worker_holds_the_lock(session_factory):
    clock = FakeClock()
    expired = _store_otp(session_factory, now=clock() - timedelta(hours=3))
    blocker = make_lock(OTPCleanupWorker.LOCK_NAME)
    assert blocker.acquire()
    try:
        assert OTPCleanupWorker(clock=clock).run_once() == 0
    finally:
        blocker.release()

    assert _exists(session_factory, expired.id)


def test_worker_never_builds_a_delivery_client(session_factory, monkeypatch):
    def _no_sms_client(*args, **kwargs):
        raise AssertionError("cleanup must not construct an SMS client")

    monkeypatch.setenv("SMS_DRY_RUN", "false")
    monkeypatch.setattr("app.services.delivery.eskiz.EskizSMS", _no_sms_client)
    get_settings.cache_clear()
    try:
        clock = FakeClock()
        expired = _store_otp(session_factory, now=clock() - timedelta(hours=4))
        OTPCleanupWorker(clock=clock).run_once()
    finally:
        get_settings.cache_clear()

    assert not _exists(session_factory, expired.id)
