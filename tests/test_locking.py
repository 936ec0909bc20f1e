import threading

from app.core import locking
from app.core.locking import make_lock
from app.models import OTPPurpose


def test_local_lock_excludes_second_holder():
    first = make_lock("test:exclusive")
    second = make_lock("test:exclusive", wait_timeout=0.01)

    assert first.acquire()
    try:
        assert second.acquire() is False
    finally:
        first.release()

    assert second.acquire()
    second.release()


def test_local_lock_registry_is_released_after_use():
    before = len(locking._local_locks)

    for index in range(50):
        with make_lock(f"test:transient:{index}").hold() as acquired:
            assert acquired
            assert f"test:transient:{index}" in locking._local_locks

    assert len(locking._local_locks) == before


def test_failed_wait_does_not_leak_registry_entry():
    holder = make_lock("test:contended")
    assert holder.acquire()
    try:
        assert make_lock("test:contended", wait_timeout=0.01).acquire() is False
        assert "test:contended" in locking._local_locks
    finally:
        holder.release()

    assert "test:contended" not in locking._local_locks


def test_waiter_keeps_entry_until_it_releases():
    holder = make_lock("test:handoff")
    assert holder.acquire()
    acquired = threading.Event()

    def _wait_for_lock():
        waiter = make_lock("test:handoff", wait_timeout=2)
        if waiter.acquire():
            acquired.set()
            waiter.release()

    thread = threading.Thread(target=_wait_for_lock)
    thread.start()
    holder.release()
    thread.join(timeout=5)

    assert acquired.is_set()
    assert "test:handoff" not in locking._local_locks


def test_issuing_for_many_subjects_does_not_grow_lock_registry(otp_service):
    before = len(locking._local_locks)

    for index in range(200):
        otp_service.generate(f"subject-{index}", OTPPurpose.LOGIN)

    assert len(locking._local_locks) == before
