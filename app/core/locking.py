import logging
import threading
import time
import uuid
from contextlib import contextmanager
from functools import lru_cache
from typing import Callable, Optional

from redis import Redis
from redis.exceptions import RedisError

from .config import get_settings

logger = logging.getLogger("app.lock")

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# name -> [lock, number of holders and waiters]
_local_locks: dict[str, list] = {}
_local_locks_guard = threading.Lock()


def _checkout_local_lock(name: str) -> threading.Lock:
    with _local_locks_guard:
        entry = _local_locks.get(name)
        if entry is None:
            entry = [threading.Lock(), 0]
            _local_locks[name] = entry
        entry[1] += 1
        return entry[0]


def _return_local_lock(name: str) -> None:
    with _local_locks_guard:
        entry = _local_locks.get(name)
        if entry is None:
            return
        entry[1] -= 1
        if entry[1] <= 0:
            del _local_locks[name]


class DistributedLock:
    """
    Named mutex backed by Redis (NX + EX).
    Falls back to a process-local lock shared by every holder of the same name
    when Redis is unavailable.
    """

    def __init__(
        self,
        name: str,
        *,
        redis_client: Optional[Redis] = None,
        ttl_seconds: int = 20,
        wait_timeout: float = 5,
        retry_interval: float = 0.05,
        log: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.wait_timeout = wait_timeout
        self.retry_interval = retry_interval
        self._owner_token: str | None = None
        self._local_lock: threading.Lock | None = None
        self._logger = log or logger

    def acquire(self) -> bool:
        deadline = time.monotonic() + self.wait_timeout
        token = uuid.uuid4().hex
        contention_logged = False

        if self.redis_client:
            while True:
                if self.redis_client.set(self.name, token, nx=True, ex=self.ttl_seconds):
                    self._owner_token = token
                    self._logger.debug("lock_acquired", extra={"lock": self.name})
                    return True
                if time.monotonic() >= deadline:
                    break
                if not contention_logged:
                    self._logger.warning("lock_contention", extra={"lock": self.name})
                    contention_logged = True
                time.sleep(self.retry_interval)
            self._logger.warning("lock_acquire_timeout", extra={"lock": self.name})
            return False

        local_lock = _checkout_local_lock(self.name)
        acquired = local_lock.acquire(timeout=self.wait_timeout)
        if acquired:
            self._local_lock = local_lock
            self._owner_token = token
            self._logger.debug("lock_acquired_local", extra={"lock": self.name})
        else:
            _return_local_lock(self.name)
            self._logger.warning("lock_contention_local", extra={"lock": self.name})
        return acquired

    def release(self) -> None:
        if self._owner_token is None:
            return
        if self.redis_client:
            try:
                self.redis_client.eval(_RELEASE_SCRIPT, 1, self.name, self._owner_token)
                self._logger.debug("lock_released", extra={"lock": self.name})
            except RedisError:
                # The key expires on its own after ttl_seconds.
                self._logger.exception("lock_release_failed", extra={"lock": self.name})
        elif self._local_lock is not None:
            self._local_lock.release()
            self._local_lock = None
            _return_local_lock(self.name)
            self._logger.debug("lock_released_local", extra={"lock": self.name})
        self._owner_token = None

    @contextmanager
    def hold(self):
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


LockFactory = Callable[[str], DistributedLock]


@lru_cache
def get_redis_client() -> Redis | None:
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    try:
        client = Redis.from_url(settings.REDIS_URL)
        client.ping()
    except (RedisError, OSError) as exc:  # pragma: no cover - best effort
        logger.warning("Redis unavailable (%s). Falling back to process-local locks.", exc)
        return None
    logger.info("Using Redis for distributed locks.")
    return client


def make_lock(
    name: str,
    *,
    redis_client: Optional[Redis] = None,
    ttl_seconds: int = 20,
    wait_timeout: float = 5,
    retry_interval: float = 0.05,
    log: logging.Logger | None = None,
) -> DistributedLock:
    return DistributedLock(
        name,
        redis_client=redis_client,
        ttl_seconds=ttl_seconds,
        wait_timeout=wait_timeout,
        retry_interval=retry_interval,
        log=log,
    )


def default_lock_factory(name: str) -> DistributedLock:
    return make_lock(name, redis_client=get_redis_client())
