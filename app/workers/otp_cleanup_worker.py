from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable

from app.core.config import get_settings
from app.core.db import session_scope
from app.core.locking import get_redis_client, make_lock
from app.core.observability import background_context
from app.services import OTPService, SQLAlchemyOTPStore
from app.services import exceptions as service_exceptions
from app.services.one_time_password import utcnow

logger = logging.getLogger("app.otp_cleanup")


class OTPCleanupWorker:
    LOCK_NAME = "otp:cleanup"
    LOCK_WAIT_SECONDS = 0.2

    def __init__(
        self,
        *,
        worker_id: str | None = None,
        interval_seconds: int | None = None,
        grace: timedelta = timedelta(0),
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.worker_id = worker_id or f"otp-cleanup-{uuid.uuid4().hex[:8]}"
        self.interval_seconds = interval_seconds or settings.OTP_CLEANUP_INTERVAL_SECONDS
        self.grace = grace
        self._clock = clock
        self._redis_client = get_redis_client()
        self._runs = 0
        self._deleted_total = 0

    def run_forever(self) -> None:
        logger.info(
            "otp_cleanup_worker_started",
            extra={"worker_id": self.worker_id, "interval_seconds": self.interval_seconds},
        )
        while True:
            try:
                self.run_once()
            except service_exceptions.StorageError:
                logger.exception("otp_cleanup_failed", extra={"worker_id": self.worker_id})
            time.sleep(self.interval_seconds)

    def run_once(self) -> int:
        """Delete records that expired before ``now - grace``; returns the count.

        Only one worker sweeps at a time. A worker that cannot take the lock
        skips the round and returns 0.
        """

        lock = make_lock(
            self.LOCK_NAME,
            redis_client=self._redis_client,
            ttl_seconds=max(30, self.interval_seconds),
            wait_timeout=self.LOCK_WAIT_SECONDS,
            log=logger,
        )
        with lock.hold() as acquired:
            if not acquired:
                logger.info("otp_cleanup_skipped_lock_busy", extra={"worker_id": self.worker_id})
                return 0
            context = background_context("cleanup")
            with session_scope() as session:
                service = OTPService(SQLAlchemyOTPStore(session), clock=self._clock)
                deleted = service.cleanup_expired(self._clock() - self.grace, context=context)

        self._runs += 1
        self._deleted_total += deleted
        logger.info(
            "otp_cleanup_round_finished",
            extra={
                "worker_id": self.worker_id,
                "deleted": deleted,
                "runs": self._runs,
                "deleted_total": self._deleted_total,
            },
        )
        return deleted


def main() -> None:
    OTPCleanupWorker().run_forever()
