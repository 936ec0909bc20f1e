from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
import logging
from typing import Callable

from app.core.config import Settings, get_settings
from app.core.locking import LockFactory, default_lock_factory
from app.core.observability import RequestContext
from app.models import OTPFailureReason, OTPPurpose

from . import exceptions
from .delivery import BaseDeliveryChannel, DeliveryResult
from .one_time_password import OneTimePassword, utcnow
from .otp_store import OTPStore

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid or expired code"


@lru_cache
def get_delivery_executor() -> ThreadPoolExecutor:
    """Shared pool for provider calls.

    A send that outlives its timeout keeps its worker thread until the
    provider returns, so ``OTP_DELIVERY_MAX_WORKERS`` bounds how many hung
    sends the process tolerates before new sends queue behind them.
    """

    return ThreadPoolExecutor(
        max_workers=get_settings().OTP_DELIVERY_MAX_WORKERS,
        thread_name_prefix="otp-delivery",
    )


@dataclass(slots=True)
class OTPIssueResult:
    otp_id: str
    expires_in: int


@dataclass(slots=True)
class OTPValidationResult:
    is_valid: bool
    remaining_attempts: int
    reason: OTPFailureReason | None = None
    message: str | None = None


class OTPService:
    """Issue, validate and resend one-time codes.

    Every workflow reads the current record, changes an in-memory copy and
    writes it back through ``store``; the service itself keeps no per-subject
    state between calls.
    """

    def __init__(
        self,
        store: OTPStore,
        channel: BaseDeliveryChannel | None = None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        lock_factory: LockFactory = default_lock_factory,
    ):
        self.store = store
        self.channel = channel
        self.settings = settings or get_settings()
        self._clock = clock
        self._lock_factory = lock_factory

    def generate(
        self,
        subject_id: str,
        purpose: OTPPurpose | str,
        ttl_minutes: int | None = None,
        *,
        destination: str | None = None,
        context: RequestContext | None = None,
        timeout: float | None = None,
    ) -> OTPIssueResult:
        context = context or RequestContext()
        purpose = self._require_subject_and_purpose(subject_id, purpose)
        ttl_minutes = self._resolve_ttl(ttl_minutes)
        if self.channel is None:
            raise exceptions.OTPDeliveryFailed("No delivery channel configured")

        lock = self._lock_factory(f"otp:issue:{subject_id}:{purpose.value}")
        with lock.hold() as acquired:
            if not acquired:
                raise exceptions.StorageError("Timed out waiting for the OTP issue lock")
            invalidated = self.store.invalidate_pending(subject_id, purpose)
            otp = OneTimePassword.issue(
                subject_id,
                purpose,
                ttl=timedelta(minutes=ttl_minutes),
                max_attempts=self.settings.OTP_MAX_ATTEMPTS,
                code_length=self.settings.OTP_LENGTH,
                now=self._clock(),
            )
            self.store.save(otp)

        if invalidated:
            logger.info(
                "Superseded %d pending OTP(s) | subject=%s | purpose=%s",
                invalidated,
                subject_id,
                purpose.value,
                extra=context.log_extra(),
            )

        result = self._deliver(otp, destination or subject_id, context=context, timeout=timeout)

        logger.info(
            "OTP generated | subject=%s | purpose=%s | otp_id=%s | channel=%s | message_id=%s | ttl_minutes=%d",
            subject_id,
            purpose.value,
            otp.id,
            result.channel,
            result.message_id,
            ttl_minutes,
            extra=context.log_extra(),
        )
        return OTPIssueResult(otp_id=otp.id, expires_in=ttl_minutes * 60)

    def validate(
        self,
        subject_id: str,
        purpose: OTPPurpose | str,
        code: str,
        *,
        context: RequestContext | None = None,
    ) -> OTPValidationResult:
        context = context or RequestContext()
        purpose = self._require_subject_and_purpose(subject_id, purpose)
        if not code:
            raise exceptions.ValidationError("Code is required", "code")

        otp = self.store.get_latest(subject_id, purpose)
        if otp is None:
            logger.info(
                "OTP validation failed | subject=%s | purpose=%s | reason=%s",
                subject_id,
                purpose.value,
                OTPFailureReason.NOT_FOUND.value,
                extra=context.log_extra(),
            )
            return OTPValidationResult(
                is_valid=False,
                remaining_attempts=0,
                reason=OTPFailureReason.NOT_FOUND,
                message=INVALID_CODE_MESSAGE,
            )

        was_used = otp.used
        reason: OTPFailureReason | None = None
        try:
            if not otp.verify(code, now=self._clock()):
                reason = OTPFailureReason.MISMATCH
        except exceptions.OTPError as exc:
            reason = exc.reason

        # The attempt must outlive this request whatever the outcome.
        try:
            persisted = self.store.update_attempt_and_used(
                otp.id,
                otp.attempt_count,
                otp.used,
                expected_used=was_used,
            )
        except exceptions.OTPConcurrentModification:
            current = self.store.get_by_id(otp.id)
            if current is None or was_used or not current.used:
                raise
            # Consumed or superseded between our read and write.
            logger.warning(
                "OTP validation failed | subject=%s | purpose=%s | otp_id=%s | reason=%s | consumed concurrently",
                subject_id,
                purpose.value,
                otp.id,
                OTPFailureReason.ALREADY_USED.value,
                extra=context.log_extra(),
            )
            return OTPValidationResult(
                is_valid=False,
                remaining_attempts=current.remaining_attempts,
                reason=OTPFailureReason.ALREADY_USED,
                message=INVALID_CODE_MESSAGE,
            )

        if reason is None:
            logger.info(
                "OTP validated | subject=%s | purpose=%s | otp_id=%s",
                subject_id,
                purpose.value,
                otp.id,
                extra=context.log_extra(),
            )
            return OTPValidationResult(is_valid=True, remaining_attempts=persisted.remaining_attempts)

        logger.warning(
            "OTP validation failed | subject=%s | purpose=%s | otp_id=%s | reason=%s | remaining=%d",
            subject_id,
            purpose.value,
            otp.id,
            reason.value,
            persisted.remaining_attempts,
            extra=context.log_extra(),
        )
        return OTPValidationResult(
            is_valid=False,
            remaining_attempts=persisted.remaining_attempts,
            reason=reason,
            message=INVALID_CODE_MESSAGE,
        )

    def resend(
        self,
        subject_id: str,
        purpose: OTPPurpose | str,
        ttl_minutes: int | None = None,
        *,
        destination: str | None = None,
        context: RequestContext | None = None,
        timeout: float | None = None,
    ) -> OTPIssueResult:
        context = context or RequestContext()
        purpose = self._require_subject_and_purpose(subject_id, purpose)

        existing = self.store.get_latest(subject_id, purpose)
        now = self._clock()
        if existing is not None and existing.is_valid(now):
            remaining = existing.seconds_until_expiry(now)
            if remaining > self.settings.OTP_RESEND_COOLDOWN_SECONDS:
                error = exceptions.OTPCooldown(
                    f"Please wait {remaining // 60} minutes before requesting a new OTP",
                    remaining_seconds=remaining,
                )
                logger.info(
                    "OTP resend refused | subject=%s | purpose=%s | remaining_seconds=%d",
                    subject_id,
                    purpose.value,
                    remaining,
                    extra=context.log_extra(),
                )
                raise error

        result = self.generate(
            subject_id,
            purpose,
            ttl_minutes,
            destination=destination,
            context=context,
            timeout=timeout,
        )
        logger.info(
            "OTP resent | subject=%s | purpose=%s | otp_id=%s",
            subject_id,
            purpose.value,
            result.otp_id,
            extra=context.log_extra(),
        )
        return result

    def get_status(self, otp_id: str) -> dict:
        """Return the caller-safe view of a record; the code is never included."""

        if not otp_id:
            raise exceptions.ValidationError("OTP ID is required", "otp_id")
        otp = self.store.get_by_id(otp_id)
        if otp is None:
            raise exceptions.NotFoundError(f"OTP {otp_id} not found")
        return otp.to_public_dict(now=self._clock())

    def list_history(
        self,
        subject_id: str,
        purpose: OTPPurpose | str | None = None,
        *,
        limit: int = 50,
    ) -> list[dict]:
        if not subject_id or not str(subject_id).strip():
            raise exceptions.ValidationError("Subject ID is required", "subject_id")
        if limit <= 0:
            raise exceptions.ValidationError("Limit must be positive", "limit")
        if purpose is not None:
            purpose = self._require_subject_and_purpose(subject_id, purpose)
        now = self._clock()
        return [otp.to_public_dict(now=now) for otp in self.store.list_for_subject(subject_id, purpose, limit)]

    def cleanup_expired(
        self,
        older_than: datetime | None = None,
        *,
        context: RequestContext | None = None,
    ) -> int:
        context = context or RequestContext()
        cutoff = older_than or self._clock()
        deleted = self.store.delete_expired(cutoff)
        logger.info(
            "Expired OTPs cleaned up | deleted=%d | cutoff=%s",
            deleted,
            cutoff.isoformat(),
            extra=context.log_extra(),
        )
        return deleted

    def _deliver(
        self,
        otp: OneTimePassword,
        destination: str,
        *,
        context: RequestContext,
        timeout: float | None,
    ) -> DeliveryResult:
        # An undelivered record is left in place and expires on its own.
        timeout = timeout if timeout is not None else self.settings.OTP_DELIVERY_TIMEOUT_SECONDS
        future = get_delivery_executor().submit(
            self.channel.send,
            destination=destination,
            code=otp.code,
            purpose=otp.purpose,
        )
        try:
            result = future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.error(
                "OTP delivery timed out | otp_id=%s | channel=%s | timeout=%.1fs",
                otp.id,
                self.channel.name,
                timeout,
                extra=context.log_extra(),
            )
            raise exceptions.OTPDeliveryFailed("OTP delivery timed out") from exc
        except Exception as exc:
            logger.exception(
                "OTP delivery raised | otp_id=%s | channel=%s",
                otp.id,
                self.channel.name,
                extra=context.log_extra(),
            )
            raise exceptions.OTPDeliveryFailed("OTP delivery failed") from exc

        if not result.success:
            logger.error(
                "OTP delivery failed | otp_id=%s | channel=%s | error=%s",
                otp.id,
                result.channel,
                result.error,
                extra=context.log_extra(),
            )
            raise exceptions.OTPDeliveryFailed(f"Failed to send OTP: {result.error or 'unknown error'}")
        return result

    @staticmethod
    def _require_subject_and_purpose(subject_id: str, purpose: OTPPurpose | str) -> OTPPurpose:
        if not subject_id or not str(subject_id).strip():
            raise exceptions.ValidationError("Subject ID is required", "subject_id")
        if not purpose:
            raise exceptions.ValidationError("OTP purpose is required", "purpose")
        try:
            return OTPPurpose(purpose)
        except ValueError as exc:
            raise exceptions.ValidationError(f"Unknown OTP purpose: {purpose}", "purpose") from exc

    def _resolve_ttl(self, ttl_minutes: int | None) -> int:
        if ttl_minutes is None:
            return self.settings.OTP_EXPIRATION_MINUTES
        if isinstance(ttl_minutes, bool) or not isinstance(ttl_minutes, int) or ttl_minutes <= 0:
            raise exceptions.ValidationError("TTL must be a positive number of minutes", "ttl_minutes")
        return ttl_minutes
