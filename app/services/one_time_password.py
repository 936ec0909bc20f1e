from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.security import codes_match, generate_numeric_code, is_numeric_code
from app.models.enums import OTPPurpose

from .exceptions import OTPAlreadyUsed, OTPExpired, OTPLockedOut, ValidationError

DEFAULT_CODE_LENGTH = 6
DEFAULT_MAX_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True, eq=False)
class OneTimePassword:
    """A single time-limited, single-use verification code.

    The record moves through fresh -> pending -> verified/locked/expired.
    Expiry is evaluated lazily against ``now`` on every call; nothing runs in
    the background. Only ``regenerate`` leaves a terminal state.
    """

    subject_id: str
    purpose: OTPPurpose
    code: str
    expires_at: datetime
    used: bool = False
    attempt_count: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.subject_id or not isinstance(self.subject_id, str):
            raise ValidationError("Subject ID is required", "subject_id")
        try:
            self.purpose = OTPPurpose(self.purpose)
        except ValueError as exc:
            raise ValidationError("Invalid OTP purpose", "purpose") from exc
        if not self.code or not is_numeric_code(self.code, len(self.code)):
            raise ValidationError("OTP must contain only digits", "code")
        if self.attempt_count < 0:
            raise ValidationError("Attempt count must be non-negative", "attempt_count")
        if self.max_attempts <= 0:
            raise ValidationError("Max attempts must be positive", "max_attempts")

    @classmethod
    def issue(
        cls,
        subject_id: str,
        purpose: OTPPurpose | str,
        *,
        ttl: timedelta,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        code_length: int = DEFAULT_CODE_LENGTH,
        now: datetime | None = None,
    ) -> OneTimePassword:
        now = now or utcnow()
        expires_at = now + ttl
        if expires_at <= now:
            raise ValidationError("Expiry time must be in the future", "expires_at")
        return cls(
            subject_id=subject_id,
            purpose=purpose,
            code=generate_numeric_code(code_length),
            expires_at=expires_at,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
        )

    def verify(self, input_code: str, now: datetime | None = None) -> bool:
        """Check ``input_code`` and consume the code on a match.

        The attempt is counted before any state check, so probing an expired,
        used or locked code still costs an attempt.
        """

        now = now or utcnow()
        self.increment_attempt(now)

        if self.is_expired(now):
            raise OTPExpired("OTP has expired")
        if self.used:
            raise OTPAlreadyUsed("OTP has already been used")
        if self.is_max_attempts_reached():
            raise OTPLockedOut("Maximum attempts reached")

        if codes_match(self.code, input_code or ""):
            self.mark_as_used(now)
            return True
        return False

    def mark_as_used(self, now: datetime | None = None) -> None:
        if self.used:
            raise OTPAlreadyUsed("OTP is already used")
        self.used = True
        self._touch(now)

    def increment_attempt(self, now: datetime | None = None) -> None:
        self.attempt_count += 1
        self._touch(now)

    def regenerate(self, ttl: timedelta, now: datetime | None = None) -> None:
        now = now or utcnow()
        if ttl <= timedelta(0):
            raise ValidationError("Expiry time must be in the future", "expires_at")
        self.code = generate_numeric_code(len(self.code))
        self.expires_at = now + ttl
        self.used = False
        self.attempt_count = 0
        self._touch(now)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def is_max_attempts_reached(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.used and not self.is_expired(now) and not self.is_max_attempts_reached()

    def is_for_purpose(self, purpose: OTPPurpose | str) -> bool:
        return self.purpose == OTPPurpose(purpose)

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempt_count)

    def seconds_until_expiry(self, now: datetime | None = None) -> int:
        delta = (self.expires_at - (now or utcnow())).total_seconds()
        return max(0, math.ceil(delta))

    def minutes_until_expiry(self, now: datetime | None = None) -> int:
        return math.ceil(self.seconds_until_expiry(now) / 60)

    def to_public_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Caller-safe view; never includes the code itself."""

        now = now or utcnow()
        return {
            "otp_id": self.id,
            "purpose": self.purpose.value,
            "expires_in": self.seconds_until_expiry(now),
            "remaining_attempts": self.remaining_attempts,
            "is_expired": self.is_expired(now),
            "is_valid": self.is_valid(now),
        }

    def _touch(self, now: datetime | None) -> None:
        self.updated_at = now or utcnow()
