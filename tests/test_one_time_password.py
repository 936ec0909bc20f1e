import re
from datetime import datetime, timedelta, timezone

import pytest

from app.models import OTPPurpose
from app.services.exceptions import OTPAlreadyUsed, OTPExpired, OTPLockedOut, ValidationError
from app.services.one_time_password import OneTimePassword

from conftest import wrong_code

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _issue(max_attempts: int = 3, ttl_minutes: int = 5) -> OneTimePassword:
    return OneTimePassword.issue(
        "u1",
        OTPPurpose.LOGIN,
        ttl=timedelta(minutes=ttl_minutes),
        max_attempts=max_attempts,
        now=NOW,
    )


def test_issue_creates_fresh_record():
    otp = _issue()
    assert re.fullmatch(r"\d{6}", otp.code)
    assert otp.expires_at > NOW
    assert otp.attempt_count == 0
    assert otp.used is False
    assert otp.is_valid(NOW)
    assert otp.remaining_attempts == 3
    assert otp.seconds_until_expiry(NOW) == 300
    assert otp.minutes_until_expiry(NOW) == 5


def test_issue_rejects_non_positive_ttl():
    with pytest.raises(ValidationError):
        OneTimePassword.issue("u1", OTPPurpose.LOGIN, ttl=timedelta(0), now=NOW)


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"subject_id": ""}, "subject_id"),
        ({"purpose": "SIGNUP"}, "purpose"),
        ({"code": "12ab56"}, "code"),
        ({"attempt_count": -1}, "attempt_count"),
        ({"max_attempts": 0}, "max_attempts"),
    ],
)
def test_construction_validates_fields(overrides, field):
    values = {
        "subject_id": "u1",
        "purpose": OTPPurpose.LOGIN,
        "code": "123456",
        "expires_at": NOW + timedelta(minutes=5),
    }
    values.update(overrides)
    with pytest.raises(ValidationError) as exc_info:
        OneTimePassword(**values)
    assert exc_info.value.field == field


def test_purpose_is_coerced_from_string():
    otp = OneTimePassword(subject_id="u1", purpose="PASSWORD_RESET", code="123456", expires_at=NOW)
    assert otp.purpose is OTPPurpose.PASSWORD_RESET
    assert otp.is_for_purpose("PASSWORD_RESET")
    assert not otp.is_for_purpose(OTPPurpose.LOGIN)


def test_verify_correct_code_consumes_it():
    otp = _issue()
    assert otp.verify(otp.code, now=NOW) is True
    assert otp.used is True
    assert otp.attempt_count == 1
    assert not otp.is_valid(NOW)

    with pytest.raises(OTPAlreadyUsed):
        otp.verify(otp.code, now=NOW)
    assert otp.attempt_count == 2


def test_verify_wrong_code_only_counts_the_attempt():
    otp = _issue()
    assert otp.verify(wrong_code(otp.code), now=NOW) is False
    assert otp.used is False
    assert otp.attempt_count == 1
    assert otp.remaining_attempts == 2


@pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
def test_lockout_after_max_attempts_even_with_correct_code(max_attempts):
    otp = _issue(max_attempts=max_attempts)
    for _ in range(max_attempts - 1):
        assert otp.verify(wrong_code(otp.code), now=NOW) is False
    with pytest.raises(OTPLockedOut):
        otp.verify(wrong_code(otp.code), now=NOW)
    with pytest.raises(OTPLockedOut):
        otp.verify(otp.code, now=NOW)
    assert otp.used is False
    assert otp.remaining_attempts == 0
    assert otp.is_max_attempts_reached()


def test_verify_after_expiry_raises_and_still_counts():
    otp = _issue()
    later = NOW + timedelta(minutes=5, seconds=1)
    assert otp.is_expired(later)
    with pytest.raises(OTPExpired):
        otp.verify(otp.code, now=later)
    assert otp.attempt_count == 1
    assert otp.used is False
    assert otp.seconds_until_expiry(later) == 0


def test_expiry_is_checked_before_usage():
    otp = _issue()
    otp.verify(otp.code, now=NOW)
    with pytest.raises(OTPExpired):
        otp.verify(otp.code, now=NOW + timedelta(minutes=10))


def test_mark_as_used_twice_fails():
    otp = _issue()
    otp.mark_as_used(NOW)
    with pytest.raises(OTPAlreadyUsed):
        otp.mark_as_used(NOW)


def test_increment_attempt_is_unconditional():
    otp = _issue(max_attempts=1)
    otp.mark_as_used(NOW)
    for _ in range(3):
        otp.increment_attempt(NOW)
    assert otp.attempt_count == 3
    assert otp.remaining_attempts == 0


def _locked():
    otp = _issue(max_attempts=2)
    otp.verify(wrong_code(otp.code), now=NOW)
    with pytest.raises(OTPLockedOut):
        otp.verify(otp.code, now=NOW)
    return otp, NOW


def _expired():
    return _issue(), NOW + timedelta(minutes=6)


def _verified():
    otp = _issue()
    otp.verify(otp.code, now=NOW)
    return otp, NOW


@pytest.mark.parametrize("build", [_locked, _expired, _verified])
def test_regenerate_revives_terminal_records(build):
    otp, now = build()
    assert not otp.is_valid(now)

    otp.regenerate(timedelta(minutes=5), now=now)

    assert otp.is_valid(now)
    assert otp.attempt_count == 0
    assert otp.used is False
    assert otp.expires_at == now + timedelta(minutes=5)
    assert re.fullmatch(r"\d{6}", otp.code)
    assert otp.verify(otp.code, now=now) is True


def test_regenerate_rejects_non_positive_ttl():
    otp = _issue()
    with pytest.raises(ValidationError):
        otp.regenerate(timedelta(minutes=0), now=NOW)


def test_remaining_attempts_never_increases():
    otp = _issue(max_attempts=3)
    seen = [otp.remaining_attempts]
    for _ in range(6):
        try:
            otp.verify(wrong_code(otp.code), now=NOW)
        except OTPLockedOut:
            pass
        assert otp.remaining_attempts == max(0, otp.max_attempts - otp.attempt_count)
        seen.append(otp.remaining_attempts)
    assert seen == sorted(seen, reverse=True)
    assert seen[-1] == 0


def test_public_dict_hides_code():
    otp = _issue()
    data = otp.to_public_dict(now=NOW)
    assert "code" not in data
    assert otp.code not in data.values()
    assert data == {
        "otp_id": otp.id,
        "purpose": "LOGIN",
        "expires_in": 300,
        "remaining_attempts": 3,
        "is_expired": False,
        "is_valid": True,
    }
