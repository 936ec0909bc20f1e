import hmac
import re
import secrets

DIGITS = "0123456789"


def generate_numeric_code(length: int = 6) -> str:
    """Return ``length`` decimal digits drawn from the OS CSPRNG.

    ``secrets.randbelow`` rejects out-of-range samples internally, so every
    digit is uniform. Leading zeros are kept.
    """

    if length < 1:
        raise ValueError("Code length must be a positive integer")
    return "".join(DIGITS[secrets.randbelow(10)] for _ in range(length))


def is_numeric_code(value: object, length: int) -> bool:
    if not isinstance(value, str):
        return False
    return re.fullmatch(rf"\d{{{length}}}", value) is not None


def codes_match(expected: str, presented: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))
