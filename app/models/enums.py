from enum import Enum


class OTPPurpose(str, Enum):
    REGISTRATION = "REGISTRATION"
    LOGIN = "LOGIN"
    PASSWORD_RESET = "PASSWORD_RESET"


class OTPFailureReason(str, Enum):
    MISMATCH = "MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    LOCKED_OUT = "LOCKED_OUT"
