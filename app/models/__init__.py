from .base import Base
from .enums import OTPFailureReason, OTPPurpose
from .otp_code import OTPCode

__all__ = [
    "Base",
    "OTPCode",
    "OTPFailureReason",
    "OTPPurpose",
]
