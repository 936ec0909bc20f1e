from .delivery import BaseDeliveryChannel, DeliveryResult, build_delivery_channel
from .one_time_password import OneTimePassword
from .otp_service import OTPIssueResult, OTPService, OTPValidationResult
from .otp_store import InMemoryOTPStore, OTPStore, SQLAlchemyOTPStore

__all__ = [
    "BaseDeliveryChannel",
    "DeliveryResult",
    "InMemoryOTPStore",
    "OneTimePassword",
    "OTPIssueResult",
    "OTPService",
    "OTPStore",
    "OTPValidationResult",
    "SQLAlchemyOTPStore",
    "build_delivery_channel",
]
