from .common import ErrorDetail, ErrorResponse, error_payload
from .otp import (
    OTPIssueData,
    OTPIssueRequest,
    OTPIssueResponse,
    OTPResendRequest,
    OTPStatusData,
    OTPStatusResponse,
    OTPVerifyData,
    OTPVerifyRequest,
    OTPVerifyResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "error_payload",
    "OTPIssueData",
    "OTPIssueRequest",
    "OTPIssueResponse",
    "OTPResendRequest",
    "OTPStatusData",
    "OTPStatusResponse",
    "OTPVerifyData",
    "OTPVerifyRequest",
    "OTPVerifyResponse",
]
