from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.models.enums import OTPPurpose


class OTPIssueRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=128)
    purpose: OTPPurpose
    destination: Optional[str] = Field(default=None, pattern=r"^\+?\d{7,15}$")
    ttl_minutes: Optional[int] = Field(default=None, ge=1, le=60)

    @field_validator("subject_id")
    @classmethod
    def normalize_subject(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("subject_id cannot be blank")
        return normalized


class OTPResendRequest(OTPIssueRequest):
    pass


class OTPVerifyRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=128)
    purpose: OTPPurpose
    code: str = Field(..., min_length=4, max_length=8)

    @field_validator("subject_id", "code")
    @classmethod
    def strip_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("value cannot be blank")
        return normalized


class OTPIssueData(BaseModel):
    otp_id: str
    expires_in: int


class OTPIssueResponse(BaseModel):
    success: bool = True
    data: OTPIssueData


class OTPVerifyData(BaseModel):
    verified: bool
    remaining_attempts: int


class OTPVerifyResponse(BaseModel):
    success: bool = True
    data: OTPVerifyData


class OTPStatusData(BaseModel):
    otp_id: str
    purpose: OTPPurpose
    expires_in: int
    remaining_attempts: int
    is_expired: bool
    is_valid: bool


class OTPStatusResponse(BaseModel):
    success: bool = True
    data: OTPStatusData
