from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.core.dependencies import get_otp_service, get_request_context
from app.core.observability import RequestContext
from app.schemas import (
    OTPIssueData,
    OTPIssueRequest,
    OTPIssueResponse,
    OTPResendRequest,
    OTPStatusData,
    OTPStatusResponse,
    OTPVerifyData,
    OTPVerifyRequest,
    OTPVerifyResponse,
    error_payload,
)
from app.services import OTPService
from app.services import exceptions as service_exceptions

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/issue", status_code=status.HTTP_201_CREATED, response_model=OTPIssueResponse)
def issue_otp(
    payload: OTPIssueRequest,
    context: RequestContext = Depends(get_request_context),
    service: OTPService = Depends(get_otp_service),
):
    result = service.generate(
        payload.subject_id,
        payload.purpose,
        payload.ttl_minutes,
        destination=payload.destination,
        context=context,
    )
    return OTPIssueResponse(data=OTPIssueData(otp_id=result.otp_id, expires_in=result.expires_in))


@router.post("/verify", response_model=OTPVerifyResponse)
def verify_otp(
    payload: OTPVerifyRequest,
    context: RequestContext = Depends(get_request_context),
    service: OTPService = Depends(get_otp_service),
):
    result = service.validate(payload.subject_id, payload.purpose, payload.code, context=context)
    if not result.is_valid:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_payload(
                "INVALID_CODE",
                result.message,
                remaining_attempts=result.remaining_attempts,
            ),
        )
    return OTPVerifyResponse(data=OTPVerifyData(verified=True, remaining_attempts=result.remaining_attempts))


@router.post("/resend", status_code=status.HTTP_201_CREATED, response_model=OTPIssueResponse)
def resend_otp(
    payload: OTPResendRequest,
    context: RequestContext = Depends(get_request_context),
    service: OTPService = Depends(get_otp_service),
):
    try:
        result = service.resend(
            payload.subject_id,
            payload.purpose,
            payload.ttl_minutes,
            destination=payload.destination,
            context=context,
        )
    except service_exceptions.OTPCooldown as exc:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(exc.remaining_seconds)},
            content=error_payload("COOLDOWN", str(exc), retry_after_seconds=exc.remaining_seconds),
        )
    return OTPIssueResponse(data=OTPIssueData(otp_id=result.otp_id, expires_in=result.expires_in))


@router.get("/{otp_id}", response_model=OTPStatusResponse)
def read_otp_status(otp_id: str, service: OTPService = Depends(get_otp_service)):
    try:
        data = service.get_status(otp_id)
    except service_exceptions.NotFoundError as exc:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=error_payload("NOT_FOUND", str(exc)),
        )
    return OTPStatusResponse(data=OTPStatusData(**data))
