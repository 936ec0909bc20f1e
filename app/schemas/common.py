from typing import Any, Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    remaining_attempts: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail


def error_payload(code: str, message: str, **fields: Any) -> dict:
    detail = ErrorDetail(code=code, message=message, **fields)
    return ErrorResponse(error=detail).model_dump(exclude_none=True)
