from app.models.enums import OTPFailureReason


class ServiceError(Exception):
    """Base exception for service-level errors."""


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ServiceError):
    pass


class OTPError(ServiceError):
    """Raised by ``OneTimePassword`` when a code can no longer be verified."""

    reason: OTPFailureReason


class OTPExpired(OTPError):
    reason = OTPFailureReason.EXPIRED


class OTPAlreadyUsed(OTPError):
    reason = OTPFailureReason.ALREADY_USED


class OTPLockedOut(OTPError):
    reason = OTPFailureReason.LOCKED_OUT


class OTPCooldown(ServiceError):
    def __init__(self, message: str, *, remaining_seconds: int):
        super().__init__(message)
        self.remaining_seconds = remaining_seconds

    @property
    def remaining_minutes(self) -> int:
        return self.remaining_seconds // 60


class OTPDeliveryFailed(ServiceError):
    pass


class StorageError(ServiceError):
    pass


class OTPConcurrentModification(StorageError):
    pass
