from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from app.models.enums import OTPPurpose


@dataclass(slots=True)
class DeliveryResult:
    """Normalized response returned by delivery channels."""

    success: bool
    destination: str
    channel: str
    message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    meta: Optional[dict[str, Any]] = None


class BaseDeliveryChannel(ABC):
    """Interface all OTP delivery channels must implement."""

    name: str

    @abstractmethod
    def send(self, *, destination: str, code: str, purpose: OTPPurpose) -> DeliveryResult:
        """Deliver ``code`` to ``destination``.

        Transport failures are reported through ``DeliveryResult.success``
        rather than raised.
        """
        raise NotImplementedError
