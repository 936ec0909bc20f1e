from __future__ import annotations

import logging
from typing import Any

from eskiz_sms import EskizSMS
from eskiz_sms.exceptions import EskizException

from app.models.enums import OTPPurpose

from .base import BaseDeliveryChannel, DeliveryResult

logger = logging.getLogger(__name__)

PURPOSE_LABELS = {
    OTPPurpose.REGISTRATION: "registration",
    OTPPurpose.LOGIN: "login",
    OTPPurpose.PASSWORD_RESET: "password reset",
}


def render_message(template: str, *, code: str, purpose: OTPPurpose) -> str:
    return template.format(code=code, purpose=PURPOSE_LABELS.get(purpose, purpose.value.lower()))


class EskizSMSChannel(BaseDeliveryChannel):
    """Eskiz implementation of the delivery channel interface."""

    name = "eskiz"

    def __init__(
        self,
        *,
        email: str,
        password: str,
        sender: str,
        template: str,
        callback_url: str | None = None,
        client: Any | None = None,
    ):
        self._sender = sender
        self._template = template
        self._client = client or EskizSMS(email=email, password=password, callback_url=callback_url)

    def send(self, *, destination: str, code: str, purpose: OTPPurpose) -> DeliveryResult:
        message = render_message(self._template, code=code, purpose=purpose)
        logger.debug("Sending Eskiz SMS | phone=%s | purpose=%s", destination, purpose.value)
        try:
            response = self._client.send_sms(
                mobile_phone=destination,
                message=message,
                from_whom=self._sender,
            )
        except EskizException as exc:
            logger.exception("Eskiz SMS sending failed | phone=%s", destination)
            return DeliveryResult(
                success=False,
                destination=destination,
                channel=self.name,
                error=f"Eskiz rejected SMS send request: {exc}",
            )

        meta: dict[str, Any] = {}
        if response.message:
            meta["message"] = response.message
        if response.data:
            meta["data"] = response.data

        return DeliveryResult(
            success=True,
            destination=destination,
            channel=self.name,
            message_id=response.id,
            status=response.status,
            meta=meta or None,
        )
