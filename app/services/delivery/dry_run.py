from __future__ import annotations

import logging
import uuid

from app.models.enums import OTPPurpose

from .base import BaseDeliveryChannel, DeliveryResult
from .eskiz import render_message

sms_logger = logging.getLogger("app.sms")


class LoggingDeliveryChannel(BaseDeliveryChannel):
    """Writes the message to the ``app.sms`` log instead of sending it."""

    name = "dry-run"

    def __init__(self, *, template: str):
        self._template = template

    def send(self, *, destination: str, code: str, purpose: OTPPurpose) -> DeliveryResult:
        message = render_message(self._template, code=code, purpose=purpose)
        message_id = f"dry-{uuid.uuid4().hex[:12]}"
        sms_logger.info(
            "DRY-RUN OTP SMS | destination=%s | purpose=%s | message=\"%s\" | message_id=%s",
            destination,
            purpose.value,
            message,
            message_id,
        )
        return DeliveryResult(
            success=True,
            destination=destination,
            channel=self.name,
            message_id=message_id,
            status="logged",
        )
