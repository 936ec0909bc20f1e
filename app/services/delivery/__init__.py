from app.core.config import Settings

from .base import BaseDeliveryChannel, DeliveryResult
from .dry_run import LoggingDeliveryChannel
from .eskiz import EskizSMSChannel


def build_delivery_channel(settings: Settings) -> BaseDeliveryChannel:
    if settings.SMS_DRY_RUN:
        return LoggingDeliveryChannel(template=settings.ESKIZ_SMS_TEMPLATE)
    return EskizSMSChannel(
        email=settings.ESKIZ_LOGIN,
        password=settings.ESKIZ_PASSWORD,
        sender=settings.ESKIZ_FROM_WHOM,
        template=settings.ESKIZ_SMS_TEMPLATE,
    )


__all__ = [
    "BaseDeliveryChannel",
    "DeliveryResult",
    "EskizSMSChannel",
    "LoggingDeliveryChannel",
    "build_delivery_channel",
]
