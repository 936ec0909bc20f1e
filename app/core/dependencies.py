from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.db import get_db_session
from app.core.observability import RequestContext
from app.services import BaseDeliveryChannel, OTPService, SQLAlchemyOTPStore, build_delivery_channel


def get_db() -> Session:
    yield from get_db_session()


@lru_cache
def get_delivery_channel() -> BaseDeliveryChannel:
    return build_delivery_channel(get_settings())


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        client_host = request.client.host if request.client else None
        context = RequestContext(ip=client_host, user_agent=request.headers.get("user-agent"))
    return context


def get_otp_service(
    db: Session = Depends(get_db),
    channel: BaseDeliveryChannel = Depends(get_delivery_channel),
) -> OTPService:
    return OTPService(SQLAlchemyOTPStore(db), channel)
