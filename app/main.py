import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.database_init import init_database_schema
from app.core.db import get_engine
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware
from app.routers import get_api_router
from app.schemas import error_payload
from app.services import exceptions as service_exceptions


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    logger = logging.getLogger("app.errors")

    app = FastAPI(title=settings.PROJECT_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "Validation error on %s %s detail=%s",
            request.method,
            request.url.path,
            exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_payload(
                "VALIDATION_ERROR",
                "Request validation failed",
                details=jsonable_encoder(exc.errors()),
            ),
        )

    @app.exception_handler(service_exceptions.ValidationError)
    async def service_validation_handler(request: Request, exc: service_exceptions.ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_payload("VALIDATION_ERROR", str(exc), details={"field": exc.field}),
        )

    @app.exception_handler(service_exceptions.OTPDeliveryFailed)
    async def delivery_failed_handler(request: Request, exc: service_exceptions.OTPDeliveryFailed):
        logger.error("OTP delivery failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=error_payload("DELIVERY_FAILED", "Could not deliver the verification code"),
        )

    @app.exception_handler(service_exceptions.StorageError)
    async def storage_error_handler(request: Request, exc: service_exceptions.StorageError):
        logger.error("Storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_payload("STORAGE_UNAVAILABLE", "Service temporarily unavailable"),
        )

    api_router = get_api_router()
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.on_event("startup")
    def startup_event():
        init_database_schema(get_engine())

    return app


app = create_app()
