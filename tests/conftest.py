import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import anyio
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///" + str(BASE_DIR / "test.db"))
os.environ.setdefault("OTP_EXPIRATION_MINUTES", "5")
os.environ.setdefault("OTP_MAX_ATTEMPTS", "3")
os.environ.setdefault("OTP_LENGTH", "6")
os.environ.setdefault("OTP_RESEND_COOLDOWN_SECONDS", "60")
os.environ.setdefault("SMS_DRY_RUN", "true")
os.environ.setdefault("LOG_LEVEL", "INFO")

from app.core.config import get_settings
from app.core import db as db_module
from app.core.dependencies import get_db, get_delivery_channel
from app.models import Base, OTPPurpose
from app.main import app
from app.services import DeliveryResult, InMemoryOTPStore, OTPService
from app.services.delivery import BaseDeliveryChannel

get_settings.cache_clear()

db_module._engine = None
db_module._SessionLocal = None
_db_path = BASE_DIR / "test.db"


def _create_engine():
    settings = get_settings()
    connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
    return create_engine(settings.DATABASE_URL, connect_args=connect_args)


def _create_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingChannel(BaseDeliveryChannel):
    name = "recording"

    def __init__(self, *, fail_with: str | None = None, gate: threading.Event | None = None):
        self.sent: list[dict] = []
        self.fail_with = fail_with
        self.gate = gate

    def send(self, *, destination: str, code: str, purpose: OTPPurpose) -> DeliveryResult:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        self.sent.append({"destination": destination, "code": code, "purpose": purpose})
        if self.fail_with:
            return DeliveryResult(success=False, destination=destination, channel=self.name, error=self.fail_with)
        return DeliveryResult(
            success=True,
            destination=destination,
            channel=self.name,
            message_id=f"msg-{len(self.sent)}",
        )

    @property
    def last_code(self) -> str:
        return self.sent[-1]["code"]


def wrong_code(code: str) -> str:
    return str((int(code) + 1) % 10 ** len(code)).zfill(len(code))


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def channel():
    return RecordingChannel()


@pytest.fixture()
def memory_store():
    return InMemoryOTPStore()


@pytest.fixture()
def otp_service(memory_store, channel, clock):
    return OTPService(memory_store, channel, clock=clock)


@pytest.fixture(scope="session")
def engine():
    engine = _create_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if _db_path.exists():
        _db_path.unlink()


@pytest.fixture(scope="session")
def session_factory(engine):
    return _create_session_factory(engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory, channel):
    def _get_test_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_delivery_channel] = lambda: channel

    class _SyncASGIClient:
        def __init__(self, fastapi_app):
            self._client = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=fastapi_app),
                base_url="http://testserver",
            )

        def request(self, method: str, url: str, **kwargs):
            async def _do_request():
                return await self._client.request(method, url, **kwargs)

            return anyio.run(_do_request)

        def get(self, url: str, **kwargs):
            return self.request("GET", url, **kwargs)

        def post(self, url: str, **kwargs):
            return self.request("POST", url, **kwargs)

        def close(self):
            async def _do_close():
                await self._client.aclose()

            anyio.run(_do_close)

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.close()

    with _SyncASGIClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
