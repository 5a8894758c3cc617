import os

# Ensure JWT_SECRET exists before importing puretools.main (it calls require_jwt_secret() at import time).
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from puretools.core.base import Base
from puretools.core import config as app_config

# Import models so they register with SQLAlchemy metadata.
from puretools.models.user import User
from puretools.models.credit import CreditTransaction, UsageLog  # noqa: F401
from puretools.models.promo import PromoCode, PromoCodeRedemption  # noqa: F401
from puretools.models.referral import Referral  # noqa: F401
from puretools.models.stripe_event import StripeEvent  # noqa: F401

from puretools.core.database import get_db
from puretools.dependencies.auth import get_current_user
from puretools.services.ai_provider import (
    AIProviderError,
    ImageResult,
    SpeechResult,
    TextResult,
    TranscriptionResult,
    get_ai_provider,
)
from puretools.services.rate_limiter import reset_rate_limiter


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # Important: because we use an in-memory SQLite DB with StaticPool, the DB
    # persists across tests. Reset schema per test to avoid cross-test coupling.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, we must restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "RATE_LIMIT_ENABLED",
        "RATE_LIMIT_BACKEND",
        "RATE_LIMIT_AI_REQUESTS",
        "DDB_RATE_LIMIT_TABLE",
        "WELCOME_BONUS_CREDITS",
        "REFERRAL_BONUS_CREDITS",
        "USAGE_LOG_RETENTION_DAYS",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "AI_MAX_AUDIO_BYTES",
        "JWT_AUDIENCE",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    reset_rate_limiter()
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)
        # Default all tests to "rate limiting disabled" unless a test explicitly enables it.
        app_config.settings.RATE_LIMIT_ENABLED = False
        reset_rate_limiter()


class FakeAIProvider:
    """Deterministic stand-in for OpenAIProvider; records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_with: Exception | None = None
        self.transcription_duration: float | None = 30.0

    def _record(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def translate(self, *, text, target_language, source_language=None):
        self._record("translate", text=text, target_language=target_language, source_language=source_language)
        return TextResult(text=f"[{target_language}] {text}", model="fake")

    def summarize(self, *, text, length, style, language=None):
        self._record("summarize", text=text, length=length, style=style, language=language)
        return TextResult(text="short summary of the text", model="fake")

    def speech(self, *, text, voice, model, speed, response_format):
        self._record("speech", text=text, voice=voice, model=model, speed=speed, response_format=response_format)
        return SpeechResult(audio=b"fake-audio", content_type="audio/mpeg", model=model)

    def generate_image(self, *, prompt, size, quality, style):
        self._record("generate_image", prompt=prompt, size=size, quality=quality, style=style)
        return ImageResult(url="https://images.example.invalid/1.png", revised_prompt=prompt, model="fake")

    def transcribe(self, *, filename, content, language=None):
        self._record("transcribe", filename=filename, size=len(content), language=language)
        return TranscriptionResult(
            text="hello world",
            duration_seconds=self.transcription_duration,
            language="en",
            segments=[{"start": 0.0, "end": 1.0, "text": "hello world"}],
        )


@pytest.fixture()
def fake_ai():
    return FakeAIProvider()


@pytest.fixture()
def failing_ai(fake_ai):
    fake_ai.fail_with = AIProviderError("upstream unavailable")
    return fake_ai


@pytest.fixture()
def app(db_session, fake_ai):
    # Ensure settings has a JWT secret even if imported earlier.
    app_config.settings.JWT_SECRET = app_config.settings.JWT_SECRET or "test_jwt_secret"
    app_config.settings.RATE_LIMIT_ENABLED = False

    import puretools.main as main

    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_ai_provider] = lambda: fake_ai
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def users(db_session):
    """
    Two distinct users with an empty balance for ownership / isolation tests.
    """
    user_a = User(external_subject="sub-test", email="test@example.com", name="Test User", credits=0)
    user_b = User(external_subject="sub-other", email="other@example.com", name="Other User", credits=0)
    db_session.add_all([user_a, user_b])
    db_session.commit()
    db_session.refresh(user_a)
    db_session.refresh(user_b)
    return user_a, user_b


@pytest.fixture()
def client(app, users):
    """
    Default client authenticated as user_a.
    """
    user_a, _ = users
    app.dependency_overrides[get_current_user] = lambda: user_a
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def anonymous_client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def client_for(app):
    """
    Context manager to create a client authenticated as an arbitrary user.

    Usage:
        with client_for(user) as c:
            ...
    """

    @contextmanager
    def _client_for(user: User):
        app.dependency_overrides[get_current_user] = lambda: user
        with TestClient(app) as c:
            yield c
        app.dependency_overrides.pop(get_current_user, None)

    return _client_for
