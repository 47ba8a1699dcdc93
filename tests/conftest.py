"""Shared test fixtures for the BMNL Radar test suite.

Provides test settings, a throwaway SQLite database, the answer cipher,
a small questionnaire, and a FastAPI test client with app state wired
to those fixtures.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import src.core.models  # noqa: F401 - registers every table on Base.metadata
from src.bmnl.lifecycle import ParticipantService
from src.bmnl.questionnaire import Questionnaire
from src.bmnl.rights import DataRightsGateway
from src.core.auth import get_current_user, hash_password
from src.core.config import Settings, get_settings
from src.core.database import Base
from src.core.encryption import AnswerCipher, StaticKeyProvider
from src.core.models import User, UserRole

TEST_ANSWER_KEY = "test-answer-encryption-key"


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        app_env="testing",
        debug=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'bmnl_test.db'}",
        jwt_secret_key="test-secret-key-for-tests",
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
        auth_dev_mode=True,
        answer_encryption_key=TEST_ANSWER_KEY,
        erasure_grace_days=30,
        participant_retention_days=182,
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the full schema created."""
    engine = create_async_engine(test_settings.database_url or "")

    # aiosqlite defers BEGIN; take over transaction control so SAVEPOINTs nest properly.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cipher() -> AnswerCipher:
    return AnswerCipher(StaticKeyProvider(TEST_ANSWER_KEY))


@pytest.fixture
def questionnaire() -> Questionnaire:
    """Four questions covering every radar dimension; question 3 is sensitive."""
    return Questionnaire.from_dict(
        {
            "scoring_version": "v1",
            "questions": [
                {
                    "number": 1,
                    "text": "Why do you want to join?",
                    "axes": {"participation": 1.0, "openness_to_learning": 0.5},
                },
                {
                    "number": 2,
                    "text": "How do you act when unsure what is welcome?",
                    "axes": {"consent_literacy": 1.0, "inclusion_awareness": 0.5},
                },
                {
                    "number": 3,
                    "text": "How do you respond when overstimulated?",
                    "sensitive": True,
                    "axes": {"communal_responsibility": 1.0, "self_regulation": 0.5},
                },
                {
                    "number": 4,
                    "text": "How do you respond to feedback?",
                    "axes": {"self_regulation": 1.0, "openness_to_learning": 1.0},
                },
            ],
        }
    )


@pytest.fixture
def participant_service(
    db_session: AsyncSession,
    cipher: AnswerCipher,
    questionnaire: Questionnaire,
    test_settings: Settings,
) -> ParticipantService:
    return ParticipantService(db_session, cipher, questionnaire, settings=test_settings)


@pytest.fixture
def rights_gateway(db_session: AsyncSession, cipher: AnswerCipher, questionnaire: Questionnaire) -> DataRightsGateway:
    return DataRightsGateway(db_session, cipher, questionnaire)


@pytest.fixture
def make_user(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[User]]:
    """Insert and commit a platform user."""

    async def _make(
        role: UserRole = UserRole.MEMBER,
        email: str | None = None,
        password: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
            name=f"Test {role.value}",
            role=role,
            is_active=is_active,
            hashed_password=hash_password(password) if password else None,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
async def test_app(
    session_factory: async_sessionmaker[AsyncSession],
    db_engine: AsyncEngine,
    cipher: AnswerCipher,
    questionnaire: Questionnaire,
    test_settings: Settings,
) -> AsyncGenerator[Any, None]:
    """Create the application with app.state wired to the test database.

    The lifespan is skipped; instead, we manually set app.state.
    """
    from src.api.main import create_app
    from src.api.routes.auth import limiter

    app = create_app()
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory
    app.state.answer_cipher = cipher
    app.state.questionnaire = questionnaire
    app.dependency_overrides[get_settings] = lambda: test_settings
    limiter.reset()

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
def login_as(test_app: Any) -> Callable[[User], None]:
    """Make every request resolve ``get_current_user`` to the given user."""

    def _login(user: User) -> None:
        test_app.dependency_overrides[get_current_user] = lambda: user

    return _login


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
