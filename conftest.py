import os
from pathlib import Path

# Must be set before the app modules are imported: they read these at import time.
TEST_DATABASE_URL = "sqlite:///./doup-test.db"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app, get_db

# Import database components needed for setup
from database import Base, build_engine
import models
from auth import create_access_token
from nonce_store import NonceStore, get_nonce_store
from settings import Settings, get_settings
from world_id import WorldIDClient, get_world_id_client

ROOT_DIR = Path(__file__).resolve().parent

# Same pragmas as the app engine, foreign-key enforcement included
test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def _remove_database_files(db_path: str) -> None:
    for path in (db_path, f"{db_path}-wal", f"{db_path}-shm"):
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    _remove_database_files(db_path)

    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)
    command.stamp(alembic_cfg, "head")

    yield  # Tests run here

    test_engine.dispose()
    _remove_database_files(db_path)


@pytest.fixture(autouse=True)
def clean_tables(setup_test_database):
    """Every test starts from empty tables."""
    yield
    with test_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")  # Function scope for session
def db_session(setup_test_database):
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    """Settings used by the app during a test; tweak fields before issuing requests."""
    test_settings = Settings(
        _env_file=None,
        environment="development",
        jwt_secret="test-secret",
        api_base_url="https://api.doup.test",
        frontend_url="https://app.doup.test",
        rate_limit_enabled=False,
    )
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield test_settings
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
def nonce_store():
    store = NonceStore(ttl_seconds=300)
    app.dependency_overrides[get_nonce_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_nonce_store, None)


@pytest.fixture
def world_id_client():
    """World ID client whose network calls are AsyncMocks."""
    client = MagicMock(spec=WorldIDClient)
    client.verify_proof = AsyncMock(return_value={"status": "verified", "data": {"success": True}})
    client.verify_payment = AsyncMock()
    client.get_oauth_token = AsyncMock()
    client.get_user_profile = AsyncMock()
    app.dependency_overrides[get_world_id_client] = lambda: client
    yield client
    app.dependency_overrides.pop(get_world_id_client, None)


# Override the get_db dependency for tests
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db, settings, nonce_store, world_id_client):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


# --- Helpers shared by the test modules --- #
def create_test_user(db, nickname: str = "tester", **fields) -> models.User:
    user = models.User(nickname=nickname, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_test_job(db, title: str = "Backend Engineer", **fields) -> models.Job:
    values = dict(
        company="Acme",
        description="Build APIs",
        requirements=["Python"],
        salary_min=100000,
        salary_max=150000,
        location="Remote",
        remote=True,
        type=models.JobType.FULL_TIME,
        category="Engineering",
    )
    values.update(fields)
    job = models.Job(title=title, **values)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def auth_headers(user: models.User, settings: Settings) -> dict:
    token = create_access_token(user.id, settings, nickname=user.nickname)
    return {"Authorization": f"Bearer {token}"}
