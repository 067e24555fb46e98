"""
Shared fixtures for the Kurator test suite.

Tests run against an in-memory SQLite database. API tests use a FastAPI
TestClient whose get_db and get_app_config dependencies are overridden;
the startup event (which would connect to PostgreSQL) never runs.
"""

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import _enable_sqlite_foreign_keys
from database.models import Base, Block, BlockCurator, CuratorType, ReferenceValue, User, UserRole
from security_logger import get_security_logger, reset_security_logger
from services.encryption import EncryptionService
from services.password_hasher import PasswordHasher

TEST_ENCRYPTION_KEY = "kurator-test-encryption-key"
TEST_PASSWORD = "Password123!"

TEST_CONFIG_YAML = f"""
security:
  encryption_key: "{TEST_ENCRYPTION_KEY}"
  bcrypt_rounds: 4
paging:
  default_page_size: 20
  max_page_size: 50
seed:
  admin_login: "admin"
  admin_password: "Admin123!"
logging:
  level: "DEBUG"
"""


# ============================================
# DATABASE
# ============================================

@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every connection of a test, foreign keys enforced."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Session configured like DatabaseSessionProvider's."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    yield session
    session.close()


@pytest.fixture
def catalogue(session):
    """Reference values with ids 1..25 for tests that set lookup ids directly."""
    session.add_all(
        ReferenceValue(id=i, category="Test", code=str(i), name=f"Value {i}", sort_order=i)
        for i in range(1, 26)
    )
    session.commit()


# ============================================
# CONFIGURATION & SERVICES
# ============================================

@pytest.fixture
def config(tmp_path, monkeypatch):
    """Configuration loaded from a temporary YAML file."""
    monkeypatch.delenv("KURATOR_ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("KURATOR_ADMIN_PASSWORD", raising=False)

    config_file = tmp_path / "config.yaml"
    config_file.write_text(TEST_CONFIG_YAML, encoding="utf-8")

    ConfigManager.reset_instance()
    yield ConfigManager(str(config_file))
    ConfigManager.reset_instance()


@pytest.fixture
def encryption():
    return EncryptionService(TEST_ENCRYPTION_KEY)


@pytest.fixture
def hasher():
    """Fast hasher (minimum bcrypt work factor)."""
    return PasswordHasher(rounds=4)


@pytest.fixture(autouse=True)
def security_log():
    """Console- and file-less security logger, recreated for every test."""
    reset_security_logger()
    yield get_security_logger(enable_file=False)
    reset_security_logger()


# ============================================
# FACTORIES
# ============================================

@pytest.fixture
def make_user(session, hasher):
    """Factory creating committed users. Users have finished MFA setup unless told otherwise."""
    counter = {'n': 0}

    def _make_user(role=UserRole.CURATOR, login=None, password=TEST_PASSWORD, **fields):
        counter['n'] += 1
        values = {
            'is_first_login': False,
            'mfa_enabled': False,
            'is_active': True,
        }
        values.update(fields)
        user = User(
            login=login or f"{role.value.lower()}{counter['n']}",
            password_hash=hasher.hash_password(password),
            role=role,
            **values
        )
        session.add(user)
        session.commit()
        return user

    return _make_user


@pytest.fixture
def make_block(session):
    """Factory creating committed blocks."""
    counter = {'n': 0}

    def _make_block(code=None, name=None, **fields):
        counter['n'] += 1
        block = Block(
            code=code or f"BLK{counter['n']}",
            name=name or f"Block {counter['n']}",
            **fields
        )
        session.add(block)
        session.commit()
        return block

    return _make_block


@pytest.fixture
def assign(session):
    """Assign a user to a block as curator."""

    def _assign(block, user, curator_type=CuratorType.PRIMARY):
        assignment = BlockCurator(block_id=block.id, user_id=user.id, curator_type=curator_type)
        session.add(assignment)
        session.commit()
        session.expire(block, ['curators'])
        session.expire(user, ['block_assignments'])
        return assignment

    return _assign


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, login="admin")


@pytest.fixture
def curator(make_user):
    return make_user(UserRole.CURATOR, login="curator")


@pytest.fixture
def analyst(make_user):
    return make_user(UserRole.THREAT_ANALYST, login="analyst")


# ============================================
# API CLIENT
# ============================================

@pytest.fixture
def client(session, config, monkeypatch):
    """TestClient wired to the test session and configuration.

    The client is not used as a context manager, so the startup event
    (PostgreSQL bootstrap) does not run.
    """
    from fastapi.testclient import TestClient

    from api.dependencies import get_app_config
    from api.server import app
    from database.connection import get_db

    monkeypatch.delenv("API_KEY", raising=False)

    def override_get_db():
        try:
            yield session
        except Exception:
            session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_config] = lambda: config
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Gateway identity headers for a user."""

    def _auth(user):
        return {"X-User-Id": str(user.id)}

    return _auth
