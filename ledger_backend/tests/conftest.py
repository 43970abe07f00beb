import sys
from pathlib import Path

# Ensure project root is on sys.path so `import ledger_backend` works when running the tests directly
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from ledger_backend.app import UserContext, app, get_session, require_user_context
from ledger_backend.models import User


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    return make_engine()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def _override_session(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    return override_session


@pytest.fixture
def client(engine):
    """Client whose requests run as an already-authenticated user."""
    app.dependency_overrides[get_session] = _override_session(engine)

    def override_user():
        with Session(engine) as session:
            user = session.exec(select(User).where(User.username == "tester")).first()
            if not user:
                user = User(username="tester", password_hash="test", is_active=True)
                session.add(user)
                session.commit()
                session.refresh(user)
            yield UserContext(session=session, user=user)

    app.dependency_overrides[require_user_context] = override_user
    test_client = TestClient(app)
    test_client._engine = engine  # type: ignore[attr-defined]
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(engine):
    """Client that goes through real bearer-token authentication."""
    app.dependency_overrides[get_session] = _override_session(engine)
    test_client = TestClient(app)
    test_client._engine = engine  # type: ignore[attr-defined]
    yield test_client
    app.dependency_overrides.clear()
