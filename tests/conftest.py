from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kaskrout.config import settings
from kaskrout.db import Base
from kaskrout.main import app, get_db
from kaskrout.models import User
from kaskrout.security import hash_password


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client, session_factory):
    """Create a user directly in the store and return bearer headers for it."""

    def factory(name: str, role: str, password: str = "secret1") -> dict:
        stamp = datetime.now(timezone.utc)
        with session_factory() as session:
            session.add(
                User(
                    name=name,
                    password_hash=hash_password(password),
                    role=role,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            session.commit()
        resp = client.post("/api/v1/auth/login", json={"name": name, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['data']['token']}"}

    return factory


@pytest.fixture
def admin_headers(make_user):
    return make_user("boss", "admin")


@pytest.fixture
def user_headers(make_user):
    return make_user("cashier", "user")
