from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmdesk import audit, events
from crmdesk.api.deps import get_current_user
from crmdesk.core.auth import permissions_for_role
from crmdesk.core.config import get_settings
from crmdesk.core.database import Base, get_db
from crmdesk.crm.service import ActorUser
from crmdesk.main import app
from crmdesk.users.models import User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, int]:
    alice = User(username="alice", email="alice@example.com", password_hash="x", role="user")
    bob = User(username="bob", email="bob@example.com", password_hash="x", role="user")
    admin = User(username="admin", email="admin@example.com", password_hash="x", role="admin")
    db_session.add_all([alice, bob, admin])
    db_session.commit()
    return {"alice": alice.id, "bob": bob.id, "admin": admin.id}


def make_actor(user_id: int | str, role: str = "user", permissions: set[str] | None = None) -> ActorUser:
    return ActorUser(
        user_id=str(user_id),
        username=f"user-{user_id}",
        role=role,
        permissions=permissions if permissions is not None else permissions_for_role(role),
        correlation_id="corr-test",
    )


@pytest.fixture()
def client(
    db_session: Session,
    users: dict[str, int],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    actors = {
        "alice": make_actor(users["alice"]),
        "bob": make_actor(users["bob"]),
        "admin": make_actor(users["admin"], role="admin"),
        "reader": make_actor(users["alice"], permissions={"crm.contacts.read", "crm.companies.read"}),
        "anonymous": ActorUser(user_id="anonymous", username="anonymous", role="guest"),
    }
    state = {"current": "alice"}

    def override_get_current_user() -> ActorUser:
        return actors[state["current"]]

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()
