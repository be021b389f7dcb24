import os
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./logs/test")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common import auth  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import Room, RoomType  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402
from services.rooms.app import room_catalog_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "Adm1nPass!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    room_catalog_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


def auth_header(users_client: TestClient, username: str, password: str) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def register_guest(users_client: TestClient, username: str, password: str = "Passw0rd!") -> dict[str, str]:
    users_client.post(
        "/users/register",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "phone": "+251900000000",
        },
    )
    return auth_header(users_client, username, password)


@pytest.fixture()
def admin_headers(users_client, db_session) -> dict[str, str]:
    auth.ensure_admin(db_session, ADMIN_USERNAME, ADMIN_PASSWORD)
    return auth_header(users_client, ADMIN_USERNAME, ADMIN_PASSWORD)


@pytest.fixture()
def guest_headers(users_client) -> dict[str, str]:
    return register_guest(users_client, "guest1")


@pytest.fixture()
def make_room(db_session) -> Callable[..., Room]:
    def _make_room(
        name: str = "Standard Room 101",
        nightly_rate: float = 1500,
        max_guests: int = 2,
        room_type: RoomType = RoomType.STANDARD,
    ) -> Room:
        room = Room(
            name=name,
            room_type=room_type,
            nightly_rate=nightly_rate,
            max_guests=max_guests,
            amenities=["WiFi"],
        )
        db_session.add(room)
        db_session.commit()
        db_session.refresh(room)
        return room

    return _make_room


@pytest.fixture()
def guest_factory(users_client) -> Callable[[str], dict[str, str]]:
    return lambda username: register_guest(users_client, username)
