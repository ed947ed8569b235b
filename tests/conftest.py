import itertools
import os
from datetime import datetime
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENTS_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./test-logs")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import Booking, BookingStatus, ProviderProfile, RoleEnum, User  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.reviews.aggregator import clear_summary_cache  # noqa: E402
from services.reviews.app import app as reviews_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    clear_summary_cache()
    yield
    clear_summary_cache()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    counter = itertools.count(1)

    def factory(role: RoleEnum = RoleEnum.CLIENT) -> User:
        n = next(counter)
        user = User(
            name=f"{role.value.title()} {n}",
            username=f"{role.value}{n}",
            email=f"{role.value}{n}@example.com",
            role=role,
            hashed_password="unused",
        )
        if role == RoleEnum.PROVIDER:
            user.profile = ProviderProfile(display_name=user.name)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def make_booking(db_session) -> Callable[..., Booking]:
    def factory(client: User, provider: User, status: BookingStatus = BookingStatus.COMPLETED) -> Booking:
        booking = Booking(
            client_id=client.id,
            provider_id=provider.id,
            profile_id=provider.profile.id,
            service_name="Dinner companion",
            scheduled_at=datetime(2026, 3, 14, 19, 30),
            status=status,
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking

    return factory


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def reviews_client() -> Generator[TestClient, None, None]:
    with TestClient(reviews_app) as client:
        yield client


@pytest.fixture()
def signup(users_client) -> Callable[..., tuple[dict, dict[str, str]]]:
    """Register a user through the users service and return (user, auth headers)."""

    def factory(username: str, role: RoleEnum = RoleEnum.CLIENT) -> tuple[dict, dict[str, str]]:
        register = users_client.post(
            "/users/register",
            json={
                "name": username.title(),
                "username": username,
                "email": f"{username}@example.com",
                "password": PASSWORD,
                "role": role.value,
            },
        )
        assert register.status_code == 201, register.text
        login = users_client.post(
            "/users/login",
            data={"username": username, "password": PASSWORD},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = login.json()["access_token"]
        return register.json(), {"Authorization": f"Bearer {token}"}

    return factory
