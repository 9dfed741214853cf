import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REAPER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine import main
from booking_engine.database import get_db
from booking_engine.models import Base
from booking_engine.models.generated import (
    Addons,
    Durations,
    ExperienceOpenDates,
    Experiences,
    Products,
)
from booking_engine.services import events
from booking_engine.services.slots.resources import ADDON, PRODUCT, ResourceRef

DAY = "2030-06-10"

# Catalog ids
EXPERIENCE = 1
HOURS_1 = 1
HOURS_2 = 2
OVERNIGHTS_2 = 3
KAYAK = 1       # product, capacity 2
SUP = 2         # product, capacity 1
PADDLE = 1      # addon, capacity 5, tracked
LIFE_JACKET = 2  # addon, capacity 1, not tracked


class FakeRedis:
    def __init__(self):
        self.lists: dict[str, list[str]] = {}

    def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    def ping(self):
        return True

    def event_types(self) -> list[str]:
        return [json.loads(raw)["type"] for raw in self.lists.get(events.EVENTS_QUEUE, [])]


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(events, "redis_client", fake)
    monkeypatch.setattr(main, "redis_client", fake)
    return fake


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture()
def catalog(db):
    db.add(Experiences(id=EXPERIENCE, name="Lake tour", booking_foresight_hours=0))
    db.add(ExperienceOpenDates(
        experience_id=EXPERIENCE,
        type="interval",
        start_date="2024-01-01",
        end_date="2030-12-31",
        open_time="09:00",
        close_time="17:00",
    ))
    db.add_all([
        Durations(id=HOURS_1, duration_type="hours", duration_value=1, start_location_id=1),
        Durations(id=HOURS_2, duration_type="hours", duration_value=2, start_location_id=1),
        Durations(id=OVERNIGHTS_2, duration_type="overnights", duration_value=2, start_location_id=1),
        Products(id=KAYAK, name="Kayak", total_quantity=2),
        Products(id=SUP, name="SUP board", total_quantity=1),
        Addons(id=PADDLE, name="Spare paddle", total_quantity=5, track_availability=1),
        Addons(id=LIFE_JACKET, name="Life jacket", total_quantity=1, track_availability=0),
    ])
    db.commit()


@pytest.fixture()
def kayak():
    return ResourceRef(PRODUCT, KAYAK, 2)


@pytest.fixture()
def sup():
    return ResourceRef(PRODUCT, SUP, 1)


@pytest.fixture()
def paddle():
    return ResourceRef(ADDON, PADDLE, 5)


@pytest.fixture()
def booking_data():
    """Factory for checkout booking data; keyword arguments override fields."""
    def make(**overrides):
        data = {
            "experienceId": EXPERIENCE,
            "startLocationId": 1,
            "durationId": HOURS_1,
            "startDate": DAY,
            "startTime": "10:00",
            "endTime": "11:00",
            "products": [{"productId": KAYAK, "quantity": 1}],
            "addons": [],
        }
        data.update(overrides)
        return data
    return make


@pytest.fixture()
def client(engine, catalog):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
