from datetime import time
from decimal import Decimal

import pytest

from app.models.db_models import Business, Resource, SlotSettings, WeeklyScheduleEntry
from app.services.booking_service import BookingService
from app.services.db_service import MemoryStore


def build_store(days=range(7), opens=time(9, 0), closes=time(17, 0), **overrides) -> MemoryStore:
    """
    One business with one room open `opens`-`closes` on `days`.
    Settings default to a 30 min grid, 15 min cleanup buffer, no minimum notice.
    """
    store = MemoryStore()
    store.businesses["biz-1"] = Business(id="biz-1", name="Riverside Spa", type="spa")
    store.resources["room-1"] = Resource(
        id="room-1",
        business_id="biz-1",
        name="Room 1",
        capacity=2,
        base_price=Decimal("100.00"),
        bookable_type_id="bt-massage",
    )
    store.schedules = [
        WeeklyScheduleEntry(resource_id="room-1", day_of_week=d, start_time=opens, end_time=closes)
        for d in days
    ]
    values = dict(
        slot_increment_minutes=30,
        buffer_before_minutes=0,
        buffer_after_minutes=15,
        min_advance_hours=0,
        max_advance_days=60,
    )
    values.update(overrides)
    store.slot_settings["room-1"] = SlotSettings(resource_id="room-1", **values)
    return store


@pytest.fixture
def make_store():
    return build_store


@pytest.fixture
def store():
    return build_store()


@pytest.fixture
def service(store):
    return BookingService(store)
