from datetime import datetime, time, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.core.clock import local_now
from app.main import app
from app.models.db_models import PricingRule
from app.services.db_service import set_store


@pytest.fixture
def api_store(make_store):
    store = make_store()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture
def client(api_store):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def next_week():
    return local_now().date() + timedelta(days=7)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_availability(client, next_week):
    response = client.get("/availability", params={"id": "room-1", "date": next_week.isoformat(), "duration": 60})
    assert response.status_code == 200

    slots = response.json()["slots"]
    assert slots[0]["start_time"] == datetime.combine(next_week, time(9)).isoformat()
    assert slots[0]["resource_name"] == "Room 1"
    assert slots[0]["base_price"] == 100.0


def test_availability_bad_duration(client, next_week):
    response = client.get("/availability", params={"id": "room-1", "date": next_week.isoformat(), "duration": -15})
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_next_available(client, next_week):
    response = client.get("/availability/next", params={"id": "biz-1", "from_date": next_week.isoformat()})
    assert response.status_code == 200
    body = response.json()
    assert body["day"] == next_week.isoformat()
    assert body["slots"]


def test_resolve_price(client, api_store):
    api_store.pricing_rules = [
        PricingRule(business_id="biz-1", modifier_type="fixed_amount", modifier_value=Decimal("5"), priority=20),
        PricingRule(business_id="biz-1", modifier_type="percentage", modifier_value=Decimal("10"), priority=10),
    ]
    response = client.post("/pricing/resolve", json={"base_price": "100.00", "business_id": "biz-1"})
    assert response.status_code == 200
    assert response.json() == {"final_price": 115.0}


def test_resolve_price_unknown_business(client):
    response = client.post("/pricing/resolve", json={"base_price": 10, "business_id": "ghost"})
    assert response.status_code == 404


def test_checkout_then_conflict(client, api_store, next_week):
    start = datetime.combine(next_week, time(9)).isoformat()
    payload = {"resource_id": "room-1", "start_time": start, "duration": 60, "guest_name": "Ada"}

    first = client.post("/bookings", json=payload)
    assert first.status_code == 201
    assert first.json()["status"] == "pending"
    assert first.json()["price"] == 100.0
    assert first.json()["id"] in api_store.bookings

    second = client.post("/bookings", json=payload)
    assert second.status_code == 409
    assert second.json()["error"] == "SlotUnavailable"


def test_checkout_price_changed(client, api_store, next_week):
    api_store.pricing_rules = [
        PricingRule(business_id="biz-1", modifier_type="percentage", modifier_value=Decimal("20"), priority=1),
    ]
    start = datetime.combine(next_week, time(10)).isoformat()
    response = client.post("/bookings", json={"resource_id": "room-1", "start_time": start, "quoted_price": 100})

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "PriceChanged"
    assert body["detail"]["current_price"] == "120.00"


def test_cancel_booking(client, next_week):
    start = datetime.combine(next_week, time(11)).isoformat()
    booking = client.post("/bookings", json={"resource_id": "room-1", "start_time": start}).json()

    response = client.post(f"/bookings/{booking['id']}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    fetched = client.get(f"/bookings/{booking['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "cancelled"


def test_cancel_unknown_booking(client):
    response = client.post("/bookings/does-not-exist/cancel")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


def test_hold_and_release(client, next_week):
    start = datetime.combine(next_week, time(13)).isoformat()
    hold = client.post("/holds", json={"resource_id": "room-1", "start_time": start, "session_id": "web-1"})
    assert hold.status_code == 201
    assert hold.json()["status"] == "active"

    taken = client.post("/bookings", json={"resource_id": "room-1", "start_time": start})
    assert taken.status_code == 409

    released = client.post(f"/holds/{hold.json()['id']}/release")
    assert released.status_code == 200
    assert released.json()["status"] == "released"


def test_checkout_with_someone_elses_hold(client, api_store, next_week):
    start = datetime.combine(next_week, time(15)).isoformat()
    hold = client.post("/holds", json={"resource_id": "room-1", "start_time": start, "session_id": "web-1"}).json()

    stolen = client.post("/bookings", json={
        "resource_id": "room-1", "start_time": start, "hold_id": hold["id"], "session_id": "web-2",
    })
    assert stolen.status_code == 409
    assert stolen.json()["error"] == "SlotUnavailable"

    own = client.post("/bookings", json={
        "resource_id": "room-1", "start_time": start, "hold_id": hold["id"], "session_id": "web-1",
    })
    assert own.status_code == 201
    assert api_store.holds[hold["id"]].status == "converted"
