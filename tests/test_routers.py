"""HTTP layer: routing, status codes and error mapping."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from booking_core.app.database import get_db
from booking_core.app.dependencies import get_booking_orchestrator, get_slot_service
from booking_core.app.main import app

from tests.conftest import PROVIDER, THURSDAY, at, build_orchestrator, future_day


@pytest.fixture
def client(session_factory, slot_service, store, validator, materializer, idempotency, notifier, directory, config):
    orchestrator = build_orchestrator(
        store, validator, materializer, idempotency, notifier, directory, config, True
    )

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_slot_service] = lambda: slot_service
    app.dependency_overrides[get_booking_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def slot_body(day, start=(10, 0), end=(11, 0), **extra):
    body = {
        "provider_id": PROVIDER,
        "start_time": at(day, *start).isoformat(),
        "end_time": at(day, *end).isoformat(),
    }
    body.update(extra)
    return body


def booking_body(slot, **extra):
    body = {
        "provider_id": slot["provider_id"],
        "availability_id": slot["id"],
        "guest_name": "Ada Guest",
        "guest_email": "ada@example.com",
        "start_time": slot["start_time"],
        "end_time": slot["end_time"],
    }
    body.update(extra)
    return body


class TestSlotRoutes:
    def test_create_and_get(self, client):
        day = future_day()
        resp = client.post("/slots/", json=slot_body(day))
        assert resp.status_code == 201
        slot = resp.json()
        assert slot["duration_minutes"] == 60
        assert slot["date"] == day.isoformat()

        resp = client.get(f"/slots/{slot['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == slot["id"]

    def test_overlap_is_409(self, client):
        day = future_day()
        first = client.post("/slots/", json=slot_body(day)).json()

        resp = client.post("/slots/", json=slot_body(day, (10, 30), (11, 30)))

        assert resp.status_code == 409
        body = resp.json()
        assert body["conflicts"][0]["id"] == first["id"]

    def test_reversed_range_is_400(self, client):
        resp = client.post("/slots/", json=slot_body(future_day(), (11, 0), (10, 0)))
        assert resp.status_code == 400

    def test_unknown_slot_is_404(self, client):
        assert client.get("/slots/missing").status_code == 404

    def test_list_by_provider(self, client):
        day = future_day()
        client.post("/slots/", json=slot_body(day, (9, 0), (10, 0)))
        client.post("/slots/", json=slot_body(day, (12, 0), (13, 0)))

        resp = client.get("/slots/", params={"provider_id": PROVIDER})

        assert resp.status_code == 200
        assert [s["start_time"] for s in resp.json()] == [
            at(day, 9).isoformat(),
            at(day, 12).isoformat(),
        ]

    def test_bulk_skip_conflicts(self, client):
        day = future_day()
        client.post("/slots/", json=slot_body(day))

        resp = client.post(
            "/slots/bulk",
            json={
                "slots": [slot_body(day, (10, 30), (11, 30)), slot_body(day, (14, 0), (15, 0))],
                "skip_conflicts": True,
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert len(body["created"]) == 1
        assert len(body["conflicts"]) == 1

    def test_all_day_generation(self, client):
        day = future_day()
        resp = client.post(
            "/slots/all-day",
            json={"provider_id": PROVIDER, "date": day.isoformat(), "count": 4},
        )
        assert resp.status_code == 201
        assert len(resp.json()) == 4

    def test_range_generation(self, client):
        day = future_day()
        resp = client.post(
            "/slots/range",
            json={
                "provider_id": PROVIDER,
                "start_date": day.isoformat(),
                "end_date": (day + timedelta(days=1)).isoformat(),
                "count": 2,
            },
        )
        assert resp.status_code == 201
        assert len(resp.json()) == 4

    def test_template_instances(self, client):
        day = future_day(THURSDAY)
        template = client.post(
            "/slots/", json=slot_body(day, (7, 0), (8, 0), kind="recurring")
        ).json()

        resp = client.get(
            f"/slots/templates/{template['id']}/instances",
            params={"from_date": day.isoformat(), "to_date": future_day(THURSDAY, 4).isoformat()},
        )

        assert resp.status_code == 200
        assert all(item["day_of_week"] == THURSDAY for item in resp.json())

    def test_patch_and_delete(self, client):
        slot = client.post("/slots/", json=slot_body(future_day())).json()

        resp = client.patch(f"/slots/{slot['id']}", json={"max_bookings": 2})
        assert resp.status_code == 200
        assert resp.json()["max_bookings"] == 2

        resp = client.delete(f"/slots/{slot['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert client.get(f"/slots/{slot['id']}").status_code == 404

    def test_cleanup(self, client):
        resp = client.post("/slots/cleanup")
        assert resp.status_code == 200
        assert resp.json() == {"removed_count": 0}


class TestBookingRoutes:
    def test_book_then_conflict(self, client):
        slot = client.post("/slots/", json=slot_body(future_day())).json()

        resp = client.post("/bookings/", json=booking_body(slot))
        assert resp.status_code == 201
        booking = resp.json()
        assert booking["status"] == "confirmed"

        resp = client.post("/bookings/", json=booking_body(slot, guest_email="bob@example.com"))
        assert resp.status_code == 409
        assert booking["serial_key"] in resp.json()["detail"]

    def test_lookup_and_cancel(self, client):
        slot = client.post("/slots/", json=slot_body(future_day())).json()
        booking = client.post("/bookings/", json=booking_body(slot)).json()

        assert client.get(f"/bookings/{booking['id']}").json()["id"] == booking["id"]
        assert client.get(f"/bookings/serial/{booking['serial_key']}").json()["id"] == booking["id"]

        resp = client.patch(f"/bookings/{booking['id']}", json={"status": "cancelled"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert client.get(f"/slots/{slot['id']}").json()["is_booked"] is False

    def test_list_and_guest_lookup(self, client):
        day = future_day()
        first = client.post("/slots/", json=slot_body(day, (9, 0), (10, 0))).json()
        second = client.post("/slots/", json=slot_body(day, (12, 0), (13, 0))).json()
        ada = client.post("/bookings/", json=booking_body(first)).json()
        bob = client.post(
            "/bookings/", json=booking_body(second, guest_name="Bob", guest_email="bob@example.com")
        ).json()

        resp = client.get("/bookings/", params={"provider_id": PROVIDER, "status": "confirmed"})
        assert resp.status_code == 200
        assert [b["id"] for b in resp.json()] == [ada["id"], bob["id"]]

        resp = client.get("/bookings/", params={"search": "BOB"})
        assert [b["id"] for b in resp.json()] == [bob["id"]]

        resp = client.get("/bookings/guest/ada@example.com")
        assert [b["id"] for b in resp.json()] == [ada["id"]]

    def test_list_rejects_unknown_status(self, client):
        assert client.get("/bookings/", params={"status": "lost"}).status_code == 422

    def test_invalid_transition_is_400(self, client):
        slot = client.post("/slots/", json=slot_body(future_day())).json()
        booking = client.post("/bookings/", json=booking_body(slot)).json()

        resp = client.patch(f"/bookings/{booking['id']}", json={"status": "pending"})
        assert resp.status_code == 400

    def test_series_returns_list(self, client):
        day = future_day(THURSDAY)
        template = client.post(
            "/slots/", json=slot_body(day, (7, 0), (8, 0), kind="recurring")
        ).json()
        first = client.get(
            f"/slots/templates/{template['id']}/instances",
            params={"from_date": day.isoformat(), "to_date": future_day(THURSDAY, 4).isoformat()},
        ).json()[0]

        resp = client.post(
            "/bookings/",
            json={
                "provider_id": PROVIDER,
                "availability_id": f"{template['id']}_{first['date']}",
                "guest_name": "Ada Guest",
                "guest_email": "ada@example.com",
                "start_time": first["start_time"],
                "end_time": first["end_time"],
                "recurrence": {"occurrences": 2},
            },
        )

        assert resp.status_code == 201
        assert len(resp.json()) == 2

    def test_unknown_booking_is_404(self, client):
        assert client.get("/bookings/missing").status_code == 404
