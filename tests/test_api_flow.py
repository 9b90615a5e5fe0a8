from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from app import create_app
from simbooking.domain.models import BookingStatus, OperatingHours
from simbooking.services.clock_service import ShopClock
from simbooking.utils.config import get_settings


TODAY = "2026-10-20"


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        shop_timezone="Asia/Bangkok",
        operating_hours=OperatingHours(open_hour=10, close_hour=22, slot_duration_minutes=30),
        booking_default_status=BookingStatus.CONFIRMED,
        advance_booking_days=7,
        seed_machine_count=4,
    )


def _build_client(tmp_path) -> TestClient:
    settings = _build_test_settings(tmp_path, "api_flow.db")
    # 09:00 shop time
    clock = ShopClock(settings, utc_now=lambda: datetime(2026, 10, 20, 2, 0, tzinfo=timezone.utc))
    return TestClient(create_app(settings=settings, clock=clock))


def _booking_payload(**overrides):
    payload = {
        "machine_id": 1,
        "booking_date": TODAY,
        "start_time": "14:00",
        "duration_minutes": 60,
        "customer_name": "Api Driver",
        "customer_phone": "0812345678",
    }
    payload.update(overrides)
    return payload


def test_booking_lifecycle_over_http(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        options = client.get("/booking/options")
        assert options.status_code == 200
        body = options.json()
        assert [item["minutes"] for item in body["durations"]] == [30, 60, 120, 180]
        assert body["available_dates"][0] == TODAY
        assert len(body["available_dates"]) == 7

        created = client.post("/bookings", json=_booking_payload())
        assert created.status_code == 201
        booking = created.json()
        assert booking["end_time"] == "15:00"
        assert booking["status"] == "confirmed"

        conflict = client.post("/bookings", json=_booking_payload(start_time="14:30", duration_minutes=30))
        assert conflict.status_code == 409
        detail = conflict.json()["detail"]
        assert detail["conflicting_booking_id"] == booking["booking_id"]
        assert detail["next_available_start"] == "15:00"

        schedule = client.get("/machines/1/schedule", params={"date": TODAY}).json()
        assert schedule["total_slots"] == 24
        assert schedule["booked_slots"] == 2
        assert schedule["available_slots"] + schedule["booked_slots"] + schedule["passed_slots"] == 24

        availability = client.get(
            "/machines/1/availability",
            params={"date": TODAY, "start_time": "14:00", "duration_minutes": 60},
        ).json()
        assert availability["available"] is False
        assert availability["next_available_start"] == "15:00"

        by_phone = client.get("/bookings", params={"phone": "0812345678"})
        assert [item["booking_id"] for item in by_phone.json()] == [booking["booking_id"]]

        moved = client.patch(f"/bookings/{booking['booking_id']}", json={"start_time": "16:00"})
        assert moved.status_code == 200
        assert moved.json()["end_time"] == "17:00"

        cancelled = client.post(f"/bookings/{booking['booking_id']}/cancel")
        assert cancelled.json() == {"booking_id": booking["booking_id"], "cancelled": True}

        stats = client.get("/bookings/stats").json()
        assert stats["cancelled"] == 1
        assert stats["total"] == 1


def test_http_error_mapping(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        assert client.get("/bookings/999").status_code == 404
        assert client.post("/bookings/999/cancel").status_code == 404
        assert client.post("/bookings", json=_booking_payload(duration_minutes=45)).status_code == 400
        assert client.post("/bookings", json=_booking_payload(booking_date="2026-10-19")).status_code == 400
        assert client.post("/bookings", json=_booking_payload(machine_id=42)).status_code == 404
        assert client.post("/bookings", json=_booking_payload(start_time="2pm")).status_code == 422
        assert client.post("/sessions/999/end").status_code == 404
        assert client.post("/machines/1/call-next").status_code == 409


def test_control_board_flow(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        booking = client.post("/bookings", json=_booking_payload(start_time="10:00")).json()

        board = client.get("/control/board").json()
        assert board["time"] == "09:00"
        states = {item["machine"]["machine_id"]: item["state"] for item in board["stations"]}
        assert states[1] == "reserved"
        assert states[2] == "available"
        assert board["counts"]["reserved"] == 1

        checked_in = client.post(
            "/sessions/check-in",
            json={"machine_id": 1, "booking_id": booking["booking_id"]},
        )
        assert checked_in.status_code == 201
        session = checked_in.json()

        station = client.get("/control/stations/1").json()
        assert station["state"] == "occupied"
        assert station["allowed_actions"] == ["end_session"]
        assert client.post("/sessions/check-in", json={"machine_id": 1, "customer_name": "Other"}).status_code == 409

        assert [item["session_id"] for item in client.get("/sessions/active").json()] == [session["session_id"]]
        ended = client.post(f"/sessions/{session['session_id']}/end")
        assert ended.status_code == 200
        assert client.get(f"/bookings/{booking['booking_id']}").json()["status"] == "completed"
        assert client.get("/control/stations/1").json()["state"] == "available"

        flagged = client.patch("/machines/2", json={"status": "maintenance"})
        assert flagged.json()["status"] == "maintenance"
        assert client.get("/control/stations/2").json()["allowed_actions"] == []


def test_walk_in_flow_over_http(tmp_path) -> None:
    with _build_client(tmp_path) as client:
        first = client.post(
            "/walk-in",
            json={"machine_id": 3, "customer_name": "Queue One", "customer_phone": "0810000001"},
        )
        assert first.status_code == 201
        second = client.post(
            "/walk-in",
            json={
                "machine_id": 3,
                "customer_name": "Queue Two",
                "customer_phone": "0810000002",
                "duration_minutes": 30,
            },
        ).json()
        assert second["position"] == 2
        assert second["estimate"]["estimated_wait_minutes"] == 60

        station = client.get("/control/stations/3").json()
        assert station["allowed_actions"] == ["check_in", "call_next"]
        assert station["queue"]["waiting_count"] == 2

        called = client.post("/machines/3/call-next")
        assert called.status_code == 201
        assert called.json()["queue_entry_id"] == first.json()["entry"]["entry_id"]

        listing = client.get("/walk-in", params={"machine_id": 3}).json()
        assert [item["entry"]["status"] for item in listing] == ["playing", "waiting"]

        cancelled = client.post(f"/walk-in/{second['entry']['entry_id']}/cancel")
        assert cancelled.json()["cancelled"] is True
        assert client.get("/walk-in/stats").json()["cancelled_today"] == 1
        assert len(client.get("/walk-in/estimates").json()) == 4
        assert client.get("/walk-in/999").status_code == 404

        by_phone = client.get("/walk-in", params={"phone": "0810000002"}).json()
        assert [item["entry"]["status"] for item in by_phone] == ["cancelled"]
        assert by_phone[0]["position"] is None
        assert client.get("/walk-in", params={"phone": "12"}).status_code == 400
