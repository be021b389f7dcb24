from datetime import datetime

from common import booking_engine
from common.models import Booking, BookingStatus


def booking_payload(room_id: int, check_in: str, check_out: str, **extra) -> dict:
    return {
        "room_id": room_id,
        "check_in": f"{check_in}T00:00:00",
        "check_out": f"{check_out}T00:00:00",
        "guest_count": 2,
        **extra,
    }


def test_booking_flow(bookings_client, admin_headers, guest_headers, make_room):
    room = make_room(nightly_rate=1500)

    created = bookings_client.post(
        "/bookings",
        json=booking_payload(room.id, "2024-01-01", "2024-01-04", notes="Late arrival"),
        headers=guest_headers,
    )
    assert created.status_code == 201
    booking = created.json()
    assert booking["status"] == "pending"
    assert booking["total_price"] == 4500
    assert booking["notes"] == "Late arrival"

    pending = bookings_client.get("/bookings/pending/count", headers=admin_headers)
    assert pending.json() == {"count": 1}

    approved = bookings_client.post(f"/bookings/{booking['id']}/approve", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "confirmed"

    mine = bookings_client.get("/bookings/me", headers=guest_headers)
    assert [b["id"] for b in mine.json()] == [booking["id"]]

    confirmed = bookings_client.get("/bookings?status=confirmed", headers=admin_headers)
    assert len(confirmed.json()) == 1
    assert bookings_client.get("/bookings/pending/count", headers=admin_headers).json() == {"count": 0}


def test_price_override_is_used_when_positive(bookings_client, guest_headers, make_room):
    room = make_room(nightly_rate=1500)
    response = bookings_client.post(
        "/bookings",
        json=booking_payload(room.id, "2024-01-01", "2024-01-04", total_price=4000),
        headers=guest_headers,
    )
    assert response.json()["total_price"] == 4000

    zero_override = bookings_client.post(
        "/bookings",
        json=booking_payload(room.id, "2024-02-01", "2024-02-03", total_price=0),
        headers=guest_headers,
    )
    assert zero_override.json()["total_price"] == 3000


def test_touching_stays_are_both_admitted(bookings_client, guest_headers, make_room):
    room = make_room()
    first = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    second = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-05", "2024-01-08"), headers=guest_headers)
    assert first.status_code == 201
    assert second.status_code == 201


def test_identical_stay_conflicts_with_blockers(bookings_client, guest_headers, guest_factory, make_room):
    room = make_room()
    first = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers)

    other_headers = guest_factory("guest2")
    second = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=other_headers)
    assert second.status_code == 409
    body = second.json()
    assert body["error"] == "BookingConflict"
    assert body["overlapping_count"] == 1
    assert body["overlapping_bookings"][0]["id"] == first.json()["id"]


def test_partial_overlap_conflicts(bookings_client, guest_headers, make_room):
    room = make_room()
    bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-10", "2024-01-15"), headers=guest_headers)
    response = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-12", "2024-01-20"), headers=guest_headers)
    assert response.status_code == 409


def test_same_dates_on_another_room_are_fine(bookings_client, guest_headers, make_room):
    room_a = make_room(name="Standard Room 101")
    room_b = make_room(name="Standard Room 102")
    bookings_client.post("/bookings", json=booking_payload(room_a.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    response = bookings_client.post("/bookings", json=booking_payload(room_b.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    assert response.status_code == 201


def test_cancelling_frees_the_dates(bookings_client, guest_headers, make_room):
    room = make_room()
    first = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    booking_id = first.json()["id"]

    cancelled = bookings_client.post(f"/bookings/{booking_id}/cancel", headers=guest_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    again = bookings_client.post(f"/bookings/{booking_id}/cancel", headers=guest_headers)
    assert again.status_code == 200
    assert again.json()["status"] == "cancelled"

    rebooked = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    assert rebooked.status_code == 201


def test_invalid_requests(bookings_client, guest_headers, make_room):
    room = make_room(max_guests=2)

    inverted = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-05", "2024-01-01"), headers=guest_headers)
    assert inverted.status_code == 400
    assert inverted.json()["error"] == "InvalidInterval"

    zero_length = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-05", "2024-01-05"), headers=guest_headers)
    assert zero_length.status_code == 400

    no_guests = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05", guest_count=0), headers=guest_headers
    )
    assert no_guests.status_code == 400
    assert no_guests.json()["error"] == "InvalidGuestCount"

    too_many = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05", guest_count=5), headers=guest_headers
    )
    assert too_many.status_code == 400

    missing_room = bookings_client.post("/bookings", json=booking_payload(999, "2024-01-01", "2024-01-05"), headers=guest_headers)
    assert missing_room.status_code == 404
    assert missing_room.json()["error"] == "RoomNotFound"


def test_booking_requires_authentication(bookings_client, make_room):
    room = make_room()
    response = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"))
    assert response.status_code == 401


def test_availability_reports_blockers(bookings_client, guest_headers, make_room):
    room = make_room()
    created = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-10", "2024-01-15"), headers=guest_headers)

    busy = bookings_client.get(
        f"/bookings/rooms/{room.id}/availability",
        params={"check_in": "2024-01-12T00:00:00", "check_out": "2024-01-20T00:00:00"},
    )
    assert busy.status_code == 200
    body = busy.json()
    assert body["available"] is False
    assert body["overlapping_count"] == 1
    assert body["overlapping_bookings"][0]["id"] == created.json()["id"]

    free = bookings_client.get(
        f"/bookings/rooms/{room.id}/availability",
        params={"check_in": "2024-01-15T00:00:00", "check_out": "2024-01-18T00:00:00"},
    )
    assert free.json()["available"] is True
    assert free.json()["overlapping_bookings"] == []

    inverted = bookings_client.get(
        f"/bookings/rooms/{room.id}/availability",
        params={"check_in": "2024-01-18T00:00:00", "check_out": "2024-01-15T00:00:00"},
    )
    assert inverted.status_code == 400


def test_approval_revalidates_against_confirmed_bookings(bookings_client, admin_headers, make_room, db_session):
    room = make_room()
    # Two overlapping pending bookings, as left behind by a race.
    for day in ("2024-03-01", "2024-03-02"):
        db_session.add(
            Booking(
                user_id=1,
                room_id=room.id,
                check_in=datetime.fromisoformat(day),
                check_out=datetime.fromisoformat("2024-03-05"),
                guest_count=1,
                status=BookingStatus.PENDING,
                total_price=100,
            )
        )
    db_session.commit()
    first, second = db_session.query(Booking).order_by(Booking.id).all()

    assert bookings_client.post(f"/bookings/{first.id}/approve", headers=admin_headers).status_code == 200

    rejected = bookings_client.post(f"/bookings/{second.id}/approve", headers=admin_headers)
    assert rejected.status_code == 409
    assert rejected.json()["overlapping_bookings"][0]["id"] == first.id

    still_pending = bookings_client.get(f"/bookings/{second.id}", headers=admin_headers)
    assert still_pending.json()["status"] == "pending"


def test_approving_twice_is_an_invalid_transition(bookings_client, admin_headers, guest_headers, make_room):
    room = make_room()
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers
    ).json()["id"]
    bookings_client.post(f"/bookings/{booking_id}/approve", headers=admin_headers)

    response = bookings_client.post(f"/bookings/{booking_id}/approve", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"
    assert response.json()["current_status"] == "confirmed"


def test_guests_cannot_approve_or_touch_other_bookings(bookings_client, guest_headers, guest_factory, make_room):
    room = make_room()
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers
    ).json()["id"]

    assert bookings_client.post(f"/bookings/{booking_id}/approve", headers=guest_headers).status_code == 403
    assert bookings_client.get("/bookings", headers=guest_headers).status_code == 403

    stranger = guest_factory("guest2")
    assert bookings_client.get(f"/bookings/{booking_id}", headers=stranger).status_code == 403
    assert bookings_client.post(f"/bookings/{booking_id}/cancel", headers=stranger).status_code == 403


def test_admin_can_reject_by_cancelling(bookings_client, admin_headers, guest_headers, make_room):
    room = make_room()
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers
    ).json()["id"]
    response = bookings_client.post(f"/bookings/{booking_id}/cancel", headers=admin_headers)
    assert response.json()["status"] == "cancelled"


def test_complete_past_stay(bookings_client, admin_headers, guest_headers, make_room):
    room = make_room()
    booking_id = bookings_client.post(
        "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers
    ).json()["id"]

    early = bookings_client.post(f"/bookings/{booking_id}/complete", headers=admin_headers)
    assert early.status_code == 409
    assert early.json()["current_status"] == "pending"

    bookings_client.post(f"/bookings/{booking_id}/approve", headers=admin_headers)
    completed = bookings_client.post(f"/bookings/{booking_id}/complete", headers=admin_headers)
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    cancel = bookings_client.post(f"/bookings/{booking_id}/cancel", headers=admin_headers)
    assert cancel.status_code == 409


def test_unknown_booking(bookings_client, admin_headers):
    assert bookings_client.post("/bookings/999/approve", headers=admin_headers).status_code == 404
    assert bookings_client.post("/bookings/999/cancel", headers=admin_headers).status_code == 404


def test_unparsable_dates_are_invalid_intervals(bookings_client, guest_headers, make_room):
    room = make_room()

    created = bookings_client.post(
        "/bookings",
        json={"room_id": room.id, "check_in": "not-a-date", "check_out": "2024-01-05T00:00:00"},
        headers=guest_headers,
    )
    assert created.status_code == 400
    assert created.json()["error"] == "InvalidInterval"
    assert created.json()["check_in"] == "not-a-date"

    availability = bookings_client.get(
        f"/bookings/rooms/{room.id}/availability",
        params={"check_in": "2024-01-01T00:00:00", "check_out": "2024-02-31"},
    )
    assert availability.status_code == 400
    assert availability.json()["error"] == "InvalidInterval"

    missing = bookings_client.get(f"/bookings/rooms/{room.id}/availability", params={"check_in": "2024-01-01T00:00:00"})
    assert missing.status_code == 422


def test_busy_room_is_retryable_not_a_conflict(bookings_client, guest_headers, make_room, monkeypatch):
    room = make_room()
    monkeypatch.setattr(booking_engine.room_locks, "timeout", 0.05)

    with booking_engine.room_locks.hold(room.id):
        response = bookings_client.post(
            "/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers
        )

    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"
    body = response.json()
    assert body["error"] == "RoomBusy"
    assert body["retryable"] is True
    assert "overlapping_bookings" not in body

    retried = bookings_client.post("/bookings", json=booking_payload(room.id, "2024-01-01", "2024-01-05"), headers=guest_headers)
    assert retried.status_code == 201
