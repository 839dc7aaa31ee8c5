from datetime import datetime, timedelta

import pytest

from conftest import auth, make_booking, make_host, make_property, make_user
from schemas import utcnow

NEW_PROPERTY = {
    "title": "Loft in Alfama",
    "description": "Sunny loft with river views",
    "type": "apartment",
    "address": {"city": "Lisbon", "country": "Portugal", "coordinates": {"type": "Point", "coordinates": [-9.13, 38.71]}},
    "amenities": ["wifi"],
    "price_per_night": 120,
    "max_guests": 3,
    "bedrooms": 1,
    "bathrooms": 1,
    "discounts": [{
        "discount_type": "fixed",
        "value": 50,
        "valid_from": "2030-01-01T00:00:00",
        "valid_until": "2030-12-31T00:00:00",
    }],
}


@pytest.fixture
def host_user(db):
    return make_user(db, role="host")


@pytest.fixture
def host(db, host_user):
    return make_host(db, host_user)


@pytest.fixture
def guest(db):
    return make_user(db)


def test_guest_cannot_use_host_routes(client, guest):
    resp = client.get("/api/host/properties", headers=auth(guest))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Host access required."


def test_host_without_profile(client, db):
    user = make_user(db, role="host")
    assert client.get("/api/host/dashboard", headers=auth(user)).status_code == 404


# Properties

def test_create_and_list_properties(client, db, host, host_user):
    resp = client.post("/api/host/properties", json=NEW_PROPERTY, headers=auth(host_user))

    assert resp.status_code == 201
    body = resp.json()
    assert body["host_id"] == str(host["_id"])
    assert body["is_active"] is True
    stored = db["property"].find_one()
    assert stored["discounts"][0]["valid_from"] == datetime(2030, 1, 1)
    assert stored["address"]["coordinates"]["coordinates"] == [-9.13, 38.71]

    listed = client.get("/api/host/properties", headers=auth(host_user)).json()
    assert [p["title"] for p in listed] == ["Loft in Alfama"]


def test_create_property_validation(client, host, host_user):
    resp = client.post("/api/host/properties", json={**NEW_PROPERTY, "type": "castle"}, headers=auth(host_user))
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "type"


def test_create_property_ignores_booked_windows(client, db, host, host_user):
    availability = [
        {"start_date": "2030-06-01T00:00:00", "end_date": "2030-06-05T00:00:00",
         "is_available": False, "booking_id": "65a000000000000000000001"},
        {"start_date": "2030-01-01T00:00:00", "end_date": "2030-12-31T00:00:00"},
    ]

    resp = client.post("/api/host/properties", json={**NEW_PROPERTY, "availability": availability},
                       headers=auth(host_user))

    assert resp.status_code == 201
    windows = db["property"].find_one()["availability"]
    assert windows == [{"start_date": datetime(2030, 1, 1), "end_date": datetime(2030, 12, 31), "is_available": True}]


def test_update_property(client, db, host, host_user):
    prop = make_property(db, host)

    resp = client.put(f"/api/host/properties/{prop['_id']}", json={"price_per_night": 150, "is_active": False},
                      headers=auth(host_user))

    assert resp.status_code == 200
    stored = db["property"].find_one({"_id": prop["_id"]})
    assert stored["price_per_night"] == 150
    assert stored["is_active"] is False
    assert stored["title"] == "Seaside cottage"


def test_update_availability_keeps_booked_windows(client, db, host, host_user):
    booked = {"start_date": datetime(2030, 6, 1), "end_date": datetime(2030, 6, 5),
              "is_available": False, "booking_id": "65a000000000000000000001"}
    prop = make_property(db, host, availability=[
        booked,
        {"start_date": datetime(2030, 1, 1), "end_date": datetime(2030, 3, 1), "is_available": True},
    ])

    resp = client.put(
        f"/api/host/properties/{prop['_id']}",
        json={"availability": [{"start_date": "2030-04-01T00:00:00", "end_date": "2030-09-30T00:00:00"}]},
        headers=auth(host_user),
    )

    assert resp.status_code == 200
    windows = db["property"].find_one({"_id": prop["_id"]})["availability"]
    assert windows == [
        booked,
        {"start_date": datetime(2030, 4, 1), "end_date": datetime(2030, 9, 30), "is_available": True},
    ]


def test_cannot_touch_another_hosts_property(client, db, host_user, host):
    other = make_property(db, make_host(db))
    headers = auth(host_user)

    assert client.get(f"/api/host/properties/{other['_id']}", headers=headers).status_code == 404
    assert client.put(f"/api/host/properties/{other['_id']}", json={"title": "Mine"}, headers=headers).status_code == 404
    assert client.delete(f"/api/host/properties/{other['_id']}", headers=headers).status_code == 404


def test_delete_property(client, db, host, host_user, guest):
    prop = make_property(db, host)
    booking = make_booking(db, guest, prop, status="pending")

    blocked = client.delete(f"/api/host/properties/{prop['_id']}", headers=auth(host_user))
    assert blocked.status_code == 400

    db["booking"].update_one({"_id": booking["_id"]}, {"$set": {"status": "cancelled"}})
    resp = client.delete(f"/api/host/properties/{prop['_id']}", headers=auth(host_user))
    assert resp.status_code == 200
    assert db["property"].count_documents({}) == 0


def test_upload_property_images(client, db, host, host_user):
    prop = make_property(db, host, images=["https://cdn.test/old.jpg"])

    resp = client.post(
        f"/api/host/properties/{prop['_id']}/images",
        files=[("images", ("a.png", b"png", "image/png")), ("images", ("b.png", b"png", "image/png"))],
        headers=auth(host_user),
    )

    assert resp.status_code == 200
    assert resp.json()["images"] == [
        "https://cdn.test/old.jpg",
        f"https://cdn.test/properties/{prop['_id']}/a.png",
        f"https://cdn.test/properties/{prop['_id']}/b.png",
    ]


def test_too_many_images(client, db, host, host_user, uploads):
    prop = make_property(db, host)
    files = [("images", (f"{i}.png", b"png", "image/png")) for i in range(11)]

    resp = client.post(f"/api/host/properties/{prop['_id']}/images", files=files, headers=auth(host_user))

    assert resp.status_code == 400
    assert uploads == []


# Dashboard and bookings

def test_dashboard(client, db, host, host_user, guest):
    prop = make_property(db, host)
    make_property(db, host, title="second")
    soon = utcnow() + timedelta(days=10)
    make_booking(db, guest, prop, status="confirmed", total_amount=300.0,
                 check_in=soon, check_out=soon + timedelta(days=3))
    make_booking(db, guest, prop, status="confirmed", total_amount=200.0,
                 check_in=datetime(2020, 1, 1), check_out=datetime(2020, 1, 3))
    make_booking(db, guest, prop, status="pending")

    body = client.get("/api/host/dashboard", headers=auth(host_user)).json()

    assert body["properties"] == 2
    assert body["bookings"] == 2
    assert body["upcoming_bookings"] == 1
    assert body["total_earnings"] == 500
    assert body["reviews"] == 0


def test_bookings_include_guest_contact(client, db, host, host_user, guest):
    make_booking(db, guest, make_property(db, host))
    make_booking(db, guest, make_property(db, make_host(db)))

    body = client.get("/api/host/bookings", headers=auth(host_user)).json()

    assert len(body) == 1
    assert body[0]["guest"]["email"] == guest["email"]


def test_host_confirms_then_completes(client, db, host, host_user, guest):
    prop = make_property(db, host)
    booking = make_booking(db, guest, prop, total_amount=400.0)
    url = f"/api/host/bookings/{booking['_id']}"

    assert client.patch(url, json={"status": "confirmed"}, headers=auth(host_user)).status_code == 200
    assert db["property"].find_one({"_id": prop["_id"]})["availability"][0]["booking_id"] == str(booking["_id"])

    assert client.patch(url, json={"status": "completed"}, headers=auth(host_user)).status_code == 200
    stored_host = db["host"].find_one({"_id": host["_id"]})
    assert stored_host["earnings"] == 400
    assert stored_host["total_bookings"] == 1


@pytest.mark.parametrize("start,target", [
    ("pending", "completed"),
    ("completed", "cancelled"),
    ("cancelled", "confirmed"),
])
def test_illegal_transitions(client, db, host, host_user, guest, start, target):
    booking = make_booking(db, guest, make_property(db, host), status=start)
    resp = client.patch(f"/api/host/bookings/{booking['_id']}", json={"status": target}, headers=auth(host_user))
    assert resp.status_code == 400
    assert db["booking"].find_one({"_id": booking["_id"]})["status"] == start


def test_unknown_status_is_a_validation_error(client, db, host, host_user, guest):
    booking = make_booking(db, guest, make_property(db, host))
    resp = client.patch(f"/api/host/bookings/{booking['_id']}", json={"status": "lost"}, headers=auth(host_user))
    assert resp.status_code == 400


def test_cancelling_a_paid_booking_refunds_and_frees_dates(client, db, host, host_user, guest, gateway):
    prop = make_property(db, host)
    booking = make_booking(db, guest, prop, status="confirmed", payment_status="paid", total_amount=320.0)
    db["property"].update_one({"_id": prop["_id"]}, {"$set": {"availability": [{
        "start_date": booking["check_in"], "end_date": booking["check_out"],
        "is_available": False, "booking_id": str(booking["_id"]),
    }]}})

    resp = client.patch(
        f"/api/host/bookings/{booking['_id']}",
        json={"status": "cancelled", "cancellation_reason": "Plumbing failure"},
        headers=auth(host_user),
    )

    assert resp.status_code == 200
    stored = db["booking"].find_one({"_id": booking["_id"]})
    assert stored["status"] == "cancelled"
    assert stored["payment_status"] == "refunded"
    assert stored["cancellation_reason"] == "Plumbing failure"
    assert gateway.refunds == [("pi_existing", 320.0)]
    assert db["property"].find_one({"_id": prop["_id"]})["availability"] == []


@pytest.mark.parametrize("intent_status,refunds,payment_status", [
    ("succeeded", [("pi_existing", 400.0)], "refunded"),
    ("requires_payment_method", [], "pending"),
])
def test_cancelling_a_pending_booking_refunds_a_completed_charge(
    client, db, host, host_user, guest, gateway, intent_status, refunds, payment_status,
):
    gateway.status = intent_status
    booking = make_booking(db, guest, make_property(db, host))

    resp = client.patch(f"/api/host/bookings/{booking['_id']}", json={"status": "cancelled"}, headers=auth(host_user))

    assert resp.status_code == 200
    stored = db["booking"].find_one({"_id": booking["_id"]})
    assert stored["status"] == "cancelled"
    assert stored["payment_status"] == payment_status
    assert gateway.refunds == refunds


def test_host_cannot_confirm_into_taken_dates(client, db, host, host_user, guest):
    prop = make_property(db, host)
    make_booking(db, make_user(db), prop, status="confirmed")
    booking = make_booking(db, guest, prop, check_in=datetime(2030, 6, 4), check_out=datetime(2030, 6, 6))

    resp = client.patch(f"/api/host/bookings/{booking['_id']}", json={"status": "confirmed"}, headers=auth(host_user))

    assert resp.status_code == 409


def test_reply_to_review(client, db, host, host_user, guest):
    prop = make_property(db, host)
    review_id = db["review"].insert_one({
        "guest_id": str(guest["_id"]),
        "property_id": str(prop["_id"]),
        "booking_id": "65a000000000000000000001",
        "rating": 3,
        "comment": "Fine, but noisy at night",
    }).inserted_id

    resp = client.post(f"/api/host/reviews/{review_id}/reply", json={"reply": "Sorry, we added double glazing"},
                       headers=auth(host_user))

    assert resp.status_code == 200
    assert db["review"].find_one({"_id": review_id})["host_reply"] == "Sorry, we added double glazing"


def test_reply_to_review_on_someone_elses_property(client, db, host_user, host, guest):
    other = make_property(db, make_host(db))
    review_id = db["review"].insert_one({"property_id": str(other["_id"]), "rating": 3}).inserted_id

    resp = client.post(f"/api/host/reviews/{review_id}/reply", json={"reply": "Hello"}, headers=auth(host_user))

    assert resp.status_code == 404
