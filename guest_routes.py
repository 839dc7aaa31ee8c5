import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import notifications
import payments
from availability import add_booked_window, find_conflicting_booking
from database import get_db, list_with_id, object_id, with_id
from pricing import InvalidDateRange, NoPropertyFound, quote_stay
from schemas import Booking as BookingSchema, ObjectIdStr, Review as ReviewSchema, utc_naive
from search import build_property_filter, paginate, split_csv
from security import AuthUser, get_current_user
from settings import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, PAYMENT_CURRENCY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/guest", tags=["guest"])


class BookingCreate(BaseModel):
    property_id: ObjectIdStr
    check_in: datetime
    check_out: datetime
    guests_count: int = Field(..., ge=1)
    special_requests: Optional[str] = None

    @field_validator("check_in", "check_out")
    @classmethod
    def normalize_dates(cls, value):
        return utc_naive(value)


class ReviewCreate(BaseModel):
    booking_id: ObjectIdStr
    property_id: ObjectIdStr
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10)


# Helpers

def host_summaries(db: Database, host_ids: List[str], user_fields: tuple = ("first_name", "last_name")) -> dict:
    """host id -> {id, host_tag, total_bookings, user{...}} for the given hosts."""
    ids = [ObjectId(h) for h in set(host_ids) if ObjectId.is_valid(h)]
    if not ids:
        return {}
    hosts = list(db["host"].find({"_id": {"$in": ids}}, {"user_id": 1, "host_tag": 1, "total_bookings": 1}))
    user_ids = [ObjectId(h["user_id"]) for h in hosts if ObjectId.is_valid(h.get("user_id", ""))]
    projection = {field: 1 for field in user_fields}
    users = {str(u.pop("_id")): u for u in db["user"].find({"_id": {"$in": user_ids}}, projection)}
    return {
        str(h["_id"]): {
            "id": str(h["_id"]),
            "host_tag": h.get("host_tag"),
            "total_bookings": h.get("total_bookings", 0),
            "user": users.get(h.get("user_id")),
        }
        for h in hosts
    }


def notify_booking_confirmed(db: Database, booking_id: str, phone: Optional[str], details: dict) -> None:
    """Runs after the response; a failed SMS never fails the confirmation.

    Unsent confirmations keep ``confirmation_sent`` false and are retried by
    ``jobs.py confirmations``.
    """
    if not phone:
        logger.warning("No phone number for confirmed booking %s", booking_id)
        return
    try:
        notifications.send_booking_confirmation(phone, details)
    except notifications.NotificationError:
        logger.exception("SMS sending failed for booking %s", booking_id)
        return
    db["booking"].update_one({"_id": ObjectId(booking_id)}, {"$set": {"confirmation_sent": True}})


def release_paid_booking(db: Database, booking: dict, transaction_id: str) -> None:
    """Cancel and refund a pending booking whose payment went through after its dates were taken."""
    claimed = db["booking"].find_one_and_update(
        {"_id": booking["_id"], "status": "pending"},
        {"$set": {
            "status": "cancelled",
            "payment_status": "paid",
            "transaction_id": transaction_id,
            "cancellation_reason": "Dates were booked by another guest before payment completed",
        }},
    )
    if claimed is None:
        return
    payments.refund_payment(booking["payment_intent_id"], booking["total_amount"])
    db["booking"].update_one({"_id": booking["_id"]}, {"$set": {"payment_status": "refunded"}})
    logger.info("Booking %s lost its dates and was refunded", booking["_id"])


# Properties

@router.get("/properties")
def search_properties(
    location: Optional[str] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    check_in: Optional[datetime] = Query(None, alias="checkIn"),
    check_out: Optional[datetime] = Query(None, alias="checkOut"),
    guests: Optional[int] = Query(None, ge=1),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    amenities: Optional[str] = None,
    property_type: Optional[str] = Query(None, alias="propertyType"),
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    db: Database = Depends(get_db),
):
    query = build_property_filter(
        location=location,
        lat=lat,
        lng=lng,
        check_in=check_in,
        check_out=check_out,
        guests=guests,
        min_price=min_price,
        max_price=max_price,
        amenities=split_csv(amenities),
        property_type=property_type,
    )
    # $near already orders by distance
    sort = None if "address.coordinates" in query else [("created_at", -1)]
    result = paginate(db["property"], query, page, limit, sort=sort)

    hosts = host_summaries(db, [p["host_id"] for p in result["items"]])
    for p in result["items"]:
        p["host"] = hosts.get(p["host_id"])

    return {
        "properties": result["items"],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
        "total": result["total"],
    }


@router.get("/properties/{property_id}")
def get_property(property_id: str, db: Database = Depends(get_db)):
    prop = with_id(db["property"].find_one({"_id": object_id(property_id, "Property not found")}))
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    prop["host"] = host_summaries(db, [prop["host_id"]], ("first_name", "last_name", "phone")).get(prop["host_id"])
    reviews = list_with_id(db["review"].find({"property_id": prop["id"]}).sort("created_at", -1))
    guest_ids = [ObjectId(r["guest_id"]) for r in reviews if ObjectId.is_valid(r["guest_id"])]
    guests = {
        str(u.pop("_id")): u
        for u in db["user"].find({"_id": {"$in": guest_ids}}, {"first_name": 1, "last_name": 1})
    }
    for r in reviews:
        r["guest"] = guests.get(r["guest_id"])
    prop["reviews"] = reviews
    return prop


# Bookings

@router.post("/bookings", status_code=201)
def create_booking(data: BookingCreate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    prop = db["property"].find_one({"_id": ObjectId(data.property_id)})
    try:
        quote = quote_stay(prop, data.check_in, data.check_out)
    except NoPropertyFound:
        raise HTTPException(status_code=404, detail="Property not found")
    except InvalidDateRange as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not prop.get("is_active", True):
        raise HTTPException(status_code=400, detail="Property is not accepting bookings")
    if data.guests_count > prop["max_guests"]:
        raise HTTPException(status_code=400, detail=f"Property allows at most {prop['max_guests']} guests")
    if find_conflicting_booking(db, data.property_id, data.check_in, data.check_out):
        raise HTTPException(status_code=409, detail="Property is already booked for these dates")

    intent = payments.create_payment_intent(quote.total, PAYMENT_CURRENCY, {
        "user_id": user.id,
        "property_id": data.property_id,
        "check_in": data.check_in.isoformat(),
        "check_out": data.check_out.isoformat(),
    })

    booking = BookingSchema(
        guest_id=user.id,
        property_id=data.property_id,
        check_in=data.check_in,
        check_out=data.check_out,
        guests_count=data.guests_count,
        total_amount=quote.total,
        discount_amount=quote.discount_amount,
        special_requests=data.special_requests,
        payment_intent_id=intent.id,
    )
    doc = booking.model_dump()
    db["booking"].insert_one(doc)
    logger.info("Booking %s created for property %s (%d nights)", doc["_id"], data.property_id, quote.nights)
    return {"booking": with_id(doc), "client_secret": intent.client_secret}


@router.get("/bookings")
def my_bookings(user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_with_id(db["booking"].find({"guest_id": user.id}).sort("created_at", -1))


@router.post("/bookings/{booking_id}/confirm")
def confirm_booking(
    booking_id: str,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    _id = object_id(booking_id, "Booking not found")
    booking = db["booking"].find_one({"_id": _id, "guest_id": user.id})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking["status"] not in ("pending", "confirmed"):
        raise HTTPException(status_code=400, detail=f"Booking is {booking['status']}")

    newly_confirmed = False
    if booking["status"] == "pending":
        intent = payments.retrieve_payment_intent(booking["payment_intent_id"])
        if intent.status != "succeeded":
            raise HTTPException(status_code=400, detail="Payment failed")
        if find_conflicting_booking(db, booking["property_id"], booking["check_in"], booking["check_out"],
                                    exclude_id=booking_id):
            release_paid_booking(db, booking, intent.id)
            raise HTTPException(status_code=409, detail="Property is already booked for these dates")

        updated = db["booking"].find_one_and_update(
            {"_id": _id, "status": "pending"},
            {"$set": {"status": "confirmed", "payment_status": "paid", "transaction_id": intent.id}},
            return_document=ReturnDocument.AFTER,
        )
        newly_confirmed = updated is not None
        booking = updated or db["booking"].find_one({"_id": _id})

    # Safe to repeat; also repairs a window lost after an earlier confirmation
    add_booked_window(db, booking)

    if newly_confirmed:
        prop = db["property"].find_one({"_id": ObjectId(booking["property_id"])}, {"title": 1}) or {}
        background_tasks.add_task(notify_booking_confirmed, db, booking_id, user.phone, {
            "property_title": prop.get("title", "your property"),
            "check_in": booking["check_in"],
            "check_out": booking["check_out"],
            "total_amount": booking["total_amount"],
        })
        logger.info("Booking %s confirmed", booking_id)

    return {"message": "Booking confirmed successfully", "booking": with_id(booking)}


# Reviews

@router.post("/reviews", status_code=201)
def create_review(data: ReviewCreate, user: AuthUser = Depends(get_current_user), db: Database = Depends(get_db)):
    booking = db["booking"].find_one({
        "_id": ObjectId(data.booking_id),
        "guest_id": user.id,
        "property_id": data.property_id,
        "status": "completed",
    })
    if not booking:
        raise HTTPException(status_code=404, detail="Valid booking not found")
    if db["review"].find_one({"booking_id": data.booking_id}):
        raise HTTPException(status_code=409, detail="Review already exists for this booking")

    review = ReviewSchema(
        guest_id=user.id,
        property_id=data.property_id,
        booking_id=data.booking_id,
        rating=data.rating,
        comment=data.comment,
    )
    doc = review.model_dump()
    try:
        db["review"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Review already exists for this booking")
    return with_id(doc)
