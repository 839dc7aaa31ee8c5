import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

import payments
import storage
from availability import add_booked_window, find_conflicting_booking, release_booked_window
from database import get_db, list_with_id, object_id, with_id
from schemas import (
    Address,
    AvailabilityWindow,
    Discount,
    Property as PropertySchema,
    utcnow,
)
from security import AuthUser, require_host

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/host", tags=["host"])

MAX_PROPERTY_IMAGES = 10

# current status -> statuses a host may move the booking to
BOOKING_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


class PropertyCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    type: str = Field(..., pattern="^(apartment|house|room|villa|cottage)$")
    address: Address = Field(default_factory=Address)
    amenities: List[str] = []
    price_per_night: float = Field(..., ge=0)
    max_guests: int = Field(..., ge=1)
    bedrooms: int = Field(..., ge=0)
    bathrooms: int = Field(..., ge=0)
    availability: List[AvailabilityWindow] = []
    discounts: List[Discount] = []


class PropertyUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = Field(None, pattern="^(apartment|house|room|villa|cottage)$")
    address: Optional[Address] = None
    amenities: Optional[List[str]] = None
    price_per_night: Optional[float] = Field(None, ge=0)
    max_guests: Optional[int] = Field(None, ge=1)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    availability: Optional[List[AvailabilityWindow]] = None
    discounts: Optional[List[Discount]] = None
    is_active: Optional[bool] = None


class BookingStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(confirmed|cancelled|completed)$")
    cancellation_reason: Optional[str] = None


class ReviewReply(BaseModel):
    reply: str = Field(..., min_length=1)


# Helpers

def current_host(db: Database, user: AuthUser) -> dict:
    host = db["host"].find_one({"user_id": user.id})
    if not host:
        raise HTTPException(status_code=404, detail="Host profile not found")
    return host


def host_property_ids(db: Database, host: dict) -> List[str]:
    return [str(p["_id"]) for p in db["property"].find({"host_id": str(host["_id"])}, {"_id": 1})]


def owned_property(db: Database, host: dict, property_id: str) -> dict:
    prop = db["property"].find_one({
        "_id": object_id(property_id, "Property not found"),
        "host_id": str(host["_id"]),
    })
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    return prop


def is_paid(booking: dict) -> bool:
    # a pending booking may already be charged if the guest never called confirm
    if booking.get("payment_status") == "paid":
        return True
    if booking["status"] != "pending" or not booking.get("payment_intent_id"):
        return False
    return payments.retrieve_payment_intent(booking["payment_intent_id"]).status == "succeeded"


# Dashboard

@router.get("/dashboard")
def dashboard(user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    host = current_host(db, user)
    property_ids = host_property_ids(db, host)
    bookings = list(db["booking"].find(
        {"property_id": {"$in": property_ids}, "status": "confirmed"},
        {"check_in": 1, "total_amount": 1},
    ))
    now = utcnow()
    return {
        "host": with_id(host),
        "properties": len(property_ids),
        "bookings": len(bookings),
        "upcoming_bookings": sum(1 for b in bookings if b["check_in"] > now),
        "total_earnings": sum(b["total_amount"] for b in bookings),
        "reviews": db["review"].count_documents({"property_id": {"$in": property_ids}}),
    }


# Properties

@router.post("/properties", status_code=201)
def create_property(data: PropertyCreate, user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    host = current_host(db, user)
    fields = data.model_dump()
    # booked windows only come from confirmations
    fields["availability"] = [w for w in fields.get("availability") or [] if not w.get("booking_id")]
    prop = PropertySchema(host_id=str(host["_id"]), **fields)
    doc = prop.model_dump(exclude_none=True)
    db["property"].insert_one(doc)
    logger.info("Host %s listed property %s", host["_id"], doc["_id"])
    return with_id(doc)


@router.get("/properties")
def my_properties(user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    host = current_host(db, user)
    return list_with_id(db["property"].find({"host_id": str(host["_id"])}).sort("created_at", -1))


@router.get("/properties/{property_id}")
def get_my_property(property_id: str, user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    return with_id(owned_property(db, current_host(db, user), property_id))


@router.put("/properties/{property_id}")
def update_property(
    property_id: str,
    data: PropertyUpdate,
    user: AuthUser = Depends(require_host),
    db: Database = Depends(get_db),
):
    prop = owned_property(db, current_host(db, user), property_id)
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if "address" in changes:
        changes["address"] = data.address.model_dump(exclude_none=True)
    if "availability" in changes:
        # windows owned by bookings are kept; hosts only edit their own
        booked = [w for w in prop.get("availability", []) if w.get("booking_id")]
        own = [w.model_dump(exclude_none=True) for w in data.availability or [] if not w.booking_id]
        changes["availability"] = booked + own
    if not changes:
        return with_id(prop)
    updated = db["property"].find_one_and_update(
        {"_id": prop["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return with_id(updated)


@router.delete("/properties/{property_id}")
def delete_property(property_id: str, user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    prop = owned_property(db, current_host(db, user), property_id)
    open_bookings = db["booking"].count_documents({
        "property_id": str(prop["_id"]),
        "status": {"$in": ["pending", "confirmed"]},
    })
    if open_bookings:
        raise HTTPException(status_code=400, detail="Property has open bookings")
    db["property"].delete_one({"_id": prop["_id"]})
    return {"message": "Property deleted"}


@router.post("/properties/{property_id}/images")
def upload_property_images(
    property_id: str,
    images: List[UploadFile] = File(...),
    user: AuthUser = Depends(require_host),
    db: Database = Depends(get_db),
):
    prop = owned_property(db, current_host(db, user), property_id)
    if len(images) > MAX_PROPERTY_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_PROPERTY_IMAGES} images per upload")
    try:
        urls = [storage.upload_file(f, f"properties/{prop['_id']}") for f in images]
    except storage.UnsupportedFileType as e:
        raise HTTPException(status_code=400, detail=str(e))
    updated = db["property"].find_one_and_update(
        {"_id": prop["_id"]},
        {"$push": {"images": {"$each": urls}}},
        return_document=ReturnDocument.AFTER,
    )
    return with_id(updated)


# Bookings

@router.get("/bookings")
def property_bookings(user: AuthUser = Depends(require_host), db: Database = Depends(get_db)):
    property_ids = host_property_ids(db, current_host(db, user))
    bookings = list_with_id(db["booking"].find({"property_id": {"$in": property_ids}}).sort("created_at", -1))
    guest_ids = [ObjectId(b["guest_id"]) for b in bookings if ObjectId.is_valid(b["guest_id"])]
    guests = {
        str(u.pop("_id")): u
        for u in db["user"].find(
            {"_id": {"$in": guest_ids}},
            {"first_name": 1, "last_name": 1, "email": 1, "phone": 1},
        )
    }
    for b in bookings:
        b["guest"] = guests.get(b["guest_id"])
    return bookings


@router.patch("/bookings/{booking_id}")
def update_booking_status(
    booking_id: str,
    data: BookingStatusUpdate,
    user: AuthUser = Depends(require_host),
    db: Database = Depends(get_db),
):
    host = current_host(db, user)
    booking = db["booking"].find_one({
        "_id": object_id(booking_id, "Booking not found"),
        "property_id": {"$in": host_property_ids(db, host)},
    })
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    current = booking["status"]
    if data.status not in BOOKING_TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=400, detail=f"Cannot change booking from {current} to {data.status}")

    if data.status == "confirmed" and find_conflicting_booking(
        db, booking["property_id"], booking["check_in"], booking["check_out"], exclude_id=booking_id
    ):
        raise HTTPException(status_code=409, detail="Property is already booked for these dates")

    changes = {"status": data.status}
    if data.status == "cancelled":
        changes["cancellation_reason"] = data.cancellation_reason
        if is_paid(booking):
            payments.refund_payment(booking["payment_intent_id"], booking["total_amount"])
            changes["payment_status"] = "refunded"

    # conditional on the status we validated against
    updated = db["booking"].find_one_and_update(
        {"_id": booking["_id"], "status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Booking was modified concurrently")

    if data.status == "confirmed":
        add_booked_window(db, updated)
    elif data.status == "cancelled" and current == "confirmed":
        release_booked_window(db, updated)
    elif data.status == "completed":
        db["host"].update_one(
            {"_id": host["_id"]},
            {"$inc": {"earnings": updated["total_amount"], "total_bookings": 1}},
        )

    logger.info("Booking %s moved %s -> %s", booking_id, current, data.status)
    return with_id(updated)


# Reviews

@router.post("/reviews/{review_id}/reply")
def reply_to_review(
    review_id: str,
    data: ReviewReply,
    user: AuthUser = Depends(require_host),
    db: Database = Depends(get_db),
):
    property_ids = host_property_ids(db, current_host(db, user))
    review = db["review"].find_one_and_update(
        {"_id": object_id(review_id, "Review not found"), "property_id": {"$in": property_ids}},
        {"$set": {"host_reply": data.reply}},
        return_document=ReturnDocument.AFTER,
    )
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return with_id(review)
