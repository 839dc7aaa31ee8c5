"""Booked-window bookkeeping on properties.

A confirmed booking owns exactly one ``is_available: False`` window on its
property, tagged with the booking id. Windows are added with ``$addToSet`` so
confirming twice, or running :func:`sync_booked_windows` after a partial
failure, converges on the same state.
"""
import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId

from schemas import utc_naive

logger = logging.getLogger(__name__)


def booked_window(booking: dict) -> dict:
    return {
        "start_date": utc_naive(booking["check_in"]),
        "end_date": utc_naive(booking["check_out"]),
        "is_available": False,
        "booking_id": str(booking.get("_id", booking.get("id"))),
    }


def _overlaps(start: datetime, end: datetime, check_in: datetime, check_out: datetime) -> bool:
    return utc_naive(start) < check_out and utc_naive(end) > check_in


def find_conflicting_booking(db, property_id: str, check_in: datetime, check_out: datetime,
                             exclude_id: Optional[str] = None) -> Optional[dict]:
    """First confirmed booking or blocked window overlapping the stay, if any."""
    check_in, check_out = utc_naive(check_in), utc_naive(check_out)
    query = {
        "property_id": property_id,
        "status": "confirmed",
        "check_in": {"$lt": check_out},
        "check_out": {"$gt": check_in},
    }
    if exclude_id:
        query["_id"] = {"$ne": ObjectId(exclude_id)}
    clash = db["booking"].find_one(query)
    if clash:
        return clash

    prop = db["property"].find_one({"_id": ObjectId(property_id)}, {"availability": 1})
    for window in (prop or {}).get("availability", []):
        if window.get("is_available", True):
            continue
        if exclude_id and window.get("booking_id") == exclude_id:
            continue
        if _overlaps(window["start_date"], window["end_date"], check_in, check_out):
            return window
    return None


def add_booked_window(db, booking: dict) -> int:
    result = db["property"].update_one(
        {"_id": ObjectId(booking["property_id"])},
        {"$addToSet": {"availability": booked_window(booking)}},
    )
    return result.modified_count


def release_booked_window(db, booking: dict) -> None:
    booking_id = str(booking.get("_id", booking.get("id")))
    db["property"].update_one(
        {"_id": ObjectId(booking["property_id"])},
        {"$pull": {"availability": {"booking_id": booking_id}}},
    )


def sync_booked_windows(db) -> dict:
    """Make every confirmed booking's window present on its property."""
    synced = 0
    for booking in db["booking"].find({"status": "confirmed"}):
        synced += add_booked_window(db, booking)
    logger.info("Availability sync added %d missing booked windows", synced)
    return {"added": synced}
