import math
import re
from datetime import datetime
from typing import List, Optional

from database import list_with_id
from schemas import utc_naive
from settings import SEARCH_RADIUS_METERS


def build_property_filter(
    location: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    check_in: Optional[datetime] = None,
    check_out: Optional[datetime] = None,
    guests: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    amenities: Optional[List[str]] = None,
    property_type: Optional[str] = None,
) -> dict:
    """Conjunctive property filter; every omitted argument leaves that dimension open."""
    query = {"is_active": True}
    if location:
        query["address.city"] = {"$regex": re.escape(location), "$options": "i"}
    if lat is not None and lng is not None:
        query["address.coordinates"] = {
            "$near": {
                "$geometry": {"type": "Point", "coordinates": [lng, lat]},
                "$maxDistance": SEARCH_RADIUS_METERS,
            }
        }
    price_range = {}
    if min_price is not None:
        price_range["$gte"] = min_price
    if max_price is not None:
        price_range["$lte"] = max_price
    if price_range:
        query["price_per_night"] = price_range
    if property_type:
        query["type"] = property_type
    if amenities:
        query["amenities"] = {"$all": amenities}
    if check_in and check_out:
        query["availability"] = {
            "$elemMatch": {
                "start_date": {"$lte": utc_naive(check_in)},
                "end_date": {"$gte": utc_naive(check_out)},
                "is_available": True,
            }
        }
    if guests is not None:
        query["max_guests"] = {"$gte": guests}
    return query


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def paginate(collection, query: dict, page: int, limit: int, sort=None, projection=None) -> dict:
    """Offset pagination, 1-indexed."""
    cursor = collection.find(query, projection)
    if sort:
        cursor = cursor.sort(sort)
    items = list_with_id(cursor.skip((page - 1) * limit).limit(limit))
    # $near cannot be counted; count_documents needs $geoWithin instead
    total = collection.count_documents(_countable(query))
    return {
        "items": items,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": page,
    }


def _countable(query: dict) -> dict:
    geo = query.get("address.coordinates")
    if not isinstance(geo, dict) or "$near" not in geo:
        return query
    near = geo["$near"]
    lng, lat = near["$geometry"]["coordinates"]
    radius = near["$maxDistance"] / 6378100.0  # radians on the earth's equatorial radius
    counted = dict(query)
    counted["address.coordinates"] = {"$geoWithin": {"$centerSphere": [[lng, lat], radius]}}
    return counted
