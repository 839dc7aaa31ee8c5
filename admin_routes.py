import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import ReturnDocument
from pymongo.database import Database

from availability import sync_booked_windows
from database import get_db, list_with_id, object_id, with_id
from guest_routes import host_summaries
from ranking import recompute_host_tags
from schemas import utcnow
from search import paginate
from security import AuthUser, PRIVATE_USER_FIELDS, require_admin
from settings import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _page(result: dict, key: str) -> dict:
    return {
        key: result["items"],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
        "total": result["total"],
    }


@router.get("/dashboard")
def dashboard(user: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    revenue = list(db["booking"].aggregate([
        {"$match": {"payment_status": "paid"}},
        {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
    ]))
    recent = list_with_id(db["booking"].find().sort("created_at", -1).limit(10))
    return {
        "total_users": db["user"].count_documents({}),
        "total_hosts": db["host"].count_documents({}),
        "total_properties": db["property"].count_documents({}),
        "total_bookings": db["booking"].count_documents({}),
        "total_revenue": revenue[0]["total"] if revenue else 0,
        "recent_bookings": recent,
    }


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user: AuthUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {"role": role} if role else {}
    result = paginate(db["user"], query, page, limit, sort=[("created_at", -1)], projection=PRIVATE_USER_FIELDS)
    return _page(result, "users")


@router.get("/hosts")
def list_hosts(
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user: AuthUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    # tags are whatever the last ranking run persisted
    result = paginate(db["host"], {}, page, limit, sort=[("earnings", -1), ("host_since", 1)])
    users = host_summaries(db, [h["id"] for h in result["items"]], ("first_name", "last_name", "email", "phone"))
    for h in result["items"]:
        h["user"] = (users.get(h["id"]) or {}).get("user")
    return _page(result, "hosts")


@router.post("/hosts/rank")
def rank_hosts(user: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    return recompute_host_tags(db)


@router.patch("/hosts/{host_id}/verify")
def verify_host(host_id: str, user: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    host = db["host"].find_one_and_update(
        {"_id": object_id(host_id, "Host not found")},
        {"$set": {"is_verified": True, "verification_date": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not host:
        raise HTTPException(status_code=404, detail="Host not found")
    logger.info("Admin %s verified host %s", user.id, host_id)
    return with_id(host)


@router.get("/properties")
def list_properties(
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user: AuthUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {"is_active": status == "active"} if status else {}
    result = paginate(db["property"], query, page, limit, sort=[("created_at", -1)])
    hosts = host_summaries(db, [p["host_id"] for p in result["items"]])
    for p in result["items"]:
        p["host"] = hosts.get(p["host_id"])
    return _page(result, "properties")


@router.patch("/properties/{property_id}/status")
def toggle_property_status(property_id: str, user: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    _id = object_id(property_id, "Property not found")
    prop = db["property"].find_one({"_id": _id}, {"is_active": 1})
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    updated = db["property"].find_one_and_update(
        {"_id": _id},
        {"$set": {"is_active": not prop.get("is_active", True)}},
        return_document=ReturnDocument.AFTER,
    )
    return with_id(updated)


@router.get("/bookings")
def list_bookings(
    status: Optional[str] = None,
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user: AuthUser = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {"status": status} if status else {}
    result = paginate(db["booking"], query, page, limit, sort=[("created_at", -1)])
    return _page(result, "bookings")


@router.post("/availability/sync")
def sync_availability(user: AuthUser = Depends(require_admin), db: Database = Depends(get_db)):
    return sync_booked_windows(db)
