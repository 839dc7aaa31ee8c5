"""Host tags from earnings percentiles.

Tags are recomputed by an explicit batch run (``jobs.py`` or the admin
``POST /api/admin/hosts/rank`` endpoint); read paths only return what was
last persisted.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from pymongo import UpdateOne

logger = logging.getLogger(__name__)

# (upper percentile bound, tag), checked in order
TAG_THRESHOLDS = (
    (0.01, "gold"),
    (0.10, "silver"),
    (0.30, "bronze"),
)


def tag_for_rank(index: int, total: int) -> Optional[str]:
    """Tag for the host at 0-based ``index`` among ``total`` hosts sorted by earnings."""
    percentile = (index + 1) / total
    for bound, tag in TAG_THRESHOLDS:
        if percentile <= bound:
            return tag
    return None


def _sort_key(host: dict):
    # earnings desc, longest-standing host first, then id for a total order
    return (
        -float(host.get("earnings") or 0),
        host.get("host_since") or datetime.max,
        str(host.get("_id", host.get("id", ""))),
    )


def rank_hosts(hosts: Iterable[dict]) -> List[Tuple[object, Optional[str]]]:
    ordered = sorted(hosts, key=_sort_key)
    total = len(ordered)
    return [(h.get("_id", h.get("id")), tag_for_rank(i, total)) for i, h in enumerate(ordered)]


def recompute_host_tags(db) -> dict:
    hosts = list(db["host"].find({}, {"earnings": 1, "host_since": 1, "host_tag": 1}))
    if not hosts:
        return {"hosts": 0, "updated": 0}

    current = {h["_id"]: h.get("host_tag") for h in hosts}
    ops = [
        UpdateOne({"_id": host_id}, {"$set": {"host_tag": tag}})
        for host_id, tag in rank_hosts(hosts)
        if current.get(host_id) != tag
    ]
    if ops:
        db["host"].bulk_write(ops, ordered=False)
    logger.info("Ranked %d hosts, %d tags changed", len(hosts), len(ops))
    return {"hosts": len(hosts), "updated": len(ops)}
