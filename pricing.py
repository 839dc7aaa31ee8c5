"""Stay pricing: night counting and best-discount selection."""
import logging
import math
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from schemas import utc_naive

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


class InvalidDateRange(ValueError):
    pass


class NoPropertyFound(LookupError):
    pass


class StayQuote(NamedTuple):
    nights: int
    raw_total: float
    discount_amount: float
    total: float
    discount: Optional[dict]


def count_nights(check_in: datetime, check_out: datetime) -> int:
    """Whole nights between two instants, rounding partial days up."""
    nights = math.ceil((utc_naive(check_out) - utc_naive(check_in)) / ONE_DAY)
    if nights <= 0:
        raise InvalidDateRange("Check-out must be after check-in")
    return nights


def discount_value(discount: dict, raw_total: float) -> float:
    if discount.get("discount_type") == "percentage":
        return raw_total * discount["value"] / 100
    return float(discount["value"])


def eligible_discounts(discounts: List[dict], check_in: datetime, check_out: datetime, nights: int) -> List[dict]:
    check_in, check_out = utc_naive(check_in), utc_naive(check_out)
    eligible = []
    for d in discounts or []:
        valid_from, valid_until = d.get("valid_from"), d.get("valid_until")
        if valid_from is None or valid_until is None:
            continue
        if utc_naive(valid_from) > check_in or utc_naive(valid_until) < check_out:
            continue
        if d.get("min_nights") and nights < d["min_nights"]:
            continue
        eligible.append(d)
    return eligible


def best_discount(discounts: List[dict], raw_total: float) -> Optional[dict]:
    # strict comparison keeps the first of equal candidates
    best, best_amount = None, None
    for d in discounts:
        amount = discount_value(d, raw_total)
        if best_amount is None or amount > best_amount:
            best, best_amount = d, amount
    return best


def quote_stay(property_doc: Optional[dict], check_in: datetime, check_out: datetime) -> StayQuote:
    if property_doc is None:
        raise NoPropertyFound("Property not found")
    nights = count_nights(check_in, check_out)
    raw_total = nights * float(property_doc["price_per_night"])

    chosen = best_discount(
        eligible_discounts(property_doc.get("discounts", []), check_in, check_out, nights),
        raw_total,
    )
    discount_amount = 0.0
    if chosen is not None:
        discount_amount = min(max(discount_value(chosen, raw_total), 0.0), raw_total)
        logger.debug("Applying discount %r worth %.2f", chosen.get("name"), discount_amount)

    return StayQuote(
        nights=nights,
        raw_total=raw_total,
        discount_amount=discount_amount,
        total=raw_total - discount_amount,
        discount=chosen,
    )
