from typing import Annotated, List, Optional
from bson import ObjectId
from pydantic import AfterValidator, BaseModel, Field, EmailStr, field_validator
from datetime import datetime, timezone

# Staybook Schemas (each class name lowercased becomes collection name)


def utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC, matching what MongoDB hands back."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    password_hash: str
    role: str = Field("guest", description="guest|host|admin")
    is_verified: bool = False
    verification_token: Optional[str] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class GovernmentId(BaseModel):
    type: str = Field(..., pattern="^(passport|driving_license)$")
    number: str = Field(..., min_length=1)
    images: List[str] = []


class BankDetails(BaseModel):
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    account_holder_name: Optional[str] = None


class Host(BaseModel):
    user_id: str
    government_id: GovernmentId
    is_verified: bool = False
    verification_date: Optional[datetime] = None
    host_since: datetime = Field(default_factory=utcnow)
    earnings: float = 0.0
    total_bookings: int = 0
    host_tag: Optional[str] = Field(None, description="gold|silver|bronze|None")
    bank_details: Optional[BankDetails] = None


class GeoPoint(BaseModel):
    type: str = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[longitude, latitude]")


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    coordinates: Optional[GeoPoint] = None


class AvailabilityWindow(BaseModel):
    start_date: datetime
    end_date: datetime
    is_available: bool = True
    booking_id: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value):
        return utc_naive(value)


class Discount(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    discount_type: str = Field(..., pattern="^(percentage|fixed)$")
    value: float = Field(..., ge=0)
    min_nights: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime

    @field_validator("valid_from", "valid_until")
    @classmethod
    def normalize_dates(cls, value):
        return utc_naive(value)


class Property(BaseModel):
    host_id: str
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    type: str = Field(..., pattern="^(apartment|house|room|villa|cottage)$")
    address: Address = Field(default_factory=Address)
    amenities: List[str] = []
    price_per_night: float = Field(..., ge=0)
    max_guests: int = Field(..., ge=1)
    bedrooms: int = Field(..., ge=0)
    bathrooms: int = Field(..., ge=0)
    images: List[str] = []
    availability: List[AvailabilityWindow] = []
    discounts: List[Discount] = []
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class Booking(BaseModel):
    guest_id: str
    property_id: str
    check_in: datetime
    check_out: datetime
    guests_count: int = Field(..., ge=1)
    total_amount: float = Field(..., ge=0)
    discount_amount: float = Field(0.0, ge=0)
    status: str = Field("pending", description="pending|confirmed|cancelled|completed")
    payment_status: str = Field("pending", description="pending|paid|refunded|failed")
    payment_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    special_requests: Optional[str] = None
    cancellation_reason: Optional[str] = None
    confirmation_sent: bool = False
    reminder_sent: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("check_in", "check_out")
    @classmethod
    def normalize_dates(cls, value):
        return utc_naive(value)


class Review(BaseModel):
    guest_id: str
    property_id: str
    booking_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10)
    host_reply: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


def check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("must be a valid id")
    return value


ObjectIdStr = Annotated[str, AfterValidator(check_object_id)]
