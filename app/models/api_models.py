from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, field_serializer

from app.models.db_models import Booking, SlotHold

# --- Engine output ---

class AvailableSlot(BaseModel):
    start_time: datetime # ISO 8601, resource-local
    end_time: datetime
    resource_id: str
    resource_name: str
    base_price: Decimal

    @field_serializer("base_price")
    def _price_as_number(self, value: Decimal) -> float:
        return float(value)

class AvailabilityResponse(BaseModel):
    slots: List[AvailableSlot]

class NextAvailableResponse(BaseModel):
    day: Optional[date] = None
    slots: List[AvailableSlot]

# --- Pricing ---

class PriceRequest(BaseModel):
    base_price: Decimal
    business_id: str
    bookable_type_id: Optional[str] = None
    package_id: Optional[str] = None
    at: Optional[datetime] = None

class PriceResponse(BaseModel):
    final_price: Decimal

    @field_serializer("final_price")
    def _price_as_number(self, value: Decimal) -> float:
        return float(value)

# --- Checkout & holds ---

class CheckoutRequest(BaseModel):
    resource_id: str
    start_time: datetime
    duration: Optional[int] = None
    # Price the guest was shown; checkout refuses to charge anything else
    quoted_price: Optional[Decimal] = None
    package_id: Optional[str] = None
    hold_id: Optional[str] = None
    # Must match the session that placed the hold
    session_id: Optional[str] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None

class BookingResponse(BaseModel):
    id: str
    resource_id: str
    start_time: datetime
    end_time: datetime
    status: str
    price: Optional[Decimal] = None

    @field_serializer("price")
    def _price_as_number(self, value: Optional[Decimal]) -> Optional[float]:
        return float(value) if value is not None else None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            resource_id=booking.resource_id,
            start_time=booking.start_datetime,
            end_time=booking.end_datetime,
            status=booking.status,
            price=booking.price,
        )

class HoldRequest(BaseModel):
    resource_id: str
    start_time: datetime
    duration: Optional[int] = None
    session_id: Optional[str] = None

class HoldResponse(BaseModel):
    id: str
    resource_id: str
    start_time: datetime
    end_time: datetime
    expires_at: datetime
    status: str

    @classmethod
    def from_hold(cls, hold: SlotHold) -> "HoldResponse":
        return cls(
            id=hold.id,
            resource_id=hold.resource_id,
            start_time=hold.start_datetime,
            end_time=hold.end_datetime,
            expires_at=hold.expires_at,
            status=hold.status,
        )
