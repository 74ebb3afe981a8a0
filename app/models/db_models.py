from typing import Optional, Literal, Dict, Any
from datetime import datetime, time
from decimal import Decimal
from uuid import uuid4
from pydantic import BaseModel, Field

# Statuses that occupy time on the resource
BLOCKING_BOOKING_STATUSES = ("pending", "confirmed")

def _new_id() -> str:
    return str(uuid4())

class Business(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    is_active: bool = True

class Resource(BaseModel):
    id: str
    business_id: str
    name: str
    capacity: Optional[int] = None
    base_price: Decimal = Decimal("0")
    bookable_type_id: Optional[str] = None
    package_id: Optional[str] = None
    is_active: bool = True

class WeeklyScheduleEntry(BaseModel):
    resource_id: str
    day_of_week: int # Monday=0 ... Sunday=6, same as date.weekday()
    start_time: time
    end_time: time
    is_active: bool = True

class Blackout(BaseModel):
    id: str = Field(default_factory=_new_id)
    resource_id: str
    start_datetime: datetime
    end_datetime: datetime # last blocked instant
    reason: Optional[str] = None

class RecurringBlock(BaseModel):
    id: str = Field(default_factory=_new_id)
    resource_id: str
    day_of_week: int
    start_time: time
    end_time: time
    reason: Optional[str] = None
    is_active: bool = True

class SlotSettings(BaseModel):
    resource_id: str
    slot_increment_minutes: int = 30
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    min_advance_hours: int = 2
    max_advance_days: int = 60

class Booking(BaseModel):
    id: str = Field(default_factory=_new_id)
    resource_id: str
    start_datetime: datetime
    end_datetime: datetime
    status: Literal["pending", "confirmed", "cancelled"] = "pending"
    # Frozen at creation so later rule/schedule edits never rewrite history
    price: Optional[Decimal] = None
    schedule_snapshot: Optional[Dict[str, Any]] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status in BLOCKING_BOOKING_STATUSES

class SlotHold(BaseModel):
    id: str = Field(default_factory=_new_id)
    resource_id: str
    start_datetime: datetime
    end_datetime: datetime
    expires_at: datetime
    status: Literal["active", "released", "converted"] = "active"
    session_id: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return self.status == "active" and self.expires_at > now

    def belongs_to(self, resource_id: str, start: datetime, end: datetime, now: datetime,
                   session_id: Optional[str] = None) -> bool:
        """True when this live hold covers exactly that booking. Holds without a session are bearer tokens."""
        return (
            self.is_live(now)
            and self.resource_id == resource_id
            and self.start_datetime == start
            and self.end_datetime == end
            and (self.session_id is None or self.session_id == session_id)
        )

class PricingRule(BaseModel):
    id: str = Field(default_factory=_new_id)
    business_id: str
    bookable_type_id: Optional[str] = None
    package_id: Optional[str] = None
    name: Optional[str] = None
    rule_type: str = "custom"
    # Kept as a plain string: an unknown value is a configuration error raised by the resolver
    modifier_type: str
    modifier_value: Decimal
    priority: int = 100
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
