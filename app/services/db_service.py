from abc import ABC, abstractmethod
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from postgrest.exceptions import APIError
from supabase import create_async_client, AsyncClient

from app.core.clock import to_local_naive
from app.core.config import settings
from app.core.config_loader import load_seed_data, get_section
from app.core.errors import ConfigurationError, SlotUnavailable, StoreError
from app.core.logger import logger
from app.models.db_models import (
    BLOCKING_BOOKING_STATUSES,
    Blackout,
    Booking,
    Business,
    PricingRule,
    RecurringBlock,
    Resource,
    SlotHold,
    SlotSettings,
    WeeklyScheduleEntry,
)
from app.services.conflict_service import conflicting, expand, overlaps

M = TypeVar("M", bound=BaseModel)


class BookingStore(ABC):
    """
    Everything the engine reads or writes. Schedule, exception, settings and
    rule rows are read-only here; bookings and holds are the only writes.

    `reserve_booking` and `create_hold` must be atomic insert-iff-free
    operations inside the backend.
    """

    @abstractmethod
    async def get_business(self, business_id: str) -> Optional[Business]:
        ...

    @abstractmethod
    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        ...

    @abstractmethod
    async def list_resources(self, business_id: str) -> List[Resource]:
        ...

    @abstractmethod
    async def list_schedules(self, resource_id: str) -> List[WeeklyScheduleEntry]:
        ...

    @abstractmethod
    async def list_blackouts(self, resource_id: str, start: datetime, end: datetime) -> List[Blackout]:
        ...

    @abstractmethod
    async def list_recurring_blocks(self, resource_id: str) -> List[RecurringBlock]:
        ...

    @abstractmethod
    async def get_slot_settings(self, resource_id: str) -> Optional[SlotSettings]:
        ...

    @abstractmethod
    async def list_active_bookings(self, resource_id: str, start: datetime, end: datetime) -> List[Booking]:
        ...

    @abstractmethod
    async def list_active_holds(self, resource_id: str, start: datetime, end: datetime, now: datetime) -> List[SlotHold]:
        ...

    @abstractmethod
    async def list_pricing_rules(self, business_id: str) -> List[PricingRule]:
        ...

    @abstractmethod
    async def reserve_booking(
        self,
        booking: Booking,
        buffer_before: int,
        buffer_after: int,
        now: datetime,
        release_hold_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Booking:
        """
        Inserts `booking` iff it conflicts with nothing live. When
        `release_hold_id` is given it must be a live hold covering exactly this
        booking (and owned by `session_id`); that hold is then ignored for the
        conflict test and marked converted in the same operation.
        """

    @abstractmethod
    async def create_hold(self, hold: SlotHold, buffer_before: int, buffer_after: int, now: datetime) -> SlotHold:
        ...

    @abstractmethod
    async def get_hold(self, hold_id: str) -> Optional[SlotHold]:
        ...

    @abstractmethod
    async def release_hold(self, hold_id: str) -> Optional[SlotHold]:
        ...

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    async def cancel_booking(self, booking_id: str) -> Optional[Booking]:
        ...


class MemoryStore(BookingStore):
    """
    Process-local store, populated from the seed JSON. A single lock covers
    the conflict check and the insert of every write.
    """

    def __init__(self):
        self._lock = Lock()
        self.businesses: Dict[str, Business] = {}
        self.resources: Dict[str, Resource] = {}
        self.schedules: List[WeeklyScheduleEntry] = []
        self.blackouts: List[Blackout] = []
        self.recurring_blocks: List[RecurringBlock] = []
        self.slot_settings: Dict[str, SlotSettings] = {}
        self.bookings: Dict[str, Booking] = {}
        self.holds: Dict[str, SlotHold] = {}
        self.pricing_rules: List[PricingRule] = []

    @classmethod
    def from_seed(cls, data: Dict[str, Any]) -> "MemoryStore":
        store = cls()
        for row in get_section(data, "businesses"):
            business = Business.model_validate(row)
            store.businesses[business.id] = business
        for row in get_section(data, "resources"):
            resource = Resource.model_validate(row)
            store.resources[resource.id] = resource
        store.schedules = [WeeklyScheduleEntry.model_validate(r) for r in get_section(data, "weekly_schedules")]
        store.blackouts = [Blackout.model_validate(r) for r in get_section(data, "blackouts")]
        store.recurring_blocks = [RecurringBlock.model_validate(r) for r in get_section(data, "recurring_blocks")]
        for row in get_section(data, "slot_settings"):
            row_settings = SlotSettings.model_validate(row)
            store.slot_settings[row_settings.resource_id] = row_settings
        for row in get_section(data, "bookings"):
            booking = Booking.model_validate(row)
            store.bookings[booking.id] = booking
        for row in get_section(data, "slot_holds"):
            hold = SlotHold.model_validate(row)
            store.holds[hold.id] = hold
        store.pricing_rules = [PricingRule.model_validate(r) for r in get_section(data, "pricing_rules")]
        return store

    async def get_business(self, business_id: str) -> Optional[Business]:
        return self.businesses.get(business_id)

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        return self.resources.get(resource_id)

    async def list_resources(self, business_id: str) -> List[Resource]:
        return [r for r in self.resources.values() if r.business_id == business_id and r.is_active]

    async def list_schedules(self, resource_id: str) -> List[WeeklyScheduleEntry]:
        return [s for s in self.schedules if s.resource_id == resource_id]

    async def list_blackouts(self, resource_id: str, start: datetime, end: datetime) -> List[Blackout]:
        return [
            b for b in self.blackouts
            if b.resource_id == resource_id and overlaps(b.start_datetime, b.end_datetime, start, end)
        ]

    async def list_recurring_blocks(self, resource_id: str) -> List[RecurringBlock]:
        return [b for b in self.recurring_blocks if b.resource_id == resource_id and b.is_active]

    async def get_slot_settings(self, resource_id: str) -> Optional[SlotSettings]:
        return self.slot_settings.get(resource_id)

    def _active_bookings(self, resource_id: str, start: datetime, end: datetime) -> List[Booking]:
        return [
            b for b in self.bookings.values()
            if b.resource_id == resource_id and b.is_active
            and overlaps(b.start_datetime, b.end_datetime, start, end)
        ]

    def _live_holds(self, resource_id: str, start: datetime, end: datetime, now: datetime) -> List[SlotHold]:
        return [
            h for h in self.holds.values()
            if h.resource_id == resource_id and h.is_live(now)
            and overlaps(h.start_datetime, h.end_datetime, start, end)
        ]

    async def list_active_bookings(self, resource_id: str, start: datetime, end: datetime) -> List[Booking]:
        return sorted(self._active_bookings(resource_id, start, end), key=lambda b: b.start_datetime)

    async def list_active_holds(self, resource_id: str, start: datetime, end: datetime, now: datetime) -> List[SlotHold]:
        return self._live_holds(resource_id, start, end, now)

    async def list_pricing_rules(self, business_id: str) -> List[PricingRule]:
        return sorted(
            (r for r in self.pricing_rules if r.business_id == business_id),
            key=lambda r: r.priority,
        )

    def _occupants(self, resource_id: str, start: datetime, end: datetime, buffer_before: int, buffer_after: int,
                   now: datetime, skip_hold_id: Optional[str] = None) -> list:
        # Widen the lookup window so buffered neighbours are included
        window = expand(start, end, buffer_before + buffer_after, buffer_before + buffer_after)
        holds = [h for h in self._live_holds(resource_id, window.start, window.end, now) if h.id != skip_hold_id]
        return self._active_bookings(resource_id, window.start, window.end) + holds

    async def reserve_booking(
        self,
        booking: Booking,
        buffer_before: int,
        buffer_after: int,
        now: datetime,
        release_hold_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Booking:
        with self._lock:
            if release_hold_id is not None:
                own = self.holds.get(release_hold_id)
                if own is None or not own.belongs_to(
                    booking.resource_id, booking.start_datetime, booking.end_datetime, now, session_id
                ):
                    raise SlotUnavailable(
                        "That hold does not cover the selected time",
                        {"resource_id": booking.resource_id, "hold_id": release_hold_id},
                    )

            occupants = self._occupants(
                booking.resource_id, booking.start_datetime, booking.end_datetime,
                buffer_before, buffer_after, now, skip_hold_id=release_hold_id,
            )
            if conflicting(booking.start_datetime, booking.end_datetime, buffer_before, buffer_after, occupants):
                raise SlotUnavailable(
                    "That time was just taken, please choose another slot",
                    {"resource_id": booking.resource_id, "start_time": booking.start_datetime.isoformat()},
                )
            self.bookings[booking.id] = booking
            if release_hold_id is not None:
                self.holds[release_hold_id] = self.holds[release_hold_id].model_copy(update={"status": "converted"})
        return booking

    async def create_hold(self, hold: SlotHold, buffer_before: int, buffer_after: int, now: datetime) -> SlotHold:
        with self._lock:
            occupants = self._occupants(
                hold.resource_id, hold.start_datetime, hold.end_datetime, buffer_before, buffer_after, now,
            )
            if conflicting(hold.start_datetime, hold.end_datetime, buffer_before, buffer_after, occupants):
                raise SlotUnavailable(
                    "That time is no longer available to hold",
                    {"resource_id": hold.resource_id, "start_time": hold.start_datetime.isoformat()},
                )
            self.holds[hold.id] = hold
        return hold

    async def get_hold(self, hold_id: str) -> Optional[SlotHold]:
        return self.holds.get(hold_id)

    async def release_hold(self, hold_id: str) -> Optional[SlotHold]:
        with self._lock:
            hold = self.holds.get(hold_id)
            if hold is None:
                return None
            if hold.status == "active":
                hold = hold.model_copy(update={"status": "released"})
                self.holds[hold_id] = hold
            return hold

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def cancel_booking(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            booking = self.bookings.get(booking_id)
            if booking is None:
                return None
            booking = booking.model_copy(update={"status": "cancelled"})
            self.bookings[booking_id] = booking
            return booking


def _to_model(model: Type[M], row: Dict[str, Any]) -> M:
    # Nulls fall back to model defaults (e.g. priority 100, is_active True)
    instance = model.model_validate({k: v for k, v in row.items() if v is not None})
    updates = {
        name: to_local_naive(value)
        for name, value in instance.__dict__.items()
        if isinstance(value, datetime) and value.tzinfo is not None
    }
    return instance.model_copy(update=updates) if updates else instance


def _is_slot_conflict(error: APIError) -> bool:
    # 23P01 = exclusion_violation; the SQL functions raise SLOT_UNAVAILABLE themselves
    return error.code == "23P01" or "SLOT_UNAVAILABLE" in (error.message or "")


class SupabaseStore(BookingStore):
    """
    Supabase/PostgREST backend. Reads go through table queries; the two
    writes that must not race go through Postgres functions
    (see supabase/functions.sql) so check and insert share one transaction.
    """
    _instance = None
    _client: AsyncClient = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(SupabaseStore, cls).__new__(cls)
            # Async client init is tricky in __new__ (sync), will init on first usage
        return cls._instance

    async def get_client(self) -> AsyncClient:
        if not self._client:
            if not (settings.SUPABASE_URL and settings.SUPABASE_KEY):
                logger.error("❌ Supabase credentials missing")
                raise StoreError("Supabase credentials are not configured")
            try:
                self._client = await create_async_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
                logger.info("✅ Supabase Async client initialized")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Supabase Async: {e}")
                raise StoreError("Could not connect to Supabase") from e
        return self._client

    async def _run(self, query, operation: str) -> List[Dict[str, Any]]:
        try:
            response = await query.execute()
        except APIError as e:
            logger.error(f"❌ DB Error ({operation}): {e.message}")
            raise StoreError(f"Storage failure during {operation}", {"code": e.code}) from e
        except Exception as e:
            logger.error(f"❌ DB Error ({operation}): {e}")
            raise StoreError(f"Storage failure during {operation}") from e
        return response.data or []

    async def _first(self, model: Type[M], query, operation: str) -> Optional[M]:
        rows = await self._run(query, operation)
        return _to_model(model, rows[0]) if rows else None

    async def get_business(self, business_id: str) -> Optional[Business]:
        client = await self.get_client()
        query = client.table('businesses').select("*").eq('id', business_id).limit(1)
        return await self._first(Business, query, "get_business")

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        client = await self.get_client()
        query = client.table('resources').select("*").eq('id', resource_id).limit(1)
        return await self._first(Resource, query, "get_resource")

    async def list_resources(self, business_id: str) -> List[Resource]:
        client = await self.get_client()
        rows = await self._run(
            client.table('resources').select("*").eq('business_id', business_id).eq('is_active', True),
            "list_resources",
        )
        return [_to_model(Resource, r) for r in rows]

    async def list_schedules(self, resource_id: str) -> List[WeeklyScheduleEntry]:
        client = await self.get_client()
        rows = await self._run(
            client.table('weekly_schedules').select("*").eq('resource_id', resource_id).order('day_of_week'),
            "list_schedules",
        )
        return [_to_model(WeeklyScheduleEntry, r) for r in rows]

    async def list_blackouts(self, resource_id: str, start: datetime, end: datetime) -> List[Blackout]:
        client = await self.get_client()
        rows = await self._run(
            client.table('blackout_dates')
                .select("*")
                .eq('resource_id', resource_id)
                .lt('start_datetime', end.isoformat())
                .gt('end_datetime', start.isoformat()),
            "list_blackouts",
        )
        return [_to_model(Blackout, r) for r in rows]

    async def list_recurring_blocks(self, resource_id: str) -> List[RecurringBlock]:
        client = await self.get_client()
        rows = await self._run(
            client.table('recurring_blocks').select("*").eq('resource_id', resource_id).eq('is_active', True),
            "list_recurring_blocks",
        )
        return [_to_model(RecurringBlock, r) for r in rows]

    async def get_slot_settings(self, resource_id: str) -> Optional[SlotSettings]:
        client = await self.get_client()
        query = client.table('slot_settings').select("*").eq('resource_id', resource_id).limit(1)
        return await self._first(SlotSettings, query, "get_slot_settings")

    async def list_active_bookings(self, resource_id: str, start: datetime, end: datetime) -> List[Booking]:
        client = await self.get_client()
        rows = await self._run(
            client.table('bookings')
                .select("*")
                .eq('resource_id', resource_id)
                .in_('status', list(BLOCKING_BOOKING_STATUSES))
                .lt('start_datetime', end.isoformat())
                .gt('end_datetime', start.isoformat())
                .order('start_datetime', desc=False),
            "list_active_bookings",
        )
        return [_to_model(Booking, r) for r in rows]

    async def list_active_holds(self, resource_id: str, start: datetime, end: datetime, now: datetime) -> List[SlotHold]:
        client = await self.get_client()
        rows = await self._run(
            client.table('slot_holds')
                .select("*")
                .eq('resource_id', resource_id)
                .eq('status', 'active')
                .gt('expires_at', now.isoformat())
                .lt('start_datetime', end.isoformat())
                .gt('end_datetime', start.isoformat()),
            "list_active_holds",
        )
        return [_to_model(SlotHold, r) for r in rows]

    async def list_pricing_rules(self, business_id: str) -> List[PricingRule]:
        client = await self.get_client()
        rows = await self._run(
            client.table('pricing_rules')
                .select("*")
                .eq('business_id', business_id)
                .order('priority', desc=False),
            "list_pricing_rules",
        )
        return [_to_model(PricingRule, r) for r in rows]

    async def _call_atomic(self, function: str, params: Dict[str, Any], conflict_message: str) -> Dict[str, Any]:
        client = await self.get_client()
        try:
            response = await client.rpc(function, params).execute()
        except APIError as e:
            if _is_slot_conflict(e):
                logger.info(f"⛔ {function} rejected: slot taken ({params.get('p_resource_id')})")
                raise SlotUnavailable(conflict_message, {"resource_id": params.get("p_resource_id")}) from e
            logger.error(f"❌ DB Error ({function}): {e.message}")
            raise StoreError(f"Storage failure during {function}", {"code": e.code}) from e
        except Exception as e:
            logger.error(f"❌ DB Error ({function}): {e}")
            raise StoreError(f"Storage failure during {function}") from e

        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise StoreError(f"{function} returned no row")
        return data

    async def reserve_booking(
        self,
        booking: Booking,
        buffer_before: int,
        buffer_after: int,
        now: datetime,
        release_hold_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Booking:
        payload = booking.model_dump(mode="json")
        row = await self._call_atomic(
            "reserve_booking",
            {
                "p_id": payload["id"],
                "p_resource_id": booking.resource_id,
                "p_start": payload["start_datetime"],
                "p_end": payload["end_datetime"],
                "p_status": booking.status,
                "p_price": payload["price"],
                "p_schedule_snapshot": payload["schedule_snapshot"],
                "p_guest_name": booking.guest_name,
                "p_guest_email": booking.guest_email,
                "p_buffer_before": buffer_before,
                "p_buffer_after": buffer_after,
                "p_now": now.isoformat(),
                "p_release_hold_id": release_hold_id,
                "p_session_id": session_id,
            },
            "That time was just taken, please choose another slot",
        )
        return _to_model(Booking, row)

    async def create_hold(self, hold: SlotHold, buffer_before: int, buffer_after: int, now: datetime) -> SlotHold:
        payload = hold.model_dump(mode="json")
        row = await self._call_atomic(
            "create_slot_hold",
            {
                "p_id": payload["id"],
                "p_resource_id": hold.resource_id,
                "p_start": payload["start_datetime"],
                "p_end": payload["end_datetime"],
                "p_expires_at": payload["expires_at"],
                "p_session_id": hold.session_id,
                "p_buffer_before": buffer_before,
                "p_buffer_after": buffer_after,
                "p_now": now.isoformat(),
            },
            "That time is no longer available to hold",
        )
        return _to_model(SlotHold, row)

    async def release_hold(self, hold_id: str) -> Optional[SlotHold]:
        client = await self.get_client()
        rows = await self._run(
            client.table('slot_holds').update({'status': 'released'}).eq('id', hold_id).eq('status', 'active'),
            "release_hold",
        )
        if rows:
            return _to_model(SlotHold, rows[0])
        # Already released/converted, or unknown
        return await self.get_hold(hold_id)

    async def get_hold(self, hold_id: str) -> Optional[SlotHold]:
        client = await self.get_client()
        query = client.table('slot_holds').select("*").eq('id', hold_id).limit(1)
        return await self._first(SlotHold, query, "get_hold")

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        client = await self.get_client()
        query = client.table('bookings').select("*").eq('id', booking_id).limit(1)
        return await self._first(Booking, query, "get_booking")

    async def cancel_booking(self, booking_id: str) -> Optional[Booking]:
        client = await self.get_client()
        rows = await self._run(
            client.table('bookings').update({'status': 'cancelled'}).eq('id', booking_id),
            "cancel_booking",
        )
        if rows:
            logger.info(f"🗑️ Booking {booking_id} cancelled in DB.")
            return _to_model(Booking, rows[0])
        return None


_store: Optional[BookingStore] = None

def build_store() -> BookingStore:
    backend = settings.STORE_BACKEND.lower()
    if backend == "supabase":
        return SupabaseStore()
    if backend == "memory":
        return MemoryStore.from_seed(load_seed_data())
    raise ConfigurationError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}'")

def get_store() -> BookingStore:
    global _store
    if _store is None:
        _store = build_store()
        logger.info(f"📦 Booking store ready ({type(_store).__name__})")
    return _store

def set_store(store: Optional[BookingStore]):
    """Swaps the process-wide store (startup wiring and tests)."""
    global _store
    _store = store
