from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Tuple

from app.core.clock import local_now, to_local_naive
from app.core.config import settings
from app.core.errors import NotFoundError, PriceChanged, SlotUnavailable, ValidationError
from app.core.logger import logger
from app.models.api_models import AvailableSlot
from app.models.db_models import (
    Blackout,
    Booking,
    PricingRule,
    RecurringBlock,
    Resource,
    SlotHold,
    SlotSettings,
    WeeklyScheduleEntry,
)
from app.services.conflict_service import Occupant
from app.services.db_service import BookingStore, get_store
from app.services.exception_service import day_bounds
from app.services.pricing_service import PriceScope, resolve_price, round_price
from app.services.slot_service import (
    SlotWindow,
    advance_window,
    effective_settings,
    generate_slots,
    schedule_for,
    schedule_snapshot,
    validate_settings,
)


class DayContext(NamedTuple):
    """Everything read from the store to resolve one resource on one date."""
    schedules: List[WeeklyScheduleEntry]
    settings: SlotSettings
    blackouts: List[Blackout]
    recurring_blocks: List[RecurringBlock]
    occupants: List[Occupant]


class BookingService:
    def __init__(self, store: Optional[BookingStore] = None):
        self._store = store

    @property
    def store(self) -> BookingStore:
        # Resolved lazily so routers can build the service at import time
        return self._store or get_store()

    # --- Input checks (no store access) ---

    def _duration(self, duration: Optional[int]) -> int:
        if duration is None:
            return settings.DEFAULT_SERVICE_DURATION_MINUTES
        if duration <= 0:
            raise ValidationError("Duration must be a positive number of minutes", {"duration": duration})
        return duration

    def _check_party_size(self, party_size: Optional[int]):
        if party_size is not None and party_size <= 0:
            raise ValidationError("Party size must be positive", {"party_size": party_size})

    def _check_not_past(self, target_date: date, now: datetime):
        if target_date < now.date():
            raise ValidationError(
                f"{target_date.isoformat()} is in the past",
                {"date": target_date.isoformat()},
            )

    def _within_horizon(self, target_date: date, slot_settings: SlotSettings, now: datetime) -> bool:
        return target_date <= advance_window(slot_settings, now).end_time.date()

    # --- Store reads ---

    async def _load_day(
        self,
        resource: Resource,
        target_date: date,
        now: datetime,
        skip_hold_id: Optional[str] = None,
    ) -> DayContext:
        slot_settings = effective_settings(resource.id, await self.store.get_slot_settings(resource.id))
        validate_settings(slot_settings)

        # Buffers can reach into the neighbouring days
        margin = timedelta(minutes=slot_settings.buffer_before_minutes + slot_settings.buffer_after_minutes)
        bounds = day_bounds(target_date)
        start, end = bounds.start - margin, bounds.end + margin

        schedules = await self.store.list_schedules(resource.id)
        blackouts = await self.store.list_blackouts(resource.id, start, end)
        blocks = await self.store.list_recurring_blocks(resource.id)
        bookings = await self.store.list_active_bookings(resource.id, start, end)
        holds = await self.store.list_active_holds(resource.id, start, end, now)

        occupants: List[Occupant] = list(bookings)
        occupants.extend(h for h in holds if h.id != skip_hold_id)
        return DayContext(schedules, slot_settings, blackouts, blocks, occupants)

    async def _resolve_resources(self, resource_or_business_id: str) -> Tuple[List[Resource], bool]:
        """
        Returns (resources, single) where `single` is True for a resource id.
        Unknown ids give an empty list; availability treats that as "no slots".
        """
        resource = await self.store.get_resource(resource_or_business_id)
        if resource is not None:
            return ([resource] if resource.is_active else []), True

        business = await self.store.get_business(resource_or_business_id)
        if business is not None and business.is_active:
            return await self.store.list_resources(business.id), False

        logger.warning(f"⚠️ Availability requested for unknown id '{resource_or_business_id}'")
        return [], False

    async def _get_resource(self, resource_id: str) -> Resource:
        resource = await self.store.get_resource(resource_id)
        if resource is None or not resource.is_active:
            raise NotFoundError(f"Resource {resource_id} not found", {"resource_id": resource_id})
        return resource

    # --- Availability ---

    async def availability(
        self,
        resource_or_business_id: str,
        target_date: date,
        duration: Optional[int] = None,
        party_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[AvailableSlot]:
        """
        Bookable slots for a resource, or for every active resource of a business.
        Each slot carries the resource's price as resolved right now.
        """
        now = to_local_naive(now) or local_now()
        duration = self._duration(duration)
        self._check_party_size(party_size)
        self._check_not_past(target_date, now)
        return await self._availability(resource_or_business_id, target_date, duration, party_size, now, strict=True)

    async def _availability(
        self,
        resource_or_business_id: str,
        target_date: date,
        duration: int,
        party_size: Optional[int],
        now: datetime,
        strict: bool,
    ) -> List[AvailableSlot]:
        resources, single = await self._resolve_resources(resource_or_business_id)
        rules_by_business: Dict[str, List[PricingRule]] = {}
        result: List[AvailableSlot] = []

        for resource in resources:
            # Missing capacity never satisfies an explicit party size
            if party_size is not None and (resource.capacity or 0) < party_size:
                continue

            windows = await self._resource_slots(resource, target_date, duration, now, strict=strict and single)
            if not windows:
                continue

            if resource.business_id not in rules_by_business:
                rules_by_business[resource.business_id] = await self.store.list_pricing_rules(resource.business_id)
            price = resolve_price(
                resource.base_price,
                rules_by_business[resource.business_id],
                PriceScope(
                    business_id=resource.business_id,
                    bookable_type_id=resource.bookable_type_id,
                    package_id=resource.package_id,
                ),
                now,
            )

            result.extend(
                AvailableSlot(
                    start_time=w.start_time,
                    end_time=w.end_time,
                    resource_id=resource.id,
                    resource_name=resource.name,
                    base_price=price,
                )
                for w in windows
            )

        result.sort(key=lambda s: (s.start_time, s.resource_name))
        return result

    async def _resource_slots(
        self,
        resource: Resource,
        target_date: date,
        duration: int,
        now: datetime,
        strict: bool,
        skip_hold_id: Optional[str] = None,
    ) -> List[SlotWindow]:
        ctx = await self._load_day(resource, target_date, now, skip_hold_id=skip_hold_id)
        if not self._within_horizon(target_date, ctx.settings, now):
            if strict:
                raise ValidationError(
                    f"{target_date.isoformat()} is beyond the {ctx.settings.max_advance_days}-day booking window",
                    {"date": target_date.isoformat(), "max_advance_days": ctx.settings.max_advance_days},
                )
            return []

        return generate_slots(
            target_date,
            ctx.schedules,
            ctx.settings,
            duration,
            now,
            blackouts=ctx.blackouts,
            recurring_blocks=ctx.recurring_blocks,
            occupied=ctx.occupants,
        )

    async def find_soonest(
        self,
        resource_or_business_id: str,
        from_date: Optional[date] = None,
        duration: Optional[int] = None,
        party_size: Optional[int] = None,
        now: Optional[datetime] = None,
        max_days: Optional[int] = None,
    ) -> Tuple[Optional[date], List[AvailableSlot]]:
        """
        Walks forward one day at a time until a day has slots.
        Gives up after `max_days` attempts (FIND_SOONEST_MAX_DAYS by default).
        Returns: (date, slots) or (None, []) when nothing was found.
        """
        now = to_local_naive(now) or local_now()
        duration = self._duration(duration)
        self._check_party_size(party_size)
        max_days = settings.FIND_SOONEST_MAX_DAYS if max_days is None else max_days
        if max_days < 0:
            raise ValidationError("max_days cannot be negative", {"max_days": max_days})

        day = max(from_date or now.date(), now.date())
        for _ in range(max_days):
            slots = await self._availability(resource_or_business_id, day, duration, party_size, now, strict=False)
            if slots:
                logger.info(f"🔎 Soonest opening for {resource_or_business_id}: {day.isoformat()} ({len(slots)} slots)")
                return day, slots
            day += timedelta(days=1)

        logger.info(f"🔎 No opening for {resource_or_business_id} within {max_days} days")
        return None, []

    # --- Pricing ---

    async def quote_price(
        self,
        base_price: Decimal,
        business_id: str,
        bookable_type_id: Optional[str] = None,
        package_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Decimal:
        business = await self.store.get_business(business_id)
        if business is None or not business.is_active:
            raise NotFoundError(f"Business {business_id} not found", {"business_id": business_id})

        rules = await self.store.list_pricing_rules(business_id)
        scope = PriceScope(business_id=business_id, bookable_type_id=bookable_type_id, package_id=package_id)
        return resolve_price(base_price, rules, scope, at or local_now())

    # --- Checkout ---

    async def _require_slot(
        self,
        resource: Resource,
        start_time: datetime,
        duration: int,
        now: datetime,
        hold_id: Optional[str] = None,
    ) -> DayContext:
        """
        Re-runs slot generation for the day and insists `start_time` is one of
        its starts. The atomic write after this remains the real guard.
        """
        target_date = start_time.date()
        self._check_not_past(target_date, now)

        ctx = await self._load_day(resource, target_date, now, skip_hold_id=hold_id)
        if not self._within_horizon(target_date, ctx.settings, now):
            raise ValidationError(
                f"{target_date.isoformat()} is beyond the {ctx.settings.max_advance_days}-day booking window",
                {"date": target_date.isoformat()},
            )

        windows = generate_slots(
            target_date,
            ctx.schedules,
            ctx.settings,
            duration,
            now,
            blackouts=ctx.blackouts,
            recurring_blocks=ctx.recurring_blocks,
            occupied=ctx.occupants,
        )
        if start_time not in {w.start_time for w in windows}:
            raise SlotUnavailable(
                "The selected time is not available, please choose another slot",
                {"resource_id": resource.id, "start_time": start_time.isoformat()},
            )
        return ctx

    async def _require_own_hold(
        self,
        hold_id: str,
        resource: Resource,
        start_time: datetime,
        duration: int,
        session_id: Optional[str],
        now: datetime,
    ):
        hold = await self.store.get_hold(hold_id)
        end_time = start_time + timedelta(minutes=duration)
        if hold is None or not hold.belongs_to(resource.id, start_time, end_time, now, session_id):
            logger.warning(f"⚠️ Hold {hold_id} does not cover {resource.name} {start_time.isoformat()}")
            raise SlotUnavailable(
                "That hold does not cover the selected time",
                {"resource_id": resource.id, "hold_id": hold_id},
            )

    async def checkout(
        self,
        resource_id: str,
        start_time: datetime,
        duration: Optional[int] = None,
        quoted_price: Optional[Decimal] = None,
        package_id: Optional[str] = None,
        hold_id: Optional[str] = None,
        session_id: Optional[str] = None,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Re-prices and reserves a slot.

        The price is resolved again at checkout time; if it no longer matches
        `quoted_price` the guest has to confirm the new amount (PriceChanged).
        The reservation itself is a single atomic store operation. A `hold_id`
        must name a live hold on exactly this slot, owned by `session_id`.
        """
        now = to_local_naive(now) or local_now()
        start_time = to_local_naive(start_time)
        duration = self._duration(duration)

        # 1. Resource and slot validity
        resource = await self._get_resource(resource_id)
        if hold_id is not None:
            await self._require_own_hold(hold_id, resource, start_time, duration, session_id, now)
        ctx = await self._require_slot(resource, start_time, duration, now, hold_id=hold_id)

        # 2. Price at checkout time
        rules = await self.store.list_pricing_rules(resource.business_id)
        scope = PriceScope(
            business_id=resource.business_id,
            bookable_type_id=resource.bookable_type_id,
            package_id=package_id or resource.package_id,
        )
        price = resolve_price(resource.base_price, rules, scope, now)
        if quoted_price is not None and round_price(quoted_price) != price:
            logger.info(f"💲 Price for {resource_id} moved from {quoted_price} to {price}, asking guest to confirm")
            raise PriceChanged(round_price(quoted_price), price)

        # 3. Atomic reserve, freezing price and schedule
        weekday = start_time.weekday()
        booking = Booking(
            resource_id=resource.id,
            start_datetime=start_time,
            end_datetime=start_time + timedelta(minutes=duration),
            status="pending",
            price=price,
            schedule_snapshot=schedule_snapshot(
                schedule_for(ctx.schedules, start_time.date()),
                ctx.settings,
                [b for b in ctx.recurring_blocks if b.day_of_week == weekday],
            ),
            guest_name=guest_name,
            guest_email=guest_email,
            created_at=now,
        )

        logger.info(f"📥 Reserving {resource.name} {start_time.isoformat()} ({duration} min) at {price}")
        booking = await self.store.reserve_booking(
            booking,
            ctx.settings.buffer_before_minutes,
            ctx.settings.buffer_after_minutes,
            now,
            release_hold_id=hold_id,
            session_id=session_id,
        )
        logger.info(f"✅ Booking {booking.id} created for {resource.name}")
        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        booking = await self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found", {"booking_id": booking_id})
        return booking

    async def cancel_booking(self, booking_id: str) -> Booking:
        """Cancels a booking. The slot is free again on the next availability call."""
        booking = await self.store.cancel_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found", {"booking_id": booking_id})
        logger.info(f"🗑️ Booking {booking_id} cancelled")
        return booking

    # --- Slot holds ---

    async def hold_slot(
        self,
        resource_id: str,
        start_time: datetime,
        duration: Optional[int] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SlotHold:
        now = to_local_naive(now) or local_now()
        start_time = to_local_naive(start_time)
        duration = self._duration(duration)

        resource = await self._get_resource(resource_id)
        ctx = await self._require_slot(resource, start_time, duration, now)

        hold = SlotHold(
            resource_id=resource.id,
            start_datetime=start_time,
            end_datetime=start_time + timedelta(minutes=duration),
            expires_at=now + timedelta(minutes=settings.SLOT_HOLD_MINUTES),
            session_id=session_id,
        )
        hold = await self.store.create_hold(
            hold,
            ctx.settings.buffer_before_minutes,
            ctx.settings.buffer_after_minutes,
            now,
        )
        logger.info(f"⏳ Hold {hold.id} on {resource.name} {start_time.isoformat()} until {hold.expires_at.isoformat()}")
        return hold

    async def release_hold(self, hold_id: str) -> SlotHold:
        hold = await self.store.release_hold(hold_id)
        if hold is None:
            raise NotFoundError(f"Hold {hold_id} not found", {"hold_id": hold_id})
        logger.info(f"🔓 Hold {hold_id} released")
        return hold
