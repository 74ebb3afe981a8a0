from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from app.core.config import settings as app_settings
from app.core.errors import ConfigurationError, ValidationError
from app.models.db_models import (
    Blackout,
    RecurringBlock,
    SlotSettings,
    WeeklyScheduleEntry,
)
from app.services.conflict_service import Occupant, first_clear_start
from app.services.exception_service import ExceptionResolver


class SlotWindow(NamedTuple):
    start_time: datetime
    end_time: datetime


def effective_settings(resource_id: str, row: Optional[SlotSettings]) -> SlotSettings:
    """
    Returns the resource's settings row, or the configured defaults when it has none.
    """
    if row is not None:
        return row
    return SlotSettings(
        resource_id=resource_id,
        slot_increment_minutes=app_settings.DEFAULT_SLOT_INCREMENT_MINUTES,
        buffer_before_minutes=app_settings.DEFAULT_BUFFER_BEFORE_MINUTES,
        buffer_after_minutes=app_settings.DEFAULT_BUFFER_AFTER_MINUTES,
        min_advance_hours=app_settings.DEFAULT_MIN_ADVANCE_HOURS,
        max_advance_days=app_settings.DEFAULT_MAX_ADVANCE_DAYS,
    )


def validate_settings(slot_settings: SlotSettings):
    if slot_settings.slot_increment_minutes <= 0:
        raise ConfigurationError(
            f"slot_increment_minutes must be positive for resource {slot_settings.resource_id}",
            {"resource_id": slot_settings.resource_id, "slot_increment_minutes": slot_settings.slot_increment_minutes},
        )
    for field in ("buffer_before_minutes", "buffer_after_minutes", "min_advance_hours", "max_advance_days"):
        if getattr(slot_settings, field) < 0:
            raise ConfigurationError(
                f"{field} cannot be negative for resource {slot_settings.resource_id}",
                {"resource_id": slot_settings.resource_id, field: getattr(slot_settings, field)},
            )


def validate_schedule(entry: WeeklyScheduleEntry):
    if not 0 <= entry.day_of_week <= 6:
        raise ConfigurationError(
            f"Schedule row for resource {entry.resource_id} has day_of_week {entry.day_of_week}",
            {"resource_id": entry.resource_id},
        )
    # Overnight rows (close past midnight) are not supported
    if entry.is_active and entry.start_time >= entry.end_time:
        raise ConfigurationError(
            f"Schedule row for resource {entry.resource_id} opens at {entry.start_time} "
            f"but closes at {entry.end_time}",
            {"resource_id": entry.resource_id, "day_of_week": entry.day_of_week},
        )


def schedule_for(schedules: Iterable[WeeklyScheduleEntry], target_date: date) -> Optional[WeeklyScheduleEntry]:
    weekday = target_date.weekday()
    for entry in schedules:
        validate_schedule(entry)
        if entry.day_of_week == weekday:
            return entry
    return None


def advance_window(slot_settings: SlotSettings, now: datetime) -> SlotWindow:
    """Earliest and latest bookable start, both inclusive."""
    return SlotWindow(
        now + timedelta(hours=slot_settings.min_advance_hours),
        now + timedelta(days=slot_settings.max_advance_days),
    )


def generate_slots(
    target_date: date,
    schedules: Iterable[WeeklyScheduleEntry],
    slot_settings: SlotSettings,
    duration_minutes: int,
    now: datetime,
    blackouts: Iterable[Blackout] = (),
    recurring_blocks: Iterable[RecurringBlock] = (),
    occupied: Iterable[Occupant] = (),
) -> List[SlotWindow]:
    """
    Candidate slots for one resource on `target_date`, ascending by start.

    `occupied` holds the resource's live bookings and holds. The displayed
    window is the bare service duration; buffers only widen the range used
    for blackout, block and occupancy checks. When a candidate collides with
    an occupant the scan resumes at the first start that clears it.
    """
    if duration_minutes <= 0:
        raise ValidationError("Service duration must be positive", {"duration": duration_minutes})
    validate_settings(slot_settings)

    # 1. Weekly schedule
    entry = schedule_for(schedules, target_date)
    if entry is None or not entry.is_active:
        return []

    bb = slot_settings.buffer_before_minutes
    ba = slot_settings.buffer_after_minutes
    exceptions = ExceptionResolver(target_date, blackouts, recurring_blocks, bb, ba)
    earliest, latest = advance_window(slot_settings, now)
    occupied = list(occupied)

    step = timedelta(minutes=slot_settings.slot_increment_minutes)
    duration = timedelta(minutes=duration_minutes)
    close = datetime.combine(target_date, entry.end_time)

    slots = []
    current = datetime.combine(target_date, entry.start_time)

    # 2. Step through the open window
    while current + duration <= close:
        slot_end = current + duration

        # 6. Past the booking horizon, so is everything after it
        if current > latest:
            break

        # 4-5. Blackouts, recurring blocks, minimum notice
        if current < earliest or exceptions.is_blocked(current, slot_end):
            current += step
            continue

        # 7. Live bookings and holds
        clear_at = first_clear_start(current, slot_end, bb, ba, occupied)
        if clear_at is not None:
            current = max(current + step, clear_at)
            continue

        slots.append(SlotWindow(current, slot_end))
        current += step

    return slots


def schedule_snapshot(
    entry: Optional[WeeklyScheduleEntry],
    slot_settings: SlotSettings,
    recurring_blocks: Iterable[RecurringBlock] = (),
) -> Dict[str, Any]:
    """
    JSON-ready copy of the rows a booking was validated against, stored on
    the booking so later admin edits stay explainable.
    """
    return {
        "schedule": entry.model_dump(mode="json") if entry else None,
        "settings": slot_settings.model_dump(mode="json"),
        "recurring_blocks": [b.model_dump(mode="json") for b in recurring_blocks if b.is_active],
    }
