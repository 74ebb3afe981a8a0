from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from app.core.errors import ConfigurationError
from app.models.db_models import Blackout, RecurringBlock
from app.services.conflict_service import Interval, expand, overlaps

ALL_DAY_END = time(23, 59, 59)


def day_bounds(target_date: date) -> Interval:
    start = datetime.combine(target_date, time.min)
    return Interval(start, start + timedelta(days=1))


def blackouts_covering(blackouts: Iterable[Blackout], target_date: date, margin_minutes: int = 0) -> List[Blackout]:
    """
    Blackouts touching `target_date`, widened by `margin_minutes` on both
    sides so buffers reaching into the neighbouring day are still seen.
    """
    bounds = day_bounds(target_date)
    lo = bounds.start - timedelta(minutes=margin_minutes)
    hi = bounds.end + timedelta(minutes=margin_minutes)
    return [b for b in blackouts if overlaps(b.start_datetime, b.end_datetime, lo, hi)]


def all_day_blackout(resource_id: str, first_day: date, last_day: Optional[date] = None, reason: Optional[str] = None) -> Blackout:
    """Builds the 00:00:00-23:59:59 blackout for one day or an inclusive span of days."""
    last_day = last_day or first_day
    return Blackout(
        resource_id=resource_id,
        start_datetime=datetime.combine(first_day, time.min),
        end_datetime=datetime.combine(last_day, ALL_DAY_END),
        reason=reason,
    )


def validate_blackout(blackout: Blackout):
    if blackout.start_datetime >= blackout.end_datetime:
        raise ConfigurationError(
            f"Blackout {blackout.id} ends before it starts",
            {"blackout_id": blackout.id},
        )


def validate_recurring_block(block: RecurringBlock):
    if not 0 <= block.day_of_week <= 6:
        raise ConfigurationError(
            f"Recurring block {block.id} has day_of_week {block.day_of_week}",
            {"block_id": block.id},
        )
    if block.start_time >= block.end_time:
        raise ConfigurationError(
            f"Recurring block {block.id} ends before it starts",
            {"block_id": block.id},
        )


class ExceptionResolver:
    """
    Answers "is this candidate blocked?" for a single date.

    Blackouts are absolute ranges; recurring blocks are materialised on
    `target_date` when they are active and fall on its weekday. A blackout's
    end_datetime is the last blocked instant, so a candidate starting exactly
    there is free.
    """

    def __init__(
        self,
        target_date: date,
        blackouts: Iterable[Blackout] = (),
        recurring_blocks: Iterable[RecurringBlock] = (),
        buffer_before: int = 0,
        buffer_after: int = 0,
    ):
        self.target_date = target_date
        self.buffer_before = buffer_before
        self.buffer_after = buffer_after

        blackouts = list(blackouts)
        for blackout in blackouts:
            validate_blackout(blackout)

        self.windows: List[Interval] = [
            Interval(b.start_datetime, b.end_datetime)
            for b in blackouts_covering(blackouts, target_date, buffer_before + buffer_after)
        ]

        weekday = target_date.weekday()
        for block in recurring_blocks:
            if not block.is_active or block.day_of_week != weekday:
                continue
            # Only rows that apply today are validated
            validate_recurring_block(block)
            self.windows.append(Interval(
                datetime.combine(target_date, block.start_time),
                datetime.combine(target_date, block.end_time),
            ))

    def is_blocked(self, candidate_start: datetime, candidate_end: datetime) -> bool:
        cand = expand(candidate_start, candidate_end, self.buffer_before, self.buffer_after)
        return any(overlaps(cand.start, cand.end, w.start, w.end) for w in self.windows)
