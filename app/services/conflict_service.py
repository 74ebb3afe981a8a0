"""
Buffer-aware overlap checks between a candidate range and what already
occupies a resource. Everything here is pure: callers pass the bookings in.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Union

from app.models.db_models import Booking, SlotHold


class Interval(NamedTuple):
    start: datetime
    end: datetime


Occupant = Union[Booking, SlotHold, Interval]


def expand(start: datetime, end: datetime, buffer_before: int, buffer_after: int) -> Interval:
    """Widens [start, end) by the buffers (minutes) on each side."""
    return Interval(start - timedelta(minutes=buffer_before), end + timedelta(minutes=buffer_after))


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open ranges: touching ends do not overlap
    return a_start < b_end and a_end > b_start


def _occupies(item: Occupant) -> bool:
    if isinstance(item, Booking):
        return item.is_active
    if isinstance(item, SlotHold):
        # Expiry is checked by whoever loaded the holds, they know `now`
        return item.status == "active"
    return True


def _span(item: Occupant) -> Interval:
    if isinstance(item, Interval):
        return item
    return Interval(item.start_datetime, item.end_datetime)


def conflicting(
    candidate_start: datetime,
    candidate_end: datetime,
    buffer_before: int,
    buffer_after: int,
    existing: Iterable[Occupant],
) -> List[Interval]:
    """
    Returns the buffer-expanded spans of every occupant the candidate collides with.
    Both sides are expanded with the same resource settings.
    """
    cand = expand(candidate_start, candidate_end, buffer_before, buffer_after)
    hits = []
    for item in existing:
        if not _occupies(item):
            continue
        span = _span(item)
        other = expand(span.start, span.end, buffer_before, buffer_after)
        if overlaps(cand.start, cand.end, other.start, other.end):
            hits.append(other)
    return hits


def is_free(
    candidate_start: datetime,
    candidate_end: datetime,
    buffer_before: int,
    buffer_after: int,
    existing_bookings: Iterable[Occupant],
) -> bool:
    """
    True when the candidate conflicts with none of the existing bookings.
    Cancelled bookings and released/converted holds never conflict.
    """
    return not conflicting(candidate_start, candidate_end, buffer_before, buffer_after, existing_bookings)


def first_clear_start(
    candidate_start: datetime,
    candidate_end: datetime,
    buffer_before: int,
    buffer_after: int,
    existing: Iterable[Occupant],
) -> Optional[datetime]:
    """
    Earliest start that clears every occupant this candidate collides with,
    or None when the candidate is already free.

    Any start between `candidate_start` and the returned value hits the same
    occupant, so a generator may jump straight to it.
    """
    hits = conflicting(candidate_start, candidate_end, buffer_before, buffer_after, existing)
    if not hits:
        return None
    latest_end = max(hit.end for hit in hits)
    return latest_end + timedelta(minutes=buffer_before)
