from datetime import date, datetime, time

import pytest

from app.core.errors import ConfigurationError
from app.models.db_models import Blackout, RecurringBlock
from app.services.exception_service import (
    ExceptionResolver,
    all_day_blackout,
    blackouts_covering,
)

MONDAY = date(2030, 1, 7)


def at(hour, minute=0, day=MONDAY):
    return datetime.combine(day, time(hour, minute))


def test_all_day_blackout_blocks_whole_day():
    blackout = all_day_blackout("room-1", MONDAY, reason="Holiday")
    assert blackout.start_datetime == at(0)
    assert blackout.end_datetime == datetime(2030, 1, 7, 23, 59, 59)

    resolver = ExceptionResolver(MONDAY, [blackout])
    assert resolver.is_blocked(at(9), at(10))
    assert resolver.is_blocked(at(16), at(17))


def test_candidate_starting_at_blackout_end_is_free():
    blackout = Blackout(resource_id="room-1", start_datetime=at(0), end_datetime=at(12))
    resolver = ExceptionResolver(MONDAY, [blackout], buffer_after=15)
    assert resolver.is_blocked(at(11), at(12))
    assert not resolver.is_blocked(at(12), at(13))


def test_buffers_widen_the_candidate():
    blackout = Blackout(resource_id="room-1", start_datetime=at(14), end_datetime=at(15))
    assert ExceptionResolver(MONDAY, [blackout], buffer_after=15).is_blocked(at(13), at(13, 50))
    assert not ExceptionResolver(MONDAY, [blackout]).is_blocked(at(13), at(13, 50))


def test_multi_day_blackout_spans_dates():
    blackout = all_day_blackout("room-1", date(2030, 1, 5), date(2030, 1, 8))
    assert blackouts_covering([blackout], MONDAY) == [blackout]
    assert blackouts_covering([blackout], date(2030, 1, 9)) == []


def test_recurring_block_only_on_its_weekday():
    lunch = RecurringBlock(resource_id="room-1", day_of_week=0, start_time=time(12), end_time=time(13))
    assert ExceptionResolver(MONDAY, recurring_blocks=[lunch]).is_blocked(at(12, 30), at(13, 30))

    tuesday = date(2030, 1, 8)
    assert not ExceptionResolver(tuesday, recurring_blocks=[lunch]).is_blocked(at(12, 30, tuesday), at(13, 30, tuesday))


def test_inactive_recurring_block_is_ignored():
    lunch = RecurringBlock(resource_id="room-1", day_of_week=0, start_time=time(12), end_time=time(13), is_active=False)
    assert not ExceptionResolver(MONDAY, recurring_blocks=[lunch]).is_blocked(at(12), at(13))


def test_malformed_rows_fail_fast():
    backwards = RecurringBlock(resource_id="room-1", day_of_week=0, start_time=time(13), end_time=time(12))
    with pytest.raises(ConfigurationError):
        ExceptionResolver(MONDAY, recurring_blocks=[backwards])

    reversed_blackout = Blackout(resource_id="room-1", start_datetime=at(12), end_datetime=at(11))
    with pytest.raises(ConfigurationError):
        ExceptionResolver(MONDAY, [reversed_blackout])


def test_malformed_blocks_that_do_not_apply_are_skipped():
    tuesday_only = RecurringBlock(resource_id="room-1", day_of_week=1, start_time=time(13), end_time=time(12))
    switched_off = RecurringBlock(
        resource_id="room-1", day_of_week=0, start_time=time(13), end_time=time(12), is_active=False
    )
    resolver = ExceptionResolver(MONDAY, recurring_blocks=[tuesday_only, switched_off])
    assert resolver.is_blocked(at(12), at(13)) is False

    with pytest.raises(ConfigurationError):
        ExceptionResolver(date(2030, 1, 8), recurring_blocks=[tuesday_only])
