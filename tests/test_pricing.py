from datetime import datetime
from decimal import Decimal

import pytest

from app.core.errors import ConfigurationError, ValidationError
from app.models.db_models import PricingRule
from app.services.pricing_service import (
    PriceScope,
    applicable_rules,
    resolve_price,
    round_price,
    rule_applies,
)

AT = datetime(2030, 1, 7, 10, 0)
SCOPE = PriceScope(business_id="biz-1", bookable_type_id="bt-massage")


def rule(modifier_type="percentage", value="10", priority=100, **kwargs):
    return PricingRule(
        business_id=kwargs.pop("business_id", "biz-1"),
        modifier_type=modifier_type,
        modifier_value=Decimal(value),
        priority=priority,
        **kwargs,
    )


def test_no_rules_returns_rounded_base():
    assert resolve_price(Decimal("99.999"), [], SCOPE, AT) == Decimal("100.00")
    assert resolve_price(80, [], SCOPE, AT) == Decimal("80.00")


def test_rules_compound_in_priority_order():
    rules = [
        rule("fixed_amount", "5", priority=20),
        rule("percentage", "10", priority=10),
    ]
    # 100 * 1.10 + 5
    assert resolve_price(Decimal("100.00"), rules, SCOPE, AT) == Decimal("115.00")


def test_swapping_priorities_changes_the_result():
    rules = [
        rule("fixed_amount", "5", priority=10),
        rule("percentage", "10", priority=20),
    ]
    # (100 + 5) * 1.10
    assert resolve_price(Decimal("100.00"), rules, SCOPE, AT) == Decimal("115.50")


def test_equal_priorities_keep_input_order():
    first = rule("fixed_amount", "5", priority=50, name="first")
    second = rule("percentage", "10", priority=50, name="second")
    assert [r.name for r in applicable_rules([first, second], SCOPE, AT)] == ["first", "second"]
    assert resolve_price(Decimal("100"), [first, second], SCOPE, AT) == Decimal("115.50")


def test_validity_window_is_inclusive():
    window = rule(valid_from=datetime(2030, 1, 1), valid_until=AT)
    assert rule_applies(window, SCOPE, AT)
    assert rule_applies(window, SCOPE, datetime(2030, 1, 1))
    assert not rule_applies(window, SCOPE, datetime(2030, 1, 7, 10, 1))
    assert not rule_applies(window, SCOPE, datetime(2029, 12, 31, 23, 59))


def test_expired_rule_is_ignored():
    expired = rule("percentage", "50", valid_until=datetime(2029, 12, 31))
    assert resolve_price(Decimal("100"), [expired], SCOPE, AT) == Decimal("100.00")


def test_inactive_rule_is_ignored():
    off = rule("percentage", "50", is_active=False)
    assert resolve_price(Decimal("100"), [off], SCOPE, AT) == Decimal("100.00")


def test_other_business_rule_is_ignored():
    other = rule("percentage", "50", business_id="biz-2")
    assert resolve_price(Decimal("100"), [other], SCOPE, AT) == Decimal("100.00")


def test_scope_fields_must_match_when_set():
    couples_only = rule("fixed_amount", "20", bookable_type_id="bt-couples")
    package_only = rule("fixed_amount", "7", package_id="pkg-gold")
    everyone = rule("fixed_amount", "1")

    rules = [couples_only, package_only, everyone]
    assert resolve_price(Decimal("100"), rules, SCOPE, AT) == Decimal("101.00")

    gold = PriceScope(business_id="biz-1", bookable_type_id="bt-massage", package_id="pkg-gold")
    assert resolve_price(Decimal("100"), rules, gold, AT) == Decimal("108.00")


def test_discounts_never_go_below_zero():
    rules = [rule("fixed_amount", "-150")]
    assert resolve_price(Decimal("100"), rules, SCOPE, AT) == Decimal("0.00")


def test_percentage_discount():
    rules = [rule("percentage", "-20")]
    assert resolve_price(Decimal("120"), rules, SCOPE, AT) == Decimal("96.00")


def test_unknown_modifier_type_fails_even_when_out_of_scope():
    broken = rule("multiplier", "2", bookable_type_id="bt-couples")
    with pytest.raises(ConfigurationError):
        resolve_price(Decimal("100"), [broken], SCOPE, AT)


def test_negative_base_price_is_rejected():
    with pytest.raises(ValidationError):
        resolve_price(Decimal("-1"), [], SCOPE, AT)


def test_rounds_half_up_once_at_the_end():
    assert round_price("2.675") == Decimal("2.68")
    assert round_price("2.665") == Decimal("2.67")
    # 10.004 + 0.001 is only rounded after both rules
    rules = [rule("percentage", "0"), rule("fixed_amount", "0.001")]
    assert resolve_price(Decimal("10.004"), rules, SCOPE, AT) == Decimal("10.01")


def test_float_base_price_is_read_as_its_decimal_text():
    assert resolve_price(0.1, [rule("fixed_amount", "0.2")], SCOPE, AT) == Decimal("0.30")
