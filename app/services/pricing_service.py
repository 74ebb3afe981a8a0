"""
Price resolution: every active, in-window, in-scope rule is applied to the
running price in ascending priority order (compounding, not single winner).
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel

from app.core.clock import to_local_naive
from app.core.errors import ConfigurationError, ValidationError
from app.models.db_models import PricingRule

MODIFIER_TYPES = ("percentage", "fixed_amount")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


class PriceScope(BaseModel):
    business_id: str
    bookable_type_id: Optional[str] = None
    package_id: Optional[str] = None


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(value))


def round_price(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_rule(rule: PricingRule):
    if rule.modifier_type not in MODIFIER_TYPES:
        raise ConfigurationError(
            f"Pricing rule {rule.id} has unknown modifier_type '{rule.modifier_type}'",
            {"rule_id": rule.id, "modifier_type": rule.modifier_type},
        )


def rule_applies(rule: PricingRule, scope: PriceScope, at: datetime) -> bool:
    if not rule.is_active or rule.business_id != scope.business_id:
        return False

    valid_from = to_local_naive(rule.valid_from)
    valid_until = to_local_naive(rule.valid_until)
    if valid_from is not None and at < valid_from:
        return False
    if valid_until is not None and at > valid_until:
        return False

    # Null scope fields match anything
    if rule.bookable_type_id is not None and rule.bookable_type_id != scope.bookable_type_id:
        return False
    if rule.package_id is not None and rule.package_id != scope.package_id:
        return False
    return True


def applicable_rules(rules: Iterable[PricingRule], scope: PriceScope, at: datetime) -> List[PricingRule]:
    """Matching rules, lowest priority value first. sorted() is stable so ties keep input order."""
    matching = [r for r in rules if rule_applies(r, scope, at)]
    return sorted(matching, key=lambda r: r.priority)


def apply_modifier(price: Decimal, rule: PricingRule) -> Decimal:
    value = to_decimal(rule.modifier_value)
    if rule.modifier_type == "percentage":
        return price * (1 + value / HUNDRED)
    if rule.modifier_type == "fixed_amount":
        return price + value
    raise ConfigurationError(
        f"Pricing rule {rule.id} has unknown modifier_type '{rule.modifier_type}'",
        {"rule_id": rule.id, "modifier_type": rule.modifier_type},
    )


def resolve_price(
    base_price: Number,
    candidate_rules: Iterable[PricingRule],
    scope: PriceScope,
    at: datetime,
) -> Decimal:
    """
    Folds the applicable rules over `base_price`.

    Rounded once at the end (2 places, half-up) and clamped at zero.
    Any candidate rule with an unknown modifier type fails the whole call.
    """
    base = to_decimal(base_price)
    if base < 0:
        raise ValidationError("Base price cannot be negative", {"base_price": str(base)})

    candidate_rules = list(candidate_rules)
    for rule in candidate_rules:
        validate_rule(rule)

    at = to_local_naive(at)
    price = base
    for rule in applicable_rules(candidate_rules, scope, at):
        price = apply_modifier(price, rule)

    final = round_price(price)
    return max(final, Decimal("0.00"))
