"""Billing rule resolution and duration rounding."""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

from elderflow.exceptions import InvalidRateError
from elderflow.models import (
    BillingRuleSet, EffectiveRuleSet, RateType, RoundingMode, ServiceType, CENT
)

logger = logging.getLogger(__name__)

HOURS_QUANTUM = Decimal("0.0001")
MINUTES_PER_HOUR = Decimal(60)

# Final fallback when neither the client nor the organization sets a field
SYSTEM_DEFAULT_RULES = EffectiveRuleSet(
    hourly_rate=Decimal("150"),
    min_duration=0,
    rounding=RoundingMode.NONE
)

RulesInput = Union[BillingRuleSet, Dict[str, Any], None]


@dataclass(frozen=True)
class PricedLine:
    """Billable minutes, display quantity and amount for one activity."""

    minutes: int
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal


def _as_rule_set(rules: RulesInput) -> BillingRuleSet:
    if rules is None:
        return BillingRuleSet()
    if isinstance(rules, BillingRuleSet):
        return rules
    return BillingRuleSet.from_api_data(rules)


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


class RateResolver:
    """Resolves a client's effective billing rules and applies them to durations.

    Resolution is field by field: a client override wins over the
    organization default, which wins over the system default. A resolved
    rate that is not positive and finite is an error; there is no silent
    fallback to another rate.

    ``bill_minimum_on_zero`` controls whether the minimum billable
    duration also applies to activities of zero minutes. It is off by
    default: no activity, no bill.
    """

    def __init__(self,
                 system_default: EffectiveRuleSet = SYSTEM_DEFAULT_RULES,
                 bill_minimum_on_zero: bool = False):
        self.system_default = system_default
        self.bill_minimum_on_zero = bill_minimum_on_zero

    def resolve(self,
                org_default: RulesInput,
                client_override: RulesInput = None) -> EffectiveRuleSet:
        """Compute the effective rule set for one client."""
        org = _as_rule_set(org_default)
        override = _as_rule_set(client_override)

        hourly_rate = _first_set(override.hourly_rate, org.hourly_rate, self.system_default.hourly_rate)
        min_duration = _first_set(override.min_duration, org.min_duration, self.system_default.min_duration)
        rounding = _first_set(override.rounding, org.rounding, self.system_default.rounding)

        if not isinstance(hourly_rate, Decimal) or not hourly_rate.is_finite() or hourly_rate <= 0:
            raise InvalidRateError(
                f"Effective hourly rate must be a positive number, got {hourly_rate}",
                extra={"hourlyRate": str(hourly_rate)}
            )

        if min_duration < 0:
            raise ValueError("Minimum billable duration cannot be negative")

        effective = EffectiveRuleSet(
            hourly_rate=hourly_rate,
            min_duration=min_duration,
            rounding=rounding
        )
        logger.debug("Resolved billing rules: %s", effective.to_api_data())
        return effective

    def apply_rounding(self, duration_minutes: int, rules: EffectiveRuleSet) -> int:
        """Convert worked minutes to billable minutes.

        The minimum is enforced first, then the result is rounded up to the
        next rounding increment. Rounding never goes below the time worked.
        """
        if duration_minutes < 0:
            raise ValueError(f"Duration cannot be negative: {duration_minutes}")

        if duration_minutes == 0 and not self.bill_minimum_on_zero:
            return 0

        billable = max(duration_minutes, rules.min_duration)

        increment = rules.rounding.increment
        if increment:
            billable = math.ceil(billable / increment) * increment

        return int(math.ceil(billable))

    def billable_hours(self, duration_minutes: int, rules: EffectiveRuleSet) -> Decimal:
        """Billable duration in hours, to 4 decimal places (display quantity)."""
        minutes = self.apply_rounding(duration_minutes, rules)
        return (Decimal(minutes) / MINUTES_PER_HOUR).quantize(HOURS_QUANTUM, ROUND_HALF_UP)

    def billable_amount(self, duration_minutes: int, rules: EffectiveRuleSet) -> Decimal:
        """Amount billed for one activity, in cents.

        Priced from the exact billable minutes and rounded once, so the
        display rounding of the hours never leaks into the amount.
        """
        minutes = self.apply_rounding(duration_minutes, rules)
        return (Decimal(minutes) * rules.hourly_rate / MINUTES_PER_HOUR).quantize(CENT, ROUND_HALF_UP)

    def price_activity(self,
                       duration_minutes: int,
                       rules: EffectiveRuleSet,
                       service: Optional[ServiceType] = None) -> PricedLine:
        """Price one activity, honouring its service type.

        A flat service bills its amount once, whatever the duration. An
        hourly service with its own rate bills at that rate unless the
        client override sets one; minimum and rounding still apply.
        """
        if service is not None and service.rate_type is RateType.FLAT:
            if not service.rate_amount.is_finite() or service.rate_amount <= 0:
                raise InvalidRateError(
                    f"Flat rate for {service.name or 'service'} must be positive, got {service.rate_amount}",
                    extra={"serviceTypeId": service.id, "rateAmount": str(service.rate_amount)}
                )
            amount = service.rate_amount.quantize(CENT, ROUND_HALF_UP)
            return PricedLine(minutes=duration_minutes, quantity=Decimal("1"), unit_price=amount, amount=amount)

        minutes = self.apply_rounding(duration_minutes, rules)
        return PricedLine(
            minutes=minutes,
            quantity=self.billable_hours(duration_minutes, rules),
            unit_price=rules.hourly_rate,
            amount=self.billable_amount(duration_minutes, rules)
        )

    def rules_for_service(self,
                          org_default: RulesInput,
                          client_override: RulesInput,
                          service: ServiceType) -> EffectiveRuleSet:
        """Resolve rules for an hourly service: client, then service, then org rate."""
        org = _as_rule_set(org_default)
        override = _as_rule_set(client_override)
        if override.hourly_rate is None and service.hourly_override is not None:
            org = org.model_copy(update={"hourly_rate": service.hourly_override})
        return self.resolve(org, override)
