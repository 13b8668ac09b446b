from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

import holidays as pyholidays

from .booking import to_minutes
from .errors import ValidationError
from .models import WEEKDAY_NAMES, PricingTier, SubSelection, Zone

CENTS = Decimal("0.01")
_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


def calculate_amount(
    zone: Zone,
    duration_hours: int,
    on_date: date,
    start: str,
    selections: Sequence[SubSelection] | None = None,
    holiday_country: str | None = None,
) -> Decimal:
    """Compute the frozen total for a new reservation.

    Itemized selections are summed as ``hours * rate`` each. Otherwise the
    zone's hourly rate is multiplied by the duration and the first matching
    pricing tier, if any, scales it.
    """
    if selections:
        return _itemized_amount(selections)

    amount = zone.rate_per_hour * duration_hours
    for tier in zone.pricing_tiers:
        if tier_applies(tier, on_date, start, holiday_country):
            amount *= tier.multiplier
            break
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def _itemized_amount(selections: Sequence[SubSelection]) -> Decimal:
    total = Decimal("0")
    for selection in selections:
        if selection.hours < 1:
            raise ValidationError(f"Selection {selection.name!r} must cover at least one hour.", field="selections")
        if selection.rate_per_hour < 0:
            raise ValidationError(f"Selection {selection.name!r} has a negative rate.", field="selections")
        total += selection.rate_per_hour * selection.hours
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def tier_applies(tier: PricingTier, on_date: date, start: str, holiday_country: str | None = None) -> bool:
    conditions: list[bool] = []
    if tier.days:
        conditions.append(WEEKDAY_NAMES[on_date.weekday()] in tier.days)
    if tier.start is not None and tier.end is not None:
        booking_hour = to_minutes(start) // 60
        conditions.append(to_minutes(tier.start) // 60 <= booking_hour < to_minutes(tier.end) // 60)
    if tier.holidays:
        conditions.append(holiday_country is not None and _is_public_holiday(holiday_country, on_date))
    return bool(conditions) and all(conditions)


def _is_public_holiday(country: str, target_date: date) -> bool:
    key = (country, target_date.year)
    if key not in _HOLIDAY_CACHE:
        try:
            holiday_map = pyholidays.country_holidays(country, years=[target_date.year])
        except NotImplementedError as error:
            raise ValidationError(f"Unsupported holiday country: {country!r}", field="holiday_country") from error
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]
