"""Severity classification against a site's flood threshold ladder."""
from dataclasses import replace
from typing import Iterable, List, Optional

from .models import Category, Event, Thresholds


def classify(value: float, thresholds: Thresholds) -> Category:
    """
    Map a water level to a flood category.

    The ladder is evaluated top-down so the highest threshold reached wins.
    NaN compares false everywhere and falls through to NONE.
    """
    if value >= thresholds.major:
        return Category.MAJOR
    if value >= thresholds.moderate:
        return Category.MODERATE
    if value >= thresholds.minor:
        return Category.MINOR
    return Category.NONE


def classify_events(
    events: Iterable[Event],
    thresholds: Thresholds,
    min_category: Optional[Category] = None,
    digits: int = 3,
) -> List[Event]:
    """
    Attach categories to a batch of events.

    Classification uses the full-precision value; the stored value is then
    rounded to `digits` decimals.

    Args:
        events: Events as emitted by a detector (category not yet set)
        thresholds: Validated thresholds for the site
        min_category: If given, drop events classified below this category
        digits: Decimal places kept in the stored value

    Returns:
        New Event objects with `category` filled in, in input order
    """
    out = []
    for event in events:
        category = classify(event.value, thresholds)
        if min_category is not None and category.rank < min_category.rank:
            continue
        out.append(replace(event, category=category, value=round(event.value, digits)))
    return out
