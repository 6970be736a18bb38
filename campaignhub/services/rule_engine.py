"""
Segment rule compiler - turns an ordered list of rules into a SQLAlchemy
boolean clause over Customer, usable directly in select(...).where(...).

Grouping: rules accumulate into an AND-group. A rule whose logic is OR closes
the group it ends, and the next rule opens a new one. One group is returned
as-is; several groups are OR-ed together. A single rule is returned bare.

Malformed values raise ValidationError rather than reaching the database.
"""
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Union

from sqlalchemy import ColumnElement, String, and_, cast, or_, true

from campaignhub.models.customer import Customer
from campaignhub.schemas.segments import Rule
from campaignhub.utils.errors import ValidationError

logger = logging.getLogger(__name__)

DATE_FIELDS = frozenset({"last_order_date", "registration_date"})
NUMERIC_FIELDS = frozenset({"total_spent", "total_orders"})


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_date(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return _to_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError, OverflowError, OSError):
        raise ValidationError(f"Invalid date value {value!r} for {field}")


def _parse_number(value: Any, field: str) -> Union[int, float]:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid numeric value {value!r} for {field}")
    try:
        number = float(value)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid numeric value {value!r} for {field}")
    if not math.isfinite(number):
        raise ValidationError(f"Invalid numeric value {value!r} for {field}")
    if isinstance(value, str):
        return int(number) if number.is_integer() and "." not in value else number
    return value


def parse_value(value: Any, field: str) -> Any:
    """
    Coerce a rule value to the column's type: dates for date fields,
    numbers for numeric fields, text for everything else.
    """
    if field in DATE_FIELDS:
        return _parse_date(value, field)
    if field in NUMERIC_FIELDS:
        return _parse_number(value, field)
    return value if isinstance(value, str) else str(value)


def _as_text(column, field: str):
    return column if field not in DATE_FIELDS | NUMERIC_FIELDS else cast(column, String)


def build_condition(rule: Rule, now: Optional[datetime] = None) -> ColumnElement[bool]:
    """Compile one rule. Unknown operators compile to true() (match all)."""
    column = getattr(Customer, rule.field)
    op = rule.operator

    if op == ">":
        return column > parse_value(rule.value, rule.field)
    if op == "<":
        return column < parse_value(rule.value, rule.field)
    if op == ">=":
        return column >= parse_value(rule.value, rule.field)
    if op == "<=":
        return column <= parse_value(rule.value, rule.field)
    if op == "=":
        return column == parse_value(rule.value, rule.field)
    if op == "!=":
        return column != parse_value(rule.value, rule.field)
    if op == "contains":
        return _as_text(column, rule.field).icontains(str(rule.value), autoescape=True)
    if op == "not_contains":
        # NULL columns count as "does not contain"
        text_column = _as_text(column, rule.field)
        return or_(column.is_(None), ~text_column.icontains(str(rule.value), autoescape=True))
    if op == "older_than":
        if rule.field not in DATE_FIELDS:
            raise ValidationError(f"older_than needs a date field, got {rule.field}")
        days = _parse_number(rule.value, "older_than")
        try:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        except OverflowError:
            raise ValidationError(f"Invalid day count {rule.value!r} for older_than")
        return column < cutoff

    logger.warning("Unknown rule operator %r on rule %s - matching all", op, rule.id)
    return true()


def _close_group(group: list[ColumnElement[bool]]) -> ColumnElement[bool]:
    return group[0] if len(group) == 1 else and_(*group)


def compile_rules(
    rules: Iterable[Union[Rule, dict]],
    now: Optional[datetime] = None,
) -> ColumnElement[bool]:
    """
    Compile segment rules into a Customer filter.

    Args:
        rules: Ordered rules (Rule models or their dict form, as stored on a Segment)
        now: Reference time for older_than, defaults to the current UTC time

    Returns:
        A boolean clause; true() for an empty rule list
    """
    parsed = [r if isinstance(r, Rule) else Rule.model_validate(r) for r in rules or []]
    if not parsed:
        return true()

    conditions = [build_condition(rule, now) for rule in parsed]

    groups: list[ColumnElement[bool]] = []
    current = [conditions[0]]
    for i in range(1, len(parsed)):
        if parsed[i - 1].logic == "OR":
            groups.append(_close_group(current))
            current = [conditions[i]]
        else:
            current.append(conditions[i])
    groups.append(_close_group(current))

    return groups[0] if len(groups) == 1 else or_(*groups)
