from __future__ import annotations

from datetime import datetime
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_datetime


def json_body(request) -> dict[str, Any]:
    """Request JSON object, or ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_minor_amount(value: Any, field: str = "amount") -> int:
    """
    Strict integer coercion for money in minor units.

    Accepts ints and plain digit strings. Rejects bools, floats and
    scientific notation so 100.5 or "1e5" never silently round.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer in minor units")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer in minor units")


def parse_optional_datetime(value: str | None, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: expected ISO-8601 date or datetime")


def parse_date_range(args) -> tuple[datetime | None, datetime | None]:
    """start_date / end_date query args (inclusive)."""
    start = parse_optional_datetime(args.get("start_date"), "start_date")
    end = parse_optional_datetime(args.get("end_date"), "end_date")
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date")
    return start, end


def parse_optional_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be a boolean")
