# app/utils/recurrence.py
from datetime import date
from typing import Optional, Union

from app.core.exceptions import ValidationException

RECURRENCE_FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")


def _format_until(end_date: Union[date, str]) -> str:
    if isinstance(end_date, str):
        try:
            end_date = date.fromisoformat(end_date)
        except ValueError as e:
            raise ValidationException(
                f"Invalid recurrence end date: {end_date}"
            ) from e
    # Inclusive of the whole end day
    return end_date.strftime("%Y%m%d") + "T235959Z"


def build_recurrence_rule(
    pattern: str,
    count: Optional[int] = None,
    end_date: Optional[Union[date, str]] = None,
) -> str:
    """
    Build an RFC 5545 RRULE line.

    COUNT and UNTIL are mutually exclusive; when both are given COUNT wins.

    >>> build_recurrence_rule("weekly", count=4)
    'RRULE:FREQ=WEEKLY;COUNT=4'
    """
    frequency = (pattern or "").upper()
    if frequency not in RECURRENCE_FREQUENCIES:
        raise ValidationException(
            f"Unsupported recurrence pattern: {pattern}",
            details={"allowed": list(RECURRENCE_FREQUENCIES)},
        )

    rule = f"RRULE:FREQ={frequency}"
    if count:
        if count < 1:
            raise ValidationException("Recurrence count must be positive")
        rule += f";COUNT={count}"
    elif end_date:
        rule += f";UNTIL={_format_until(end_date)}"
    return rule
