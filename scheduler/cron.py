"""
Cron evaluator — maps a cron expression and a reference time to occurrences.

Everything here is interpreted in UTC so a daylight-saving change somewhere
never shifts or duplicates an occurrence. Naive datetimes are taken to be UTC.

Both 5-field ("0 2 * * *") and 6-field expressions are accepted. A 6-field
expression has the seconds column FIRST ("*/10 * * * * *" = every 10 seconds).

Pure functions, no side effects. Callers that evaluate many jobs must treat
InvalidCronExpression as "skip this job", never as a fatal error.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterator

from croniter import croniter


class InvalidCronExpression(ValueError):
    """Raised when an expression cannot be parsed or can never fire."""

    def __init__(self, expression: str, reason: str = ""):
        self.expression = expression
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid cron expression {expression!r}{detail}")


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _normalise(expression: str) -> str:
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidCronExpression(str(expression), "empty expression")

    normalised = " ".join(expression.split())
    if not croniter.is_valid(normalised, second_at_beginning=True):
        raise InvalidCronExpression(expression)
    return normalised


def _iterator(expression: str, start: datetime) -> croniter:
    normalised = _normalise(expression)
    try:
        return croniter(normalised, _as_utc(start), second_at_beginning=True)
    except (ValueError, KeyError) as e:  # CroniterError subclasses ValueError
        raise InvalidCronExpression(expression, str(e)) from e


def _get_next(it: croniter, expression: str) -> datetime:
    # Syntactically valid expressions like "0 0 31 2 *" fail only here
    try:
        return _as_utc(it.get_next(datetime))
    except (ValueError, KeyError) as e:
        raise InvalidCronExpression(expression, str(e)) from e


def validate_expression(expression: str) -> str:
    """
    Return the whitespace-normalised expression, or raise InvalidCronExpression.

    Also computes one occurrence, so expressions that parse but never fire
    are rejected here rather than in the scheduler.
    """
    normalised = _normalise(expression)
    _get_next(_iterator(normalised, datetime.now(timezone.utc)), expression)
    return normalised


def next_occurrence(expression: str, reference: datetime) -> datetime:
    """First occurrence strictly after `reference`, as an aware UTC datetime."""
    return _get_next(_iterator(expression, reference), expression)


def iter_occurrences(expression: str, start: datetime, end: datetime) -> Iterator[datetime]:
    """
    Yield every occurrence t with start <= t <= end (both ends inclusive).

    croniter only looks strictly forward, so iteration begins one second
    before `start` (the finest cron resolution) and anything that still lands
    before `start` is dropped.
    """
    start = _as_utc(start)
    end = _as_utc(end)
    if end < start:
        return

    it = _iterator(expression, start - timedelta(seconds=1))
    while True:
        occurrence = _get_next(it, expression)
        if occurrence > end:
            return
        if occurrence >= start:
            yield occurrence
