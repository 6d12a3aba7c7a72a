"""Interval rules for repeat/next directives."""

from __future__ import annotations

import datetime as dt
import logging
import re

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

logger = logging.getLogger(__name__)

WHEN_DONE_RE = re.compile(r"when done", re.IGNORECASE)
ABSOLUTE_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")
AMOUNT_RE = re.compile(r"^(?:every|next)?\s*(\d+)\s*(days?|weeks?|months?|years?)$")

WEEKDAYS = {
    "sunday": SU,
    "monday": MO,
    "tuesday": TU,
    "wednesday": WE,
    "thursday": TH,
    "friday": FR,
    "saturday": SA,
}

KEYWORDS = {
    "tomorrow": relativedelta(days=1),
    "today": relativedelta(),
    "next week": relativedelta(weeks=1),
    "daily": relativedelta(days=1),
    "every day": relativedelta(days=1),
    "weekly": relativedelta(weeks=1),
    "every week": relativedelta(weeks=1),
    "monthly": relativedelta(months=1),
    "every month": relativedelta(months=1),
    "yearly": relativedelta(years=1),
    "every year": relativedelta(years=1),
}

UNITS = {"day": "days", "week": "weeks", "month": "months", "year": "years"}


def split_when_done(interval: str) -> tuple[str, bool]:
    """Strip the ``when done`` marker; the flag anchors recurrence on today."""
    if WHEN_DONE_RE.search(interval):
        return WHEN_DONE_RE.sub("", interval).strip(), True
    return interval.strip(), False


def _is_weekend(value: dt.date) -> bool:
    return value.weekday() >= 5


def calculate_next_date(base: dt.date, rule: str) -> dt.date:
    lowered = rule.lower().strip()

    absolute = ABSOLUTE_RE.match(lowered)
    if absolute:
        year, month, day = (int(part) for part in absolute.groups())
        return dt.date(year, month, day)

    if lowered in KEYWORDS:
        return base + KEYWORDS[lowered]

    # "monday" and "next monday" both mean the first Monday strictly after base.
    for name, weekday in WEEKDAYS.items():
        if name in lowered:
            return base + relativedelta(days=1, weekday=weekday(+1))

    if lowered in ("weekdays", "weekends"):
        want_weekend = lowered == "weekends"
        candidate = base + dt.timedelta(days=1)
        while _is_weekend(candidate) != want_weekend:
            candidate += dt.timedelta(days=1)
        return candidate

    amount = AMOUNT_RE.match(lowered)
    if amount:
        count = int(amount.group(1))
        unit = UNITS[amount.group(2).rstrip("s")]
        return base + relativedelta(**{unit: count})

    logger.warning("Unknown recurrence rule %r; defaulting to one day", rule)
    return base + dt.timedelta(days=1)
