"""Shared parsing and time helpers.

utcnow / as_utc:        timezone-aware clock and SQLite naive-datetime repair
parse_flexible_date:    permissive date parser for imports (None on bad input)
parse_date_input:       strict variant for API payloads (raises ValueError)
parse_gender:           m|male|f|female|o|other → MALE|FEMALE|OTHER
parse_marital_status:   single-letter or full-word → SINGLE|MARRIED|...
parse_duration:         "7d" / "2w" / "48h" / "30" → timedelta
parse_bool / parse_int: query-string coercion for blueprints
"""
import logging
import re
from datetime import date, datetime, timedelta, timezone

logger = logging.getLogger(__name__)


# ── Clock ────────────────────────────────────────────────────────────────────

def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Dates ────────────────────────────────────────────────────────────────────

_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d.%m.%Y", "%d-%m-%Y")


def parse_flexible_date(value):
    """Parse a free-text date, returning None for empty or unparsable input.

    Accepted, in order:
    - YYYY-MM-DD and full ISO datetimes (→ .date())
    - DD/MM/YYYY, DD.MM.YYYY, DD-MM-YYYY
    - MM/DD/YYYY when the second component (> 12) rules out day-first
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        logger.debug("Unparsable date %r", text)
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same formats as parse_flexible_date(); used where a bad date is a 400.
    """
    if value in (None, ""):
        return None
    parsed = parse_flexible_date(value)
    if parsed is None:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD/MM/YYYY.")
    return parsed


def parse_datetime_input(value):
    """ISO datetime (or bare date → midnight UTC); raises ValueError."""
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    parsed = parse_date_input(text)
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


# ── Enumerations ─────────────────────────────────────────────────────────────

_GENDER_ALIASES = {
    "m": "MALE", "male": "MALE",
    "f": "FEMALE", "female": "FEMALE",
    "o": "OTHER", "other": "OTHER",
}

_MARITAL_ALIASES = {
    "s": "SINGLE", "single": "SINGLE",
    "m": "MARRIED", "married": "MARRIED",
    "d": "DIVORCED", "divorced": "DIVORCED",
    "w": "WIDOWED", "widowed": "WIDOWED",
    "o": "OTHER", "other": "OTHER",
}


def parse_gender(value):
    if not value:
        return None
    return _GENDER_ALIASES.get(str(value).strip().lower())


def parse_marital_status(value):
    if not value:
        return None
    return _MARITAL_ALIASES.get(str(value).strip().lower())


# ── Durations ────────────────────────────────────────────────────────────────

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([hdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"h": "hours", "d": "days", "w": "weeks", "": "days"}


def parse_duration(value):
    """Return a timedelta for "48h", "7d", "2w" or a bare day count; None if invalid."""
    if value is None:
        return None
    match = _DURATION_RE.match(str(value))
    if not match:
        return None
    amount, unit = match.groups()
    try:
        return timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
    except OverflowError:
        return None


# ── Query-string coercion ────────────────────────────────────────────────────

def parse_bool(value):
    if value is None:
        return None
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
