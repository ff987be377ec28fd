import importlib.metadata
from datetime import datetime, timezone
from typing import Any, Optional

from checkup.constants import APP_NAME

_USER_AGENT_CACHE: Optional[str] = None


def get_version() -> str:
    """Return the installed checkup version, or `unknown` when it is not installed."""
    try:
        return importlib.metadata.version(APP_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def get_user_agent() -> str:
    """
    Get the User-Agent string used for upstream HTTP requests.

    Returns:
        The string `checkup/{version}`, where `{version}` is the installed package version or `unknown` if it cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        _USER_AGENT_CACHE = f"{APP_NAME}/{get_version()}"

    return _USER_AGENT_CACHE


def parse_iso_datetime_utc(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp and normalize it to UTC.

    Parameters:
        value (Any): An ISO 8601 datetime representation (commonly a string). Falsey or unparsable values are treated as absent.

    Returns:
        A timezone-aware datetime in UTC if parsing succeeds, `None` otherwise.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """
    Format a datetime as an RFC3339 UTC timestamp with a `Z` suffix.

    Naive datetimes are assumed to already be in UTC. Microseconds are kept
    when present so the value parses back to an equal datetime.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
