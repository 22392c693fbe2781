# entra_audit/time_utils.py
import datetime
import re
from typing import Optional


# Graph returns up to 7 fractional digits, fromisoformat only accepts 6 before 3.11
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_iso_utc(dt_str: Optional[str]) -> Optional[datetime.datetime]:
    if not dt_str:
        return None
    s = dt_str
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    s = _FRACTION_RE.sub(r".\1", s)
    try:
        dt = datetime.datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    """Timezone-aware UTC now."""
    return datetime.datetime.now(datetime.timezone.utc)


def format_utc(dt: Optional[datetime.datetime]) -> str:
    if dt is None:
        return ""
    return dt.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
