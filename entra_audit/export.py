# entra_audit/export.py
import csv
import datetime
import logging
from typing import Iterable, List, Optional, Sequence

from entra_audit.time_utils import format_utc

logger = logging.getLogger(__name__)


def _cell(value):
    if isinstance(value, datetime.datetime):
        return format_utc(value)
    if value is None:
        return ""
    return value


def collect_fieldnames(rows: Iterable[dict]) -> List[str]:
    fieldnames: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen and not key.startswith("_"):
                seen.add(key)
                fieldnames.append(key)
    return fieldnames


def write_csv(rows: Sequence[dict], path: str, fieldnames: Optional[List[str]] = None) -> int:
    """Write rows to path; returns the number of rows written."""
    if fieldnames is None:
        fieldnames = collect_fieldnames(rows)

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({k: _cell(row.get(k)) for k in fieldnames})

    logger.info("[Export] Wrote %d rows to %s", len(rows), path)
    return len(rows)
