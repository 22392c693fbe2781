# entra_audit/identifiers.py
import logging
import uuid
from typing import Iterable, List, Tuple

from entra_audit.errors import MalformedInput

logger = logging.getLogger(__name__)


def ensure_guid(value: str) -> str:
    try:
        return str(uuid.UUID(value.strip()))
    except (ValueError, AttributeError) as e:
        raise MalformedInput(f"'{value}' is not a GUID", cause=e) from e


def split_guids(values: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Return (valid, malformed). Malformed values are logged and skipped."""
    valid, malformed = [], []
    for value in values:
        try:
            valid.append(ensure_guid(value))
        except MalformedInput as e:
            logger.warning("Skipping malformed identifier: %s", e)
            malformed.append(value)
    return valid, malformed


def read_identifiers(path: str) -> List[str]:
    """One id per line; blank lines and # comments are ignored."""
    ids = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                ids.append(line)
    return ids


def parse_id_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]
