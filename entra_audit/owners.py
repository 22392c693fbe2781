# entra_audit/owners.py
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from entra_audit.errors import AuditError, OwnerLookupFailure, RemoteQueryFailure

logger = logging.getLogger(__name__)

ERROR_OWNER_NAME = "<<Error>>"


@dataclass(frozen=True)
class Owner:
    display_name: str
    user_principal_name: Optional[str]
    object_id: Optional[str]
    type_tag: str


ERROR_OWNER = Owner(ERROR_OWNER_NAME, None, None, "Error")


def owner_from_graph(raw: dict) -> Owner:
    odata_type = raw.get("@odata.type") or ""
    return Owner(
        display_name=raw.get("displayName") or "",
        user_principal_name=raw.get("userPrincipalName"),
        object_id=raw.get("id"),
        type_tag=odata_type.rsplit(".", 1)[-1] or "directoryObject",
    )


class OwnerCache:
    """Owners per object id. Lives as long as the caller keeps it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._owners: Dict[str, List[Owner]] = {}

    def get(self, object_id: str) -> Optional[List[Owner]]:
        with self._lock:
            return self._owners.get(object_id)

    def put(self, object_id: str, owners: List[Owner]) -> None:
        with self._lock:
            self._owners[object_id] = list(owners)

    def clear(self) -> None:
        with self._lock:
            self._owners.clear()

    def __contains__(self, object_id: str) -> bool:
        with self._lock:
            return object_id in self._owners

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)


def owner_fetcher(collection: str, get_owners: Callable[[str, str], List[dict]]) -> Callable[[str], List[dict]]:
    """Bind a Graph owners call to one collection, raising OwnerLookupFailure."""

    def fetch(object_id: str) -> List[dict]:
        try:
            return get_owners(collection, object_id)
        except RemoteQueryFailure as e:
            raise OwnerLookupFailure(f"Owners of {collection}/{object_id} could not be read", cause=e) from e

    return fetch


def lookup_owners(
    object_id: str,
    fetch: Callable[[str], List[dict]],
    cache: OwnerCache,
) -> List[Owner]:
    """
    Cached owner lookup. A failed lookup yields [ERROR_OWNER] and is not
    cached, so a later call can still succeed.
    """
    cached = cache.get(object_id)
    if cached is not None:
        return cached

    try:
        raw = fetch(object_id)
    except AuditError as e:
        logger.warning("[Owners] Lookup failed for %s: %s", object_id, e)
        return [ERROR_OWNER]

    owners = [owner_from_graph(o) for o in raw]
    cache.put(object_id, owners)
    return owners


def format_owners(owners: List[Owner]) -> str:
    parts = []
    for o in owners:
        if o.user_principal_name:
            parts.append(f"{o.display_name} ({o.user_principal_name})")
        else:
            parts.append(o.display_name)
    return "; ".join(parts)
