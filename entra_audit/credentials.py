# entra_audit/credentials.py
"""
Credential rows for applications and service principals.

Each object's keyCredentials (certificates) and passwordCredentials
(secrets) are classified against one reference time and filtered by an
expiration threshold. Optionally the rows are flattened into one summary
row per object.
"""

import datetime
import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from entra_audit.credential_status import CredentialStatus, classify_credential
from entra_audit.owners import Owner, format_owners
from entra_audit.sso_type import is_signing_certificate
from entra_audit.time_utils import parse_iso_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 30
# "ignore expiration" is just a threshold nobody will reach
IGNORE_EXPIRATION_DAYS = 3650

OBJECT_COLUMNS = (
    "ObjectType",
    "DisplayName",
    "ObjectId",
    "AppId",
    "AppOwnerOrganizationId",
    "ServicePrincipalType",
)


class CredentialKind(Enum):
    SECRET = "Secret"
    CERTIFICATE = "Certificate"
    SAML_SIGNING_CERTIFICATE = "SamlSigningCertificate"


def certificate_kind(cred: dict) -> CredentialKind:
    if is_signing_certificate(cred):
        return CredentialKind.SAML_SIGNING_CERTIFICATE
    return CredentialKind.CERTIFICATE


def is_included(
    status: CredentialStatus,
    days_remaining: Optional[int],
    threshold_days: int,
    exclude_expired: bool,
) -> bool:
    if status is CredentialStatus.EXPIRED:
        return not exclude_expired
    if days_remaining is None:
        # never expires: no threshold to compare against
        return True
    return days_remaining <= threshold_days


def _object_columns(obj: dict, object_type: str) -> dict:
    return {
        "ObjectType": object_type,
        "DisplayName": obj.get("displayName") or "Unknown",
        "ObjectId": obj.get("id"),
        "AppId": obj.get("appId"),
        "AppOwnerOrganizationId": obj.get("appOwnerOrganizationId"),
        "ServicePrincipalType": obj.get("servicePrincipalType"),
    }


def _credential_row(base: dict, cred: dict, kind: CredentialKind, reference: datetime.datetime) -> dict:
    end_dt = parse_iso_utc(cred.get("endDateTime"))
    result = classify_credential(end_dt, reference)
    row = dict(base)
    row.update({
        "CredentialType": kind.value,
        "CredentialName": cred.get("displayName") or "",
        "KeyId": cred.get("keyId"),
        "StartDate": parse_iso_utc(cred.get("startDateTime")),
        "EndDate": end_dt,
        "Status": result.status.label,
        "DaysRemaining": result.days_remaining,
        "DaysPastExpiration": result.days_past_expiration,
        "CertificateType": cred.get("type") if kind is not CredentialKind.SECRET else None,
        "CertificateUsage": cred.get("usage") if kind is not CredentialKind.SECRET else None,
        "_status": result.status,
    })
    return row


def credential_rows(
    obj: dict,
    object_type: str,
    reference: datetime.datetime,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    exclude_expired: bool = False,
) -> List[dict]:
    base = _object_columns(obj, object_type)

    key_creds = obj.get("keyCredentials") or []
    password_creds = obj.get("passwordCredentials") or []

    # A certificate's private-key password shows up as a passwordCredential with the same keyId
    cert_key_ids = {c.get("keyId") for c in key_creds if c.get("keyId")}
    secrets = [p for p in password_creds if p.get("keyId") not in cert_key_ids]
    skipped = len(password_creds) - len(secrets)
    if skipped:
        logger.debug("Suppressed %d certificate password entries on %s", skipped, obj.get("id"))

    candidates = [(c, certificate_kind(c)) for c in key_creds]
    candidates += [(p, CredentialKind.SECRET) for p in secrets]

    rows = []
    for cred, kind in candidates:
        row = _credential_row(base, cred, kind, reference)
        if is_included(row["_status"], row["DaysRemaining"], threshold_days, exclude_expired):
            rows.append(row)
    return rows


def _none_last(value):
    return (value is None, value if value is not None else 0)


def sort_rows(rows: Iterable[dict], key: str = "DaysRemaining") -> List[dict]:
    return sorted(rows, key=lambda r: _none_last(r.get(key)))


def _severity_key(row: dict):
    end = row.get("EndDate")
    return (row["_status"], end is None, end or datetime.datetime.max.replace(tzinfo=datetime.timezone.utc))


def summarize_object(rows: List[dict]) -> dict:
    """One summary row for the credential rows of a single object."""
    first = rows[0]
    summary = {k: first.get(k) for k in OBJECT_COLUMNS}
    if "Owners" in first:
        summary["Owners"] = first["Owners"]

    kinds = [r["CredentialType"] for r in rows]
    statuses = [r["_status"] for r in rows]

    dated = [r for r in rows if r.get("EndDate") is not None]
    earliest = min(dated, key=lambda r: r["EndDate"]) if dated else None

    # ties on severity go to the credential that expires first
    worst = min(rows, key=_severity_key)

    summary.update({
        "TotalCredentials": len(rows),
        "SecretCount": kinds.count(CredentialKind.SECRET.value),
        "CertificateCount": kinds.count(CredentialKind.CERTIFICATE.value),
        "SamlSigningCertificateCount": kinds.count(CredentialKind.SAML_SIGNING_CERTIFICATE.value),
        "ExpiredCount": statuses.count(CredentialStatus.EXPIRED),
        "ExpiringSoonCount": sum(
            1 for s in statuses if s in (CredentialStatus.EXPIRING_TODAY, CredentialStatus.EXPIRING_SOON)
        ),
        "EarliestExpiration": earliest["EndDate"] if earliest else None,
        "EarliestDaysRemaining": earliest["DaysRemaining"] if earliest else None,
        "WorstStatus": worst["_status"].label,
        "WorstCredentialKeyId": worst.get("KeyId"),
    })
    return summary


def flatten_rows(rows: Iterable[dict]) -> List[dict]:
    groups: Dict[str, List[dict]] = {}
    for row in rows:
        groups.setdefault(row["ObjectId"], []).append(row)
    return [summarize_object(g) for g in groups.values()]


def strip_internal(rows: Iterable[dict]) -> List[dict]:
    return [{k: v for k, v in r.items() if not k.startswith("_")} for r in rows]


def aggregate_credentials(
    objects: Iterable[dict],
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
    exclude_expired: bool = False,
    flatten: bool = False,
    reference: Optional[datetime.datetime] = None,
    object_type: str = "Application",
    owner_lookup: Optional[Callable[[str], List[Owner]]] = None,
    object_filter: Optional[Callable[[dict], bool]] = None,
) -> List[dict]:
    """
    Classify, filter and (optionally) flatten credentials for many objects.

    reference is captured once if not given so every credential in the run
    is measured against the same instant. Rows come back sorted by days
    remaining, never-expiring last.
    """
    if reference is None:
        reference = utc_now()

    rows: List[dict] = []
    for obj in objects:
        if object_filter is not None and not object_filter(obj):
            continue
        obj_rows = credential_rows(obj, object_type, reference, threshold_days, exclude_expired)
        if obj_rows and owner_lookup is not None:
            owners = format_owners(owner_lookup(obj["id"]))
            for row in obj_rows:
                row["Owners"] = owners
        rows.extend(obj_rows)

    if flatten:
        return sort_rows(flatten_rows(rows), key="EarliestDaysRemaining")
    return strip_internal(sort_rows(rows))
