# entra_audit/credential_status.py
import datetime
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from entra_audit.time_utils import utc_now

EXPIRING_SOON_DAYS = 30
EXPIRING_MEDIUM_DAYS = 90

_SECONDS_PER_DAY = 86400


class CredentialStatus(IntEnum):
    """Lower value = more severe."""

    EXPIRED = 0
    EXPIRING_TODAY = 1
    EXPIRING_SOON = 2
    EXPIRING_MEDIUM = 3
    VALID = 4
    NO_EXPIRATION = 5

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    CredentialStatus.EXPIRED: "Expired",
    CredentialStatus.EXPIRING_TODAY: "ExpiringToday",
    CredentialStatus.EXPIRING_SOON: "ExpiringSoon",
    CredentialStatus.EXPIRING_MEDIUM: "ExpiringMedium",
    CredentialStatus.VALID: "Valid",
    CredentialStatus.NO_EXPIRATION: "NoExpiration",
}


@dataclass(frozen=True)
class StatusResult:
    days_remaining: Optional[int]
    days_past_expiration: Optional[int]
    status: CredentialStatus


def whole_days_between(start: datetime.datetime, end: datetime.datetime) -> int:
    """Signed whole days from start to end, rounded down."""
    return math.floor((end - start).total_seconds() / _SECONDS_PER_DAY)


def classify_credential(
    expiration: Optional[datetime.datetime],
    reference: Optional[datetime.datetime] = None,
) -> StatusResult:
    """
    Classify a credential's expiration relative to reference (default: now).

    Pass the same reference for every credential in a run so items evaluated
    a few microseconds apart land in the same bucket.
    """
    if expiration is None:
        return StatusResult(None, None, CredentialStatus.NO_EXPIRATION)

    if reference is None:
        reference = utc_now()

    diff = whole_days_between(reference, expiration)

    if diff < 0:
        return StatusResult(0, abs(diff), CredentialStatus.EXPIRED)
    if diff == 0:
        return StatusResult(0, None, CredentialStatus.EXPIRING_TODAY)
    if diff <= EXPIRING_SOON_DAYS:
        return StatusResult(diff, None, CredentialStatus.EXPIRING_SOON)
    if diff <= EXPIRING_MEDIUM_DAYS:
        return StatusResult(diff, None, CredentialStatus.EXPIRING_MEDIUM)
    return StatusResult(diff, None, CredentialStatus.VALID)
