# entra_audit/errors.py
"""
Error kinds raised by the audit helpers.

    AuditError
    ├── RemoteQueryFailure   Graph request failed
    ├── OwnerLookupFailure   owners of one object could not be read
    ├── InvalidDefinition    managed-app definition cannot be used
    └── MalformedInput       identifier is not a GUID
"""

from typing import Any, Dict, Optional


class AuditError(Exception):
    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.details = details or {}

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class RemoteQueryFailure(AuditError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause=cause, details={"status_code": status_code, "url": url})
        self.status_code = status_code
        self.url = url

    @property
    def is_authorization_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_unavailable(self) -> bool:
        """No response at all, or the caller is not allowed to read the directory."""
        return self.status_code is None or self.is_authorization_error


class OwnerLookupFailure(AuditError):
    pass


class InvalidDefinition(AuditError):
    pass


class MalformedInput(AuditError):
    pass
