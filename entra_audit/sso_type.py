# entra_audit/sso_type.py
"""
SSO type detection for service principals.

preferredSingleSignOnMode is authoritative whenever it is set. Older
enterprise apps predate that attribute, so for those we fall back to a
SAML signing certificate, then to SAML-only settings (relay state,
notification emails). The order matters: a modern OIDC app can still
carry a signing cert.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

SIGNING_CERT_TYPE = "AsymmetricX509Cert"
SIGNING_CERT_USAGE = "Sign"


class SsoType(Enum):
    SAML = "SAML"
    OIDC = "OIDC"
    PASSWORD = "Password"
    NOT_SUPPORTED = "NotSupported"
    NONE = "None"
    UNKNOWN = "Unknown"


class SsoSource(Enum):
    PREFERRED_MODE = "PreferredMode"
    SIGNING_CERTIFICATE = "SigningCertificate"
    SAML_INDICATORS = "SamlIndicators"
    NO_INDICATORS = "NoIndicators"


_MODE_MAP = {
    "saml": SsoType.SAML,
    "oidc": SsoType.OIDC,
    "password": SsoType.PASSWORD,
    "notsupported": SsoType.NOT_SUPPORTED,
}


@dataclass(frozen=True)
class SsoResolution:
    sso_type: SsoType
    source: SsoSource
    preferred_mode: Optional[str] = None
    has_signing_certificate: bool = False
    has_relay_state: bool = False
    notification_email_count: int = 0
    login_url: Optional[str] = None
    logout_url: Optional[str] = None
    reply_url_count: int = 0

    def as_row(self) -> dict:
        return {
            "SsoType": self.sso_type.value,
            "SsoTypeSource": self.source.value,
            "PreferredSingleSignOnMode": self.preferred_mode or "",
            "HasSigningCertificate": self.has_signing_certificate,
            "HasRelayState": self.has_relay_state,
            "NotificationEmailCount": self.notification_email_count,
            "LoginUrl": self.login_url or "",
            "LogoutUrl": self.logout_url or "",
            "ReplyUrlCount": self.reply_url_count,
        }


def is_signing_certificate(cred: dict) -> bool:
    return cred.get("type") == SIGNING_CERT_TYPE and cred.get("usage") == SIGNING_CERT_USAGE


def sso_type_from_mode(mode: str) -> SsoType:
    return _MODE_MAP.get(mode.strip().lower(), SsoType.UNKNOWN)


def resolve_sso_type(sp: dict) -> SsoResolution:
    preferred_mode = (sp.get("preferredSingleSignOnMode") or "").strip()
    key_creds = sp.get("keyCredentials") or []
    saml_settings = sp.get("samlSingleSignOnSettings") or {}
    emails = sp.get("notificationEmailAddresses") or []

    has_signing_cert = any(is_signing_certificate(c) for c in key_creds)
    has_relay_state = bool(saml_settings.get("relayState"))

    diagnostics = dict(
        preferred_mode=preferred_mode or None,
        has_signing_certificate=has_signing_cert,
        has_relay_state=has_relay_state,
        notification_email_count=len(emails),
        login_url=sp.get("loginUrl"),
        logout_url=sp.get("logoutUrl"),
        reply_url_count=len(sp.get("replyUrls") or []),
    )

    if preferred_mode:
        return SsoResolution(sso_type_from_mode(preferred_mode), SsoSource.PREFERRED_MODE, **diagnostics)
    if has_signing_cert:
        return SsoResolution(SsoType.SAML, SsoSource.SIGNING_CERTIFICATE, **diagnostics)
    if has_relay_state or emails:
        return SsoResolution(SsoType.SAML, SsoSource.SAML_INDICATORS, **diagnostics)
    return SsoResolution(SsoType.NONE, SsoSource.NO_INDICATORS, **diagnostics)
