# entra_audit/graph_utils.py
import logging
import os
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from azure.identity import ClientSecretCredential

from entra_audit.errors import RemoteQueryFailure

logger = logging.getLogger(__name__)

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
REQUEST_TIMEOUT = 60

APPLICATION_SELECT = "id,appId,displayName,passwordCredentials,keyCredentials"
SERVICE_PRINCIPAL_SELECT = (
    "id,appId,displayName,appOwnerOrganizationId,servicePrincipalType,servicePrincipalNames,"
    "passwordCredentials,keyCredentials,preferredSingleSignOnMode,samlSingleSignOnSettings,"
    "notificationEmailAddresses,loginUrl,logoutUrl,replyUrls,tags"
)

_graph_token: Optional[str] = None
_graph_token_expires_at: float = 0.0


def get_graph_token() -> Tuple[str, float]:
    cred = ClientSecretCredential(
        tenant_id=os.environ["AZ_TENANT_ID"],
        client_id=os.environ["AZ_CLIENT_ID"],
        client_secret=os.environ["AZ_CLIENT_SECRET"],
    )
    token = cred.get_token(GRAPH_SCOPE)
    expires_at = token.expires_on - 60  # refresh 1 min early
    return token.token, expires_at


def ensure_graph_token() -> str:
    global _graph_token, _graph_token_expires_at
    if _graph_token is None or time.time() >= _graph_token_expires_at:
        _graph_token, _graph_token_expires_at = get_graph_token()
        logger.info("[Token] Refreshed Graph access token.")
    return _graph_token


def graph_get(url: str, **kwargs) -> requests.Response:
    token = ensure_graph_token()
    headers = kwargs.pop("headers", {})
    headers.setdefault("Authorization", f"Bearer {token}")
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    return requests.get(url, headers=headers, **kwargs)


def graph_post(url: str, json=None, **kwargs) -> requests.Response:
    token = ensure_graph_token()
    headers = kwargs.pop("headers", {})
    headers.setdefault("Authorization", f"Bearer {token}")
    headers.setdefault("Content-Type", "application/json")
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    return requests.post(url, headers=headers, json=json, **kwargs)


def graph_patch(url: str, json=None, **kwargs) -> requests.Response:
    token = ensure_graph_token()
    headers = kwargs.pop("headers", {})
    headers.setdefault("Authorization", f"Bearer {token}")
    headers.setdefault("Content-Type", "application/json")
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    return requests.patch(url, headers=headers, json=json, **kwargs)


def _raise_for_graph(resp: requests.Response, url: str) -> None:
    if resp.status_code < 200 or resp.status_code >= 300:
        raise RemoteQueryFailure(
            f"Graph request failed with {resp.status_code}: {resp.text[:500]}",
            status_code=resp.status_code,
            url=url,
        )


def graph_get_all(url: str, headers: Optional[Dict[str, str]] = None) -> List[dict]:
    """
    GET a collection and follow @odata.nextLink until exhausted.
    Raises RemoteQueryFailure on any non-2xx page or transport error.
    """
    items: List[dict] = []
    page = 0
    while url:
        resp = _send(graph_get, url, headers=dict(headers or {}))
        data = resp.json()
        page += 1
        items.extend(data.get("value", []))
        logger.debug("[Graph] page %d: %d items so far", page, len(items))
        url = data.get("@odata.nextLink")
    return items


def build_collection_url(
    collection: str,
    select: Optional[str] = None,
    filter_expr: Optional[str] = None,
    top: Optional[int] = None,
) -> str:
    params = []
    if filter_expr:
        params.append("$filter=" + quote(filter_expr, safe="(),'/:= "))
    if select:
        params.append(f"$select={select}")
    if top:
        params.append(f"$top={top}")
    url = f"{GRAPH_ROOT}/{collection}"
    if params:
        url += "?" + "&".join(params)
    return url


def list_applications(filter_expr: Optional[str] = None, select: str = APPLICATION_SELECT) -> List[dict]:
    return graph_get_all(build_collection_url("applications", select, filter_expr, top=999))


def list_service_principals(
    filter_expr: Optional[str] = None, select: str = SERVICE_PRINCIPAL_SELECT
) -> List[dict]:
    # tags/any(...) filters need advanced query headers
    headers = {"ConsistencyLevel": "eventual"}
    url = build_collection_url("servicePrincipals", select, filter_expr, top=999)
    if filter_expr:
        url += "&$count=true"
    return graph_get_all(url, headers=headers)


def get_owners(collection: str, object_id: str) -> List[dict]:
    url = f"{GRAPH_ROOT}/{collection}/{object_id}/owners?$select=id,displayName,userPrincipalName"
    return graph_get_all(url)


def _send(method, url: str, **kwargs) -> requests.Response:
    try:
        resp = method(url, **kwargs)
    except requests.RequestException as e:
        raise RemoteQueryFailure("Graph request could not be sent", url=url, cause=e) from e
    _raise_for_graph(resp, url)
    return resp


def get_object(collection: str, object_id: str, select: str) -> dict:
    url = f"{GRAPH_ROOT}/{collection}/{object_id}?$select={select}"
    return _send(graph_get, url).json()


def remove_password_credential(collection: str, object_id: str, key_id: str) -> None:
    url = f"{GRAPH_ROOT}/{collection}/{object_id}/removePassword"
    _send(graph_post, url, json={"keyId": key_id})


def update_application_notes(object_id: str, notes: str) -> None:
    url = f"{GRAPH_ROOT}/applications/{object_id}"
    _send(graph_patch, url, json={"notes": notes})


def portal_credentials_url(collection: str, object_id: str, app_id: str) -> str:
    if collection == "applications":
        return (
            "https://portal.azure.com/"
            "#view/Microsoft_AAD_RegisteredApps/ApplicationMenuBlade/~/Credentials"
            f"/appId/{app_id}"
        )
    return (
        "https://portal.azure.com/"
        "#view/Microsoft_AAD_IAM/ManagedAppMenuBlade/~/SignOn"
        f"/objectId/{object_id}"
        f"/appId/{app_id}"
        "/preferredSingleSignOnMode/saml"
        "/servicePrincipalType/Application/fromNav/"
    )

