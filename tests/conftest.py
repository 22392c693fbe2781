"""
tests/conftest.py - shared fixtures

Raw Graph JSON builders (camelCase, as the REST API returns them) and a
fixed reference time so classification is deterministic.
"""

import datetime
import sys
import uuid
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


REFERENCE = datetime.datetime(2025, 1, 15, 12, 0, tzinfo=datetime.timezone.utc)


def iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture(autouse=True)
def graph_env(monkeypatch):
    monkeypatch.setenv("AZ_TENANT_ID", "00000000-0000-0000-0000-000000000001")
    monkeypatch.setenv("AZ_CLIENT_ID", "00000000-0000-0000-0000-000000000002")
    monkeypatch.setenv("AZ_CLIENT_SECRET", "testing")


@pytest.fixture
def reference():
    return REFERENCE


@pytest.fixture
def make_password_credential():
    def _make(days=45, key_id=None, display_name="secret", never_expires=False):
        return {
            "keyId": key_id or str(uuid.uuid4()),
            "displayName": display_name,
            "hint": "abc",
            "startDateTime": iso(REFERENCE - datetime.timedelta(days=365)),
            "endDateTime": None if never_expires else iso(REFERENCE + datetime.timedelta(days=days)),
        }
    return _make


@pytest.fixture
def make_key_credential():
    def _make(days=45, key_id=None, usage="Verify", cred_type="AsymmetricX509Cert", display_name="CN=test"):
        return {
            "keyId": key_id or str(uuid.uuid4()),
            "displayName": display_name,
            "type": cred_type,
            "usage": usage,
            "startDateTime": iso(REFERENCE - datetime.timedelta(days=365)),
            "endDateTime": iso(REFERENCE + datetime.timedelta(days=days)),
        }
    return _make


@pytest.fixture
def make_app():
    def _make(name="Test App", password_credentials=None, key_credentials=None, **extra):
        obj = {
            "id": str(uuid.uuid4()),
            "appId": str(uuid.uuid4()),
            "displayName": name,
            "passwordCredentials": password_credentials or [],
            "keyCredentials": key_credentials or [],
        }
        obj.update(extra)
        return obj
    return _make
