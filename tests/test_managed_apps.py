"""
tests/test_managed_apps.py - entra_audit/managed_apps.py
"""

import json

import pytest

from entra_audit.errors import InvalidDefinition
from entra_audit.managed_apps import (
    DEFAULT_DEFINITIONS,
    MICROSOFT_TENANT_ID,
    FlatAttribute,
    ManagedAppDefinition,
    NestedCollection,
    SecondaryValidation,
    ValidationKind,
    load_definitions,
    match_managed_app,
    parse_attribute_path,
)


def p2p_sp(cert_name="CN=MS-Organization-P2P-Access [2024]"):
    return {
        "id": "sp-1",
        "appId": "11111111-1111-1111-1111-111111111111",
        "servicePrincipalNames": ["urn:p2p_cert"],
        "keyCredentials": [{"displayName": "CN=other"}, {"displayName": cert_name}],
    }


def regex_definition(name="P2P", pattern=r"^CN=MS-Organization-P2P-Access"):
    return ManagedAppDefinition(
        name,
        ("urn:p2p_cert",),
        SecondaryValidation(ValidationKind.REGEX, NestedCollection("keyCredentials", "displayName"), pattern),
    )


class TestMatch:
    def test_primary_and_regex_match(self):
        result = match_managed_app(p2p_sp(), [regex_definition()])
        assert result.is_managed is True
        assert result.matched_definition_name == "P2P"
        assert "urn:p2p_cert" in result.match_reason

    def test_primary_without_validation_never_matches(self):
        definition = ManagedAppDefinition("No rule", ("urn:p2p_cert",), None)
        result = match_managed_app(p2p_sp(), [definition])
        assert result.is_managed is False
        assert result.matched_definition_name is None

    def test_identifier_collision_with_failed_validation(self):
        result = match_managed_app(p2p_sp(cert_name="CN=ThirdParty"), [regex_definition()])
        assert result.is_managed is False

    def test_no_identifier_hit(self):
        sp = p2p_sp()
        sp["servicePrincipalNames"] = ["https://thirdparty"]
        assert match_managed_app(sp, [regex_definition()]).is_managed is False

    def test_skips_unvalidated_then_matches_next(self):
        definitions = [ManagedAppDefinition("Unsafe", ("urn:p2p_cert",)), regex_definition("Safe")]
        assert match_managed_app(p2p_sp(), definitions).matched_definition_name == "Safe"

    def test_first_passing_definition_wins(self):
        definitions = [regex_definition("First"), regex_definition("Second")]
        assert match_managed_app(p2p_sp(), definitions).matched_definition_name == "First"

    def test_app_id_counts_as_identifier(self):
        sp = {
            "appId": "00000002-0000-0ff1-ce00-000000000000",
            "servicePrincipalNames": [],
            "appOwnerOrganizationId": MICROSOFT_TENANT_ID,
        }
        result = match_managed_app(sp, DEFAULT_DEFINITIONS)
        assert result.matched_definition_name == "Office 365 Exchange Online"

    def test_equals_on_other_tenant(self):
        sp = {
            "appId": "00000002-0000-0ff1-ce00-000000000000",
            "appOwnerOrganizationId": "22222222-2222-2222-2222-222222222222",
        }
        assert match_managed_app(sp, DEFAULT_DEFINITIONS).is_managed is False

    def test_flat_regex(self):
        definition = ManagedAppDefinition(
            "Flat",
            ("urn:p2p_cert",),
            SecondaryValidation(ValidationKind.REGEX, FlatAttribute("displayName"), "^P2P"),
        )
        sp = dict(p2p_sp(), displayName="P2P Server")
        assert match_managed_app(sp, [definition]).is_managed is True

    def test_equals_never_matches_nested_target(self):
        definition = ManagedAppDefinition(
            "Nested equals",
            ("urn:p2p_cert",),
            SecondaryValidation(ValidationKind.EQUALS, NestedCollection("keyCredentials", "displayName"), "CN=other"),
        )
        assert match_managed_app(p2p_sp(), [definition]).is_managed is False

    def test_missing_collection(self):
        sp = p2p_sp()
        del sp["keyCredentials"]
        assert match_managed_app(sp, [regex_definition()]).is_managed is False


class TestAttributePath:
    def test_flat(self):
        assert parse_attribute_path("appOwnerOrganizationId") == FlatAttribute("appOwnerOrganizationId")

    def test_nested(self):
        assert parse_attribute_path("keyCredentials.displayName") == NestedCollection("keyCredentials", "displayName")

    @pytest.mark.parametrize("path", ["", "a.b.c", "a.", ".b"])
    def test_invalid(self, path):
        with pytest.raises(InvalidDefinition):
            parse_attribute_path(path)


class TestLoadDefinitions:
    def test_load(self, tmp_path):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps([
            {
                "name": "P2P Server",
                "identifiers": ["urn:p2p_cert"],
                "validation": {"kind": "Regex", "attribute": "keyCredentials.displayName", "value": "^CN=MS-"},
            },
            {"name": "Unvalidated", "identifiers": ["x"]},
        ]))
        definitions = load_definitions(str(path))
        assert len(definitions) == 2
        assert definitions[0].validation.target == NestedCollection("keyCredentials", "displayName")
        assert definitions[1].validation is None

    def test_bad_kind(self, tmp_path):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps([
            {"name": "Bad", "identifiers": ["x"], "validation": {"kind": "Contains", "attribute": "a", "value": "b"}},
        ]))
        with pytest.raises(InvalidDefinition):
            load_definitions(str(path))

    def test_bad_regex(self, tmp_path):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps([
            {"name": "Bad", "identifiers": ["x"], "validation": {"kind": "Regex", "attribute": "a", "value": "("}},
        ]))
        with pytest.raises(InvalidDefinition):
            load_definitions(str(path))

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            json.dumps({"name": "Not a list"}),
            json.dumps(["just a string"]),
            json.dumps([{"name": "Bad", "identifiers": ["x"], "validation": "Regex"}]),
            json.dumps([{"name": "Bad", "identifiers": ["x"],
                         "validation": {"kind": "Equals", "attribute": "a", "value": 5}}]),
        ],
    )
    def test_malformed_file(self, tmp_path, content):
        path = tmp_path / "defs.json"
        path.write_text(content)
        with pytest.raises(InvalidDefinition):
            load_definitions(str(path))
