# entra_audit/managed_apps.py
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union

from entra_audit.errors import InvalidDefinition

logger = logging.getLogger(__name__)

MICROSOFT_TENANT_ID = "f8cdef31-a31e-4b4a-93e4-5f571e91255a"


class ValidationKind(Enum):
    REGEX = "Regex"
    EQUALS = "Equals"


@dataclass(frozen=True)
class FlatAttribute:
    name: str


@dataclass(frozen=True)
class NestedCollection:
    collection: str
    field: str


AttributeTarget = Union[FlatAttribute, NestedCollection]


@dataclass(frozen=True)
class SecondaryValidation:
    kind: ValidationKind
    target: AttributeTarget
    expected: str


@dataclass(frozen=True)
class ManagedAppDefinition:
    name: str
    identifiers: Sequence[str]
    validation: Optional[SecondaryValidation] = None


@dataclass(frozen=True)
class ManagedAppMatch:
    is_managed: bool
    matched_definition_name: Optional[str] = None
    match_reason: Optional[str] = None


NOT_MANAGED = ManagedAppMatch(False)


def parse_attribute_path(path: str) -> AttributeTarget:
    """'attr' -> FlatAttribute, 'collection.field' -> NestedCollection."""
    parts = path.split(".")
    if not path or any(not p for p in parts) or len(parts) > 2:
        raise InvalidDefinition(f"Unsupported attribute path '{path}' (one level of nesting allowed)")
    if len(parts) == 1:
        return FlatAttribute(parts[0])
    return NestedCollection(parts[0], parts[1])


def _target_text(target: AttributeTarget) -> str:
    if isinstance(target, NestedCollection):
        return f"{target.collection}.{target.field}"
    return target.name


def identifiers_for(sp: dict) -> List[str]:
    ids = list(sp.get("servicePrincipalNames") or [])
    app_id = sp.get("appId")
    if app_id and app_id not in ids:
        ids.append(app_id)
    return ids


def _regex_matches(sp: dict, target: AttributeTarget, pattern: str) -> bool:
    rx = re.compile(pattern)
    if isinstance(target, NestedCollection):
        items = sp.get(target.collection) or []
        for item in items:
            if not isinstance(item, dict):
                continue
            value = item.get(target.field)
            if value is not None and rx.search(str(value)):
                return True
        return False

    value = sp.get(target.name)
    return value is not None and bool(rx.search(str(value)))


def _equals_matches(sp: dict, target: AttributeTarget, expected: str) -> bool:
    if isinstance(target, NestedCollection):
        return False
    value = sp.get(target.name)
    return value is not None and str(value) == expected


def validation_passes(sp: dict, validation: SecondaryValidation) -> bool:
    if validation.kind is ValidationKind.REGEX:
        return _regex_matches(sp, validation.target, validation.expected)
    return _equals_matches(sp, validation.target, validation.expected)


def match_managed_app(sp: dict, definitions: Iterable[ManagedAppDefinition]) -> ManagedAppMatch:
    """
    A service principal is vendor-managed only when one of a definition's
    identifiers is present AND the definition's secondary validation passes.
    Definitions without a validation rule never match.
    """
    sp_ids = set(identifiers_for(sp))

    for definition in definitions:
        hit = next((i for i in definition.identifiers if i in sp_ids), None)
        if hit is None:
            continue

        if definition.validation is None:
            logger.debug(
                "Managed app definition '%s' has no secondary validation; skipping %s",
                definition.name,
                sp.get("id"),
            )
            continue

        v = definition.validation
        if validation_passes(sp, v):
            reason = (
                f"Identifier '{hit}' matched and {_target_text(v.target)} "
                f"{v.kind.value} '{v.expected}' passed"
            )
            return ManagedAppMatch(True, definition.name, reason)

    return NOT_MANAGED


def definition_from_dict(raw: dict) -> ManagedAppDefinition:
    if not isinstance(raw, dict):
        raise InvalidDefinition(f"Managed app definition must be an object: {raw!r}")
    name = raw.get("name")
    identifiers = raw.get("identifiers") or []
    if not name or not identifiers or not isinstance(identifiers, list):
        raise InvalidDefinition(f"Managed app definition needs a name and identifiers: {raw!r}")

    validation = None
    rule = raw.get("validation")
    if rule:
        if not isinstance(rule, dict):
            raise InvalidDefinition(f"Validation for '{name}' must be an object")
        try:
            kind = ValidationKind(rule.get("kind"))
        except ValueError as e:
            raise InvalidDefinition(f"Unknown validation kind in '{name}'", cause=e) from e
        expected = rule.get("value")
        if not isinstance(expected, str):
            raise InvalidDefinition(f"Validation for '{name}' needs a string value")
        if kind is ValidationKind.REGEX:
            try:
                re.compile(expected)
            except re.error as e:
                raise InvalidDefinition(f"Bad regex in '{name}'", cause=e) from e
        validation = SecondaryValidation(kind, parse_attribute_path(rule.get("attribute") or ""), expected)

    return ManagedAppDefinition(name, tuple(identifiers), validation)


def load_definitions(path: str) -> List[ManagedAppDefinition]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidDefinition(f"{path} is not valid JSON", cause=e) from e
    if not isinstance(raw, list):
        raise InvalidDefinition(f"{path} must hold a list of definitions")
    return [definition_from_dict(d) for d in raw]


DEFAULT_DEFINITIONS = [
    ManagedAppDefinition(
        name="P2P Server",
        identifiers=("urn:p2p_cert",),
        validation=SecondaryValidation(
            ValidationKind.REGEX,
            NestedCollection("keyCredentials", "displayName"),
            r"^CN=MS-Organization-P2P-Access",
        ),
    ),
    ManagedAppDefinition(
        name="Office 365 Exchange Online",
        identifiers=("00000002-0000-0ff1-ce00-000000000000",),
        validation=SecondaryValidation(
            ValidationKind.EQUALS,
            FlatAttribute("appOwnerOrganizationId"),
            MICROSOFT_TENANT_ID,
        ),
    ),
    ManagedAppDefinition(
        name="Office 365 SharePoint Online",
        identifiers=("00000003-0000-0ff1-ce00-000000000000",),
        validation=SecondaryValidation(
            ValidationKind.EQUALS,
            FlatAttribute("appOwnerOrganizationId"),
            MICROSOFT_TENANT_ID,
        ),
    ),
]
