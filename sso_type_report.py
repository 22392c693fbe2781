#!/usr/bin/env python3
"""
sso_type_report.py

Lists service principals with their detected single sign-on type and
flags the ones that are vendor-managed (Microsoft first-party apps that
happen to live in the tenant).

By default only enterprise apps (tag WindowsAzureActiveDirectoryIntegratedApp)
are listed; --all-service-principals drops that filter.
"""

import argparse
import logging
import sys
from typing import Iterable, List, Optional

from dotenv import load_dotenv
load_dotenv(override=True)

from entra_audit.errors import InvalidDefinition, RemoteQueryFailure
from entra_audit.export import write_csv
from entra_audit.graph_utils import list_service_principals
from entra_audit.managed_apps import DEFAULT_DEFINITIONS, ManagedAppDefinition, load_definitions, match_managed_app
from entra_audit.sso_type import SsoType, resolve_sso_type

ENTERPRISE_APP_FILTER = "tags/any(t:t eq 'WindowsAzureActiveDirectoryIntegratedApp')"

SSO_CHOICES = [t.value for t in SsoType]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classify Entra ID service principals by SSO type.")
    parser.add_argument("--sso-type", action="append", choices=SSO_CHOICES,
                        help="Only report this SSO type (repeatable)")
    parser.add_argument("--exclude-managed", action="store_true", help="Leave vendor-managed apps out")
    parser.add_argument("--definitions", help="JSON file with managed app definitions (default: built-in list)")
    parser.add_argument("--all-service-principals", action="store_true",
                        help="Do not restrict to enterprise applications")
    parser.add_argument("--output", help="Path to export results as CSV")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def build_rows(
    service_principals: Iterable[dict],
    definitions: List[ManagedAppDefinition],
    sso_types: Optional[List[str]] = None,
    exclude_managed: bool = False,
) -> List[dict]:
    wanted = {SsoType(t) for t in sso_types} if sso_types else None
    rows = []
    for sp in service_principals:
        resolution = resolve_sso_type(sp)
        if wanted is not None and resolution.sso_type not in wanted:
            continue

        managed = match_managed_app(sp, definitions)
        if exclude_managed and managed.is_managed:
            continue

        row = {
            "DisplayName": sp.get("displayName") or "Unknown",
            "ObjectId": sp.get("id"),
            "AppId": sp.get("appId"),
            "ServicePrincipalType": sp.get("servicePrincipalType"),
            "AppOwnerOrganizationId": sp.get("appOwnerOrganizationId"),
        }
        row.update(resolution.as_row())
        row.update({
            "IsManaged": managed.is_managed,
            "ManagedDefinition": managed.matched_definition_name or "",
            "ManagedMatchReason": managed.match_reason or "",
        })
        rows.append(row)

    rows.sort(key=lambda r: (r["SsoType"], r["DisplayName"].lower()))
    return rows


def summarize(rows: List[dict]) -> dict:
    counts: dict = {}
    for r in rows:
        counts[r["SsoType"]] = counts.get(r["SsoType"], 0) + 1
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    definitions = DEFAULT_DEFINITIONS
    if args.definitions:
        try:
            definitions = load_definitions(args.definitions)
        except InvalidDefinition as e:
            print(f"!! Invalid managed app definitions in {args.definitions}: {e}")
            return 2
        print(f"[Config] Loaded {len(definitions)} managed app definitions.")

    filter_expr = None if args.all_service_principals else ENTERPRISE_APP_FILTER
    print("[Graph] Fetching service principals...")
    try:
        sps = list_service_principals(filter_expr=filter_expr)
    except RemoteQueryFailure as e:
        print(f"!! Could not query service principals: {e}")
        return 2
    print(f"[Graph] {len(sps)} service principals retrieved.")

    rows = build_rows(sps, definitions, args.sso_type, args.exclude_managed)

    print(f"\n{len(rows)} service principals reported:")
    for sso_type, count in sorted(summarize(rows).items()):
        print(f"  {sso_type:<14} {count}")
    managed = sum(1 for r in rows if r["IsManaged"])
    if managed:
        print(f"  ({managed} vendor-managed)")

    if args.output:
        write_csv(rows, args.output)
        print(f"[Export] Wrote {len(rows)} rows to {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
