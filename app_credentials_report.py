#!/usr/bin/env python3
"""
app_credentials_report.py

Reports secrets and certificates on app registrations and/or service
principals that are expired or expire within --days.

By default every object in the tenant is scanned. With --app-ids or
--app-ids-file only those appIds are queried, in batches of --batch-size
using `appId in (...)` filters. A batch Graph rejects is reported at the
end and the remaining batches still run.
"""

import argparse
import functools
import logging
import sys
from typing import Callable, List, Optional

from dotenv import load_dotenv
load_dotenv(override=True)

from entra_audit.batching import (
    MAX_BATCH_SIZE,
    BatchOutcome,
    build_in_filter,
    fetch_in_batches,
    validate_batch_size,
)
from entra_audit.credentials import (
    DEFAULT_THRESHOLD_DAYS,
    IGNORE_EXPIRATION_DAYS,
    aggregate_credentials,
    sort_rows,
)
from entra_audit.errors import RemoteQueryFailure
from entra_audit.export import write_csv
from entra_audit.graph_utils import get_owners, list_applications, list_service_principals
from entra_audit.identifiers import parse_id_list, read_identifiers, split_guids
from entra_audit.owners import OwnerCache, lookup_owners, owner_fetcher
from entra_audit.sso_type import SsoType, resolve_sso_type
from entra_audit.time_utils import utc_now

OBJECT_TYPES = {
    "applications": "Application",
    "servicePrincipals": "ServicePrincipal",
}


# -----------------------------
# Helpers
# -----------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Report expiring Entra ID app secrets and certificates.")
    parser.add_argument("--days", type=int, default=DEFAULT_THRESHOLD_DAYS,
                        help=f"Include credentials expiring within this many days (default: {DEFAULT_THRESHOLD_DAYS})")
    parser.add_argument("--ignore-expiration", action="store_true",
                        help="Include every credential regardless of expiration date")
    parser.add_argument("--exclude-expired", action="store_true", help="Leave already expired credentials out")
    parser.add_argument("--flatten", action="store_true", help="One summary row per object")
    parser.add_argument("--object-type", choices=["applications", "servicePrincipals", "both"],
                        default="applications")
    parser.add_argument("--app-ids", help="Comma separated appIds to query instead of the whole tenant")
    parser.add_argument("--app-ids-file", help="File with one appId per line")
    parser.add_argument("--batch-size", type=int, default=10,
                        help=f"appIds per filter query, 1-{MAX_BATCH_SIZE} (default: 10)")
    parser.add_argument("--include-owners", action="store_true", help="Add an Owners column")
    parser.add_argument("--exclude-managed-identities", action="store_true",
                        help="Skip service principals of type ManagedIdentity")
    parser.add_argument("--sso-type", action="append", choices=[t.value for t in SsoType],
                        help="Only service principals resolving to this SSO type (repeatable)")
    parser.add_argument("--output", help="Path to export results as CSV")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    try:
        validate_batch_size(args.batch_size)
    except ValueError as e:
        parser.error(str(e))
    if args.sso_type and args.object_type == "applications":
        parser.error("--sso-type needs --object-type servicePrincipals or both")
    return args


def requested_app_ids(args: argparse.Namespace) -> List[str]:
    ids: List[str] = []
    if args.app_ids:
        ids.extend(parse_id_list(args.app_ids))
    if args.app_ids_file:
        ids.extend(read_identifiers(args.app_ids_file))
    return ids


def batched_fetcher(list_fn: Callable[..., List[dict]]) -> Callable[[List[str]], List[dict]]:
    def fetch(batch: List[str]) -> List[dict]:
        return list_fn(filter_expr=build_in_filter("appId", batch))
    return fetch


def report_failures(label: str, outcome: BatchOutcome) -> None:
    if outcome.ok:
        return
    print(f"[Batch] {len(outcome.failures)} of {outcome.batches_run} {label} batches failed:")
    for failure in outcome.failures:
        print(f"  batch {failure.index + 1}: {len(failure.identifiers)} ids -> {failure.error}")
    print("  Re-run those ids with a smaller --batch-size.")


def not_managed_identity(obj: dict) -> bool:
    return obj.get("servicePrincipalType") != "ManagedIdentity"


def sso_type_filter(sso_types: List[str]) -> Callable[[dict], bool]:
    wanted = {SsoType(t) for t in sso_types}

    def keep(obj: dict) -> bool:
        return resolve_sso_type(obj).sso_type in wanted
    return keep


def object_filter_for(collection: str, args: argparse.Namespace) -> Optional[Callable[[dict], bool]]:
    filters = []
    if args.exclude_managed_identities:
        filters.append(not_managed_identity)
    # applications carry no SSO settings
    if args.sso_type and collection == "servicePrincipals":
        filters.append(sso_type_filter(args.sso_type))
    if not filters:
        return None
    return lambda obj: all(f(obj) for f in filters)


def print_rows(rows: List[dict], flatten: bool) -> None:
    if flatten:
        print(f"{'Name':<30} | {'Worst':<15} | {'Total':<5} | {'Earliest':<20} | {'Object ID'}")
        print("-" * 110)
        for r in rows:
            earliest = r["EarliestExpiration"].strftime("%Y-%m-%d") if r["EarliestExpiration"] else "Never"
            print(f"{r['DisplayName'][:28]:<30} | {r['WorstStatus']:<15} | {r['TotalCredentials']:<5} | "
                  f"{earliest:<20} | {r['ObjectId']}")
        return

    print(f"{'Name':<30} | {'Type':<22} | {'Status':<15} | {'Days':<5} | {'Expires':<20} | {'Object ID'}")
    print("-" * 130)
    for r in rows:
        days = "" if r["DaysRemaining"] is None else str(r["DaysRemaining"])
        expires = r["EndDate"].strftime("%Y-%m-%d") if r["EndDate"] else "Never"
        print(f"{r['DisplayName'][:28]:<30} | {r['CredentialType']:<22} | {r['Status']:<15} | {days:<5} | "
              f"{expires:<20} | {r['ObjectId']}")


# -----------------------------
# Main
# -----------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    threshold = IGNORE_EXPIRATION_DAYS if args.ignore_expiration else args.days
    reference = utc_now()
    sources = ["applications", "servicePrincipals"] if args.object_type == "both" else [args.object_type]

    requested = requested_app_ids(args)
    app_ids: List[str] = []
    if requested:
        app_ids, malformed = split_guids(requested)
        print(f"[Input] {len(app_ids)} appIds to query, {len(malformed)} malformed skipped.")

    owner_cache = OwnerCache()
    all_rows: List[dict] = []
    failed = False

    for collection in sources:
        object_type = OBJECT_TYPES[collection]
        list_fn = list_applications if collection == "applications" else list_service_principals
        print(f"[Graph] Fetching {collection}...")

        try:
            if requested:
                outcome = fetch_in_batches(app_ids, args.batch_size, batched_fetcher(list_fn))
                report_failures(collection, outcome)
                failed = failed or not outcome.ok
                objects = outcome.records
            else:
                objects = list_fn()
        except RemoteQueryFailure as e:
            print(f"!! Could not query {collection}: {e}")
            if e.is_authorization_error:
                print("[!] PERMISSION ERROR: Application.Read.All is required.")
            return 2

        print(f"[Graph] {len(objects)} {collection} retrieved.")

        owner_lookup = None
        if args.include_owners:
            fetch_owners = owner_fetcher(collection, get_owners)
            owner_lookup = functools.partial(lookup_owners, fetch=fetch_owners, cache=owner_cache)

        all_rows.extend(aggregate_credentials(
            objects,
            threshold_days=threshold,
            exclude_expired=args.exclude_expired,
            flatten=args.flatten,
            reference=reference,
            object_type=object_type,
            owner_lookup=owner_lookup,
            object_filter=object_filter_for(collection, args),
        ))

    rows = sort_rows(all_rows, key="EarliestDaysRemaining" if args.flatten else "DaysRemaining")

    if not rows:
        print(f"No credentials found expiring within {threshold} days.")
    else:
        print(f"\nFound {len(rows)} {'objects' if args.flatten else 'credentials'}:\n")
        print_rows(rows, args.flatten)

    if args.output:
        print(f"\n[Export] Exporting results to {args.output}...")
        write_csv(rows, args.output)
        print("[Export] Export complete.")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
