#!/usr/bin/env python3
"""
remove_expired_credentials.py

For each given application (or service principal) object id, finds
secrets and certificates that expired more than --min-days-expired days
ago. Each expired secret is removed after a y/n confirmation; expired
certificates are listed with a portal link for manual removal. With --note the
removal is also recorded in the application's notes field.

Ids that are not GUIDs are skipped with a warning and counted separately.
--dry-run asks the same questions but removes nothing.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
load_dotenv(override=True)

from entra_audit.credential_status import CredentialStatus
from entra_audit.credentials import IGNORE_EXPIRATION_DAYS, CredentialKind, credential_rows
from entra_audit.errors import RemoteQueryFailure
from entra_audit.graph_utils import (
    get_object,
    portal_credentials_url,
    remove_password_credential,
    update_application_notes,
)
from entra_audit.identifiers import parse_id_list, read_identifiers, split_guids
from entra_audit.progress import build_progress_bar
from entra_audit.time_utils import format_utc, utc_now

OBJECT_SELECT = "id,appId,displayName,notes,passwordCredentials,keyCredentials"


@dataclass
class RunCounts:
    processed: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0
    notes_failed: int = 0
    malformed: int = 0


# -----------------------------
# Helpers
# -----------------------------

def append_app_notes(app_obj_id: str, current_notes: Optional[str], extra_line: str) -> str:
    """
    Append extra_line to the application's notes field and return the new
    notes string. Raises RemoteQueryFailure if the update is rejected.
    """
    if current_notes:
        new_notes = current_notes.rstrip() + "\n" + extra_line
    else:
        new_notes = extra_line

    update_application_notes(app_obj_id, new_notes)
    print("  -> Application notes updated.")
    return new_notes


def expired_candidates(obj: dict, collection: str, min_days_expired: int, reference) -> List[dict]:
    object_type = "Application" if collection == "applications" else "ServicePrincipal"
    rows = credential_rows(obj, object_type, reference, threshold_days=IGNORE_EXPIRATION_DAYS)
    return [
        r for r in rows
        if r["_status"] is CredentialStatus.EXPIRED and r["DaysPastExpiration"] > min_days_expired
    ]


def note_line(row: dict, today: str) -> str:
    return (
        f"Expired {row['CredentialType'].lower()} '{row['CredentialName']}' (keyId {row['KeyId']}) "
        f"with expiration date {format_utc(row['EndDate'])} was removed on {today}."
    )


def confirm(prompt: str) -> bool:
    return input(prompt).strip().lower() == "y"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Interactively remove long-expired app credentials.")
    parser.add_argument("--ids", help="Comma separated object ids")
    parser.add_argument("--ids-file", help="File with one object id per line")
    parser.add_argument("--collection", choices=["applications", "servicePrincipals"], default="applications")
    parser.add_argument("--min-days-expired", type=int, default=30,
                        help="Only offer credentials expired more than this many days ago (default: 30)")
    parser.add_argument("--note", action="store_true", help="Record each removal in the application's notes")
    parser.add_argument("--dry-run", action="store_true", help="Do not remove anything")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)
    if not args.ids and not args.ids_file:
        parser.error("one of --ids or --ids-file is required")
    return args


def process_object(obj: dict, args: argparse.Namespace, reference, counts: RunCounts) -> None:
    obj_id = obj["id"]
    current_notes = obj.get("notes") or ""
    today = reference.date().isoformat()

    candidates = expired_candidates(obj, args.collection, args.min_days_expired, reference)
    if not candidates:
        print(f"  -> No credentials expired > {args.min_days_expired} days ago.")
        return

    for row in candidates:
        print(f"  -> EXPIRED {row['CredentialType'].upper()} FOUND")
        print(f"     displayName : {row['CredentialName']}")
        print(f"     keyId       : {row['KeyId']}")
        print(f"     endDateTime : {format_utc(row['EndDate'])} (≈{row['DaysPastExpiration']} days ago)")

        if row["CredentialType"] != CredentialKind.SECRET.value:
            # removeKey requires a proof JWT
            url = portal_credentials_url(args.collection, obj_id, obj.get("appId"))
            print(f"  Certificates must be removed in the portal: {url}")
            counts.skipped += 1
            continue

        if not confirm("  Remove this secret? (y/n): "):
            print("  Skipping this credential.")
            counts.skipped += 1
            continue

        if args.dry_run:
            print("  [dry-run] Would remove credential.")
            counts.skipped += 1
            continue

        try:
            remove_password_credential(args.collection, obj_id, row["KeyId"])
        except RemoteQueryFailure as e:
            print(f"  !! Failed to remove credential: {e}")
            counts.failed += 1
            continue

        print("  -> Credential removed.")
        counts.removed += 1
        if args.note and args.collection == "applications":
            try:
                current_notes = append_app_notes(obj_id, current_notes, note_line(row, today))
            except RemoteQueryFailure as e:
                print(f"  !! Failed to update notes: {e}")
                counts.notes_failed += 1


# -----------------------------
# Main
# -----------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    raw_ids: List[str] = []
    if args.ids:
        raw_ids.extend(parse_id_list(args.ids))
    if args.ids_file:
        raw_ids.extend(read_identifiers(args.ids_file))

    ids, malformed = split_guids(raw_ids)
    counts = RunCounts(malformed=len(malformed))
    reference = utc_now()

    for index, obj_id in enumerate(ids, start=1):
        print(f"\n{build_progress_bar(index, len(ids))}  {obj_id}")
        try:
            obj = get_object(args.collection, obj_id, OBJECT_SELECT)
        except RemoteQueryFailure as e:
            if e.is_unavailable:
                print(f"!! Graph unavailable: {e}")
                return 2
            print(f"  !! Could not read {args.collection}/{obj_id}: {e}")
            counts.failed += 1
            continue

        counts.processed += 1
        print(f"  {obj.get('displayName')} (appId={obj.get('appId')})")
        process_object(obj, args, reference, counts)

    print(
        f"\nDone. processed={counts.processed} removed={counts.removed} skipped={counts.skipped} "
        f"failed={counts.failed} notes_failed={counts.notes_failed} malformed={counts.malformed}"
    )
    return 1 if counts.failed or counts.notes_failed else 0


if __name__ == "__main__":
    sys.exit(main())
