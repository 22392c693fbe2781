#!/usr/bin/env python3
"""
probe_filter_limits.py

Probes how many values Graph accepts in an `appId in (...)` filter for
this tenant. The same appId list is queried at each --sizes batch size
and the number of successful / rejected batches is reported, along with
the longest filter expression sent.

Rejected batches are expected here, they are the point of the test.
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional

from dotenv import load_dotenv
load_dotenv(override=True)

from entra_audit.batching import (
    MAX_BATCH_SIZE,
    BatchOutcome,
    build_in_filter,
    fetch_in_batches,
    partition_into_batches,
    retry_failures,
    validate_batch_size,
)
from entra_audit.errors import RemoteQueryFailure
from entra_audit.export import write_csv
from entra_audit.graph_utils import list_applications, list_service_principals
from entra_audit.identifiers import read_identifiers, split_guids
from entra_audit.progress import build_progress_bar

DEFAULT_SIZES = [5, 10, 15, 20]


@dataclass
class SizeResult:
    batch_size: int
    batches: int
    failed_batches: int
    records: int
    longest_filter: int
    retried_failed_batches: Optional[int] = None

    def as_row(self) -> dict:
        return {
            "BatchSize": self.batch_size,
            "Batches": self.batches,
            "FailedBatches": self.failed_batches,
            "Records": self.records,
            "LongestFilterLength": self.longest_filter,
            "FailedAfterRetry": "" if self.retried_failed_batches is None else self.retried_failed_batches,
        }


def parse_sizes(value: str) -> List[int]:
    sizes = [int(v) for v in value.split(",") if v.strip()]
    for s in sizes:
        validate_batch_size(s)
    return sizes


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Test Graph `in` filter limits with batched appId queries.")
    parser.add_argument("ids_file", help="File with one appId per line")
    parser.add_argument("--sizes", default=",".join(str(s) for s in DEFAULT_SIZES),
                        help=f"Comma separated batch sizes, each 1-{MAX_BATCH_SIZE} (default: 5,10,15,20)")
    parser.add_argument("--collection", choices=["applications", "servicePrincipals"], default="servicePrincipals")
    parser.add_argument("--retry-smaller", action="store_true",
                        help="Re-run ids from failed batches at half the batch size")
    parser.add_argument("--output", help="Path to export the per-size results as CSV")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)
    try:
        args.sizes = parse_sizes(args.sizes)
    except ValueError as e:
        parser.error(str(e))
    return args


def longest_filter(ids: List[str], batch_size: int) -> int:
    return max((len(build_in_filter("appId", b)) for b in partition_into_batches(ids, batch_size)), default=0)


def probe_size(
    ids: List[str],
    batch_size: int,
    fetch: Callable[[List[str]], List[dict]],
    retry_smaller: bool = False,
) -> SizeResult:
    outcome: BatchOutcome = fetch_in_batches(ids, batch_size, fetch)
    result = SizeResult(
        batch_size=batch_size,
        batches=outcome.batches_run,
        failed_batches=len(outcome.failures),
        records=len(outcome.records),
        longest_filter=longest_filter(ids, batch_size),
    )
    if retry_smaller and not outcome.ok:
        retried = retry_failures(outcome, max(1, batch_size // 2), fetch)
        result.retried_failed_batches = len(retried.failures)
        result.records = len(retried.records)
    return result


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    ids, malformed = split_guids(read_identifiers(args.ids_file))
    print(f"[Input] {len(ids)} appIds loaded, {len(malformed)} malformed skipped.")
    if not ids:
        return 1

    list_fn = list_applications if args.collection == "applications" else list_service_principals

    def fetch(batch: List[str]) -> List[dict]:
        return list_fn(filter_expr=build_in_filter("appId", batch), select="id,appId,displayName")

    results = []
    for index, size in enumerate(args.sizes, start=1):
        print(f"\n{build_progress_bar(index - 1, len(args.sizes))}  batch size {size}")
        try:
            result = probe_size(ids, size, fetch, args.retry_smaller)
        except RemoteQueryFailure as e:
            print(f"!! Could not query {args.collection}: {e}")
            return 2
        results.append(result)
        print(f"  batches={result.batches} failed={result.failed_batches} "
              f"records={result.records} longest filter={result.longest_filter} chars")
        if result.retried_failed_batches is not None:
            print(f"  after retry at size {max(1, size // 2)}: {result.retried_failed_batches} still failing")

    print(f"\n{build_progress_bar(len(args.sizes), len(args.sizes))}")
    print(f"\n{'Size':<6} | {'Batches':<8} | {'Failed':<7} | {'Records':<8} | {'Longest filter'}")
    print("-" * 60)
    for r in results:
        print(f"{r.batch_size:<6} | {r.batches:<8} | {r.failed_batches:<7} | {r.records:<8} | {r.longest_filter}")

    if args.output:
        write_csv([r.as_row() for r in results], args.output)
        print(f"[Export] Wrote {len(results)} rows to {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
