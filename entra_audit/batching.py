# entra_audit/batching.py
"""
Splitting large id lists into `$filter=appId in (...)` sized batches.

Graph rejects `in` clauses past an undocumented ceiling (around 15 values
or ~3000 characters in practice, and it varies). A rejected batch is an
expected, recoverable condition: it is recorded and the remaining batches
still run, so the caller can retry the failures with a smaller size.
Transport and authorization failures mean the directory is unavailable;
those stop the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from entra_audit.errors import RemoteQueryFailure

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 20


def validate_batch_size(batch_size: int) -> int:
    if not MIN_BATCH_SIZE <= batch_size <= MAX_BATCH_SIZE:
        raise ValueError(f"batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, got {batch_size}")
    return batch_size


def partition_into_batches(identifiers: Sequence[str], batch_size: int) -> List[List[str]]:
    """Contiguous chunks of batch_size; input order and duplicates are kept."""
    validate_batch_size(batch_size)
    ids = list(identifiers)
    return [ids[i:i + batch_size] for i in range(0, len(ids), batch_size)]


def quote_odata(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_in_filter(attribute: str, identifiers: Sequence[str]) -> str:
    return f"{attribute} in ({','.join(quote_odata(i) for i in identifiers)})"


@dataclass
class BatchFailure:
    index: int
    identifiers: List[str]
    error: RemoteQueryFailure


@dataclass
class BatchOutcome:
    records: List[dict] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)
    batches_run: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def failed_identifiers(self) -> List[str]:
        ids: List[str] = []
        for failure in self.failures:
            ids.extend(failure.identifiers)
        return ids


def run_batches(
    batches: Sequence[Sequence[str]],
    fetch: Callable[[List[str]], List[dict]],
) -> BatchOutcome:
    """
    Call fetch once per batch, in order. A RemoteQueryFailure rejecting one
    batch is collected on the outcome; an unavailable directory and any
    other exception propagate.
    """
    outcome = BatchOutcome()
    total = len(batches)
    for index, batch in enumerate(batches):
        batch = list(batch)
        outcome.batches_run += 1
        try:
            records = fetch(batch)
        except RemoteQueryFailure as e:
            if e.is_unavailable:
                raise
            logger.warning("[Batch] %d/%d failed (%d ids): %s", index + 1, total, len(batch), e)
            outcome.failures.append(BatchFailure(index, batch, e))
            continue
        logger.debug("[Batch] %d/%d returned %d records", index + 1, total, len(records))
        outcome.records.extend(records)
    return outcome


def fetch_in_batches(
    identifiers: Sequence[str],
    batch_size: int,
    fetch: Callable[[List[str]], List[dict]],
) -> BatchOutcome:
    return run_batches(partition_into_batches(identifiers, batch_size), fetch)


def retry_failures(
    outcome: BatchOutcome,
    batch_size: int,
    fetch: Callable[[List[str]], List[dict]],
) -> BatchOutcome:
    """Re-run the ids of failed batches at a smaller size and merge the result."""
    failed = outcome.failed_identifiers()
    if not failed:
        return outcome
    retried = fetch_in_batches(failed, batch_size, fetch)
    return BatchOutcome(
        records=outcome.records + retried.records,
        failures=retried.failures,
        batches_run=outcome.batches_run + retried.batches_run,
    )
