"""
tests/test_batching.py - entra_audit/batching.py
"""

import math

import pytest

from entra_audit.batching import (
    build_in_filter,
    fetch_in_batches,
    partition_into_batches,
    retry_failures,
    run_batches,
)
from entra_audit.errors import RemoteQueryFailure


def ids(n):
    return [f"id-{i}" for i in range(n)]


class TestPartition:
    def test_23_by_10(self):
        batches = partition_into_batches(ids(23), 10)
        assert [len(b) for b in batches] == [10, 10, 3]

    def test_empty(self):
        assert partition_into_batches([], 5) == []

    @pytest.mark.parametrize("n,k", [(1, 1), (7, 3), (20, 20), (40, 20), (41, 20), (15, 4)])
    def test_reconstructs_input(self, n, k):
        source = ids(n)
        batches = partition_into_batches(source, k)
        assert [i for b in batches for i in b] == source
        assert len(batches) == math.ceil(n / k)
        assert len(batches[-1]) == (n % k or k)

    def test_duplicates_are_kept(self):
        batches = partition_into_batches(["a", "a", "b"], 2)
        assert batches == [["a", "a"], ["b"]]

    @pytest.mark.parametrize("size", [0, -1, 21])
    def test_size_out_of_range(self, size):
        with pytest.raises(ValueError):
            partition_into_batches(ids(3), size)

    def test_accepts_generator(self):
        assert partition_into_batches((i for i in ids(3)), 2) == [["id-0", "id-1"], ["id-2"]]


class TestInFilter:
    def test_build(self):
        assert build_in_filter("appId", ["a", "b"]) == "appId in ('a','b')"

    def test_quotes_are_doubled(self):
        assert build_in_filter("displayName", ["O'Brien"]) == "displayName in ('O''Brien')"


class TestRunBatches:
    def test_failure_does_not_abort_siblings(self):
        calls = []

        def fetch(batch):
            calls.append(batch)
            if batch[0] == "id-10":
                raise RemoteQueryFailure("too many values", status_code=400)
            return [{"id": i} for i in batch]

        outcome = fetch_in_batches(ids(23), 10, fetch)

        assert len(calls) == 3
        assert outcome.batches_run == 3
        assert not outcome.ok
        assert len(outcome.records) == 13
        assert [r["id"] for r in outcome.records] == ids(10) + ids(23)[20:]
        assert outcome.failures[0].index == 1
        assert outcome.failed_identifiers() == ids(20)[10:]

    @pytest.mark.parametrize("status_code", [None, 401, 403])
    def test_unavailable_directory_propagates(self, status_code):
        calls = []

        def fetch(batch):
            calls.append(batch)
            raise RemoteQueryFailure("directory unavailable", status_code=status_code)

        with pytest.raises(RemoteQueryFailure):
            fetch_in_batches(ids(23), 10, fetch)
        assert len(calls) == 1

    def test_other_errors_propagate(self):
        def fetch(batch):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            run_batches([["a"]], fetch)

    def test_empty(self):
        outcome = run_batches([], lambda b: [])
        assert outcome.ok
        assert outcome.batches_run == 0
        assert outcome.records == []


class TestRetry:
    def test_retry_failed_batches_smaller(self):
        def fetch(batch):
            if len(batch) > 5:
                raise RemoteQueryFailure("filter too long", status_code=400)
            return [{"id": i} for i in batch]

        first = fetch_in_batches(ids(12), 10, fetch)
        assert len(first.failures) == 1
        assert len(first.records) == 2

        retried = retry_failures(first, 5, fetch)
        assert retried.ok
        assert sorted(r["id"] for r in retried.records) == sorted(ids(12))
        assert retried.batches_run == 2 + 2

    def test_retry_noop_when_ok(self):
        outcome = fetch_in_batches(ids(3), 2, lambda b: [])
        assert retry_failures(outcome, 1, lambda b: []) is outcome
