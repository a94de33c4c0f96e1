"""Tests for the models module."""

import itertools
from datetime import UTC, datetime

import pytest

from ponghub.models import EndpointResult, HistoryEntry, ServiceResult, TriState, merge_status

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_endpoint(status: TriState, attempts: int = 1, successes: int = 0) -> EndpointResult:
    return EndpointResult(
        url="https://example.com",
        method="GET",
        status=status,
        start_time=T0,
        end_time=T0,
        attempt_num=attempts,
        success_num=successes,
    )


class TestMergeStatus:
    """Tests for merge_status function."""

    def test_empty_is_down(self) -> None:
        """No statuses at all counts as down."""
        assert merge_status([]) == TriState.DOWN

    def test_single_up(self) -> None:
        assert merge_status([TriState.UP]) == TriState.UP

    def test_single_down(self) -> None:
        assert merge_status([TriState.DOWN]) == TriState.DOWN

    def test_single_partial(self) -> None:
        """A partial input stays partial."""
        assert merge_status([TriState.PARTIAL]) == TriState.PARTIAL

    def test_all_up(self) -> None:
        assert merge_status([TriState.UP, TriState.UP, TriState.UP]) == TriState.UP

    def test_all_down(self) -> None:
        assert merge_status([TriState.DOWN, TriState.DOWN]) == TriState.DOWN

    def test_up_and_down_is_partial(self) -> None:
        assert merge_status([TriState.UP, TriState.DOWN]) == TriState.PARTIAL

    @pytest.mark.parametrize(
        "statuses",
        [
            [TriState.UP, TriState.PARTIAL],
            [TriState.DOWN, TriState.PARTIAL],
            [TriState.UP, TriState.DOWN, TriState.PARTIAL],
        ],
    )
    def test_any_partial_is_partial(self, statuses: list[TriState]) -> None:
        assert merge_status(statuses) == TriState.PARTIAL

    def test_order_does_not_matter(self) -> None:
        """Every permutation of a mixed input merges to the same value."""
        statuses = [TriState.UP, TriState.DOWN, TriState.UP]
        merged = {merge_status(list(p)) for p in itertools.permutations(statuses)}
        assert merged == {TriState.PARTIAL}

    def test_accepts_generator(self) -> None:
        assert merge_status(s for s in [TriState.UP]) == TriState.UP

    def test_nested_merge_matches_flat_merge(self) -> None:
        """Merging merged groups gives the same result as merging everything."""
        a = [TriState.UP, TriState.UP]
        b = [TriState.DOWN]
        assert merge_status([merge_status(a), merge_status(b)]) == merge_status(a + b)

    def test_tokens_are_stable(self) -> None:
        """Log file tokens do not change."""
        assert TriState.UP.value == "all"
        assert TriState.DOWN.value == "none"
        assert TriState.PARTIAL.value == "part"


class TestServiceResult:
    """Tests for ServiceResult.from_endpoints."""

    def test_sums_counts(self) -> None:
        endpoints = [
            make_endpoint(TriState.UP, attempts=3, successes=1),
            make_endpoint(TriState.DOWN, attempts=2, successes=0),
        ]
        result = ServiceResult.from_endpoints("svc", endpoints, T0, T0)

        assert result.attempt_num == 5
        assert result.success_num == 1

    def test_merges_statuses(self) -> None:
        endpoints = [make_endpoint(TriState.UP), make_endpoint(TriState.DOWN)]
        result = ServiceResult.from_endpoints("svc", endpoints, T0, T0)

        assert result.status == TriState.PARTIAL

    def test_all_endpoints_up(self) -> None:
        endpoints = [make_endpoint(TriState.UP), make_endpoint(TriState.UP)]
        result = ServiceResult.from_endpoints("svc", endpoints, T0, T0)

        assert result.status == TriState.UP
        assert result.name == "svc"
        assert len(result.endpoints) == 2

    def test_no_endpoints_is_down(self) -> None:
        result = ServiceResult.from_endpoints("svc", [], T0, T0)

        assert result.status == TriState.DOWN
        assert result.attempt_num == 0


class TestHistoryEntry:
    """Tests for HistoryEntry serialisation."""

    def test_service_entry_omits_response_time(self) -> None:
        entry = HistoryEntry(time="2026-01-01T00:00:00+00:00", status="all")
        assert entry.to_dict() == {"time": "2026-01-01T00:00:00+00:00", "status": "all"}

    def test_endpoint_entry_includes_response_time(self) -> None:
        entry = HistoryEntry(time="2026-01-01T00:00:00+00:00", status="none", response_time_ms=0)
        assert entry.to_dict()["response_time_ms"] == 0
