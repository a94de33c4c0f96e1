"""Data models for probe results and history entries."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TriState(str, Enum):
    """Aggregate health across repeated checks or sub-resources.

    The values are the tokens written to the log file.
    """

    UP = "all"
    DOWN = "none"
    PARTIAL = "part"


def merge_status(statuses: Iterable[TriState]) -> TriState:
    """Reduce a set of statuses to a single TriState.

    Args:
        statuses: Statuses of attempts, duplicate URLs or endpoints.

    Returns:
        DOWN for an empty input or only DOWN values, UP for only UP values,
        PARTIAL for everything else.
    """
    seen = set(statuses)
    if not seen:
        return TriState.DOWN
    if seen == {TriState.DOWN}:
        return TriState.DOWN
    if seen == {TriState.UP}:
        return TriState.UP
    return TriState.PARTIAL


@dataclass(frozen=True)
class HighlightSegment:
    """A piece of a display URL, flagged when it came from a substitution."""

    text: str
    highlight: bool = False


@dataclass
class EndpointResult:
    """Result of probing one endpoint.

    Attributes:
        url: URL as configured (may contain parameter templates).
        method: HTTP method used.
        status: UP if any attempt succeeded, DOWN otherwise.
        status_code: Last status code received, or None if no response arrived.
        start_time: When the first attempt started (UTC).
        end_time: When the retry loop finished (UTC).
        response_time_ms: Largest successful latency in milliseconds.
        attempt_num: Number of attempts made.
        success_num: Number of successful attempts.
        failure_details: One human-readable line per failed attempt, plus
            certificate inspection errors.
        response_body: Body of the last response, kept only when it failed.
        is_https: Whether certificate data is available for this endpoint.
        cert_remaining_days: Whole days until the leaf certificate expires.
        is_cert_expired: Whether the certificate has expired.
        display_url: Resolved URL safe for display.
        highlight_segments: Parts of display_url, flagging substitutions.
        body: Request body as configured.
    """

    url: str
    method: str
    status: TriState
    start_time: datetime
    end_time: datetime
    status_code: int | None = None
    response_time_ms: int = 0
    attempt_num: int = 0
    success_num: int = 0
    failure_details: list[str] = field(default_factory=list)
    response_body: str | None = None
    is_https: bool = False
    cert_remaining_days: int = 0
    is_cert_expired: bool = False
    display_url: str = ""
    highlight_segments: list[HighlightSegment] = field(default_factory=list)
    body: str = ""


@dataclass
class ServiceResult:
    """Result of probing all endpoints of one service."""

    name: str
    status: TriState
    start_time: datetime
    end_time: datetime
    endpoints: list[EndpointResult] = field(default_factory=list)
    attempt_num: int = 0
    success_num: int = 0

    @classmethod
    def from_endpoints(
        cls,
        name: str,
        endpoints: list[EndpointResult],
        started_at: datetime,
        ended_at: datetime,
    ) -> "ServiceResult":
        """Build a service result, merging endpoint statuses and summing counts."""
        return cls(
            name=name,
            status=merge_status(ep.status for ep in endpoints),
            start_time=started_at,
            end_time=ended_at,
            endpoints=list(endpoints),
            attempt_num=sum(ep.attempt_num for ep in endpoints),
            success_num=sum(ep.success_num for ep in endpoints),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One point in a history series.

    Attributes:
        time: ISO-8601 timestamp of the check.
        status: TriState token ("all", "none" or "part").
        response_time_ms: Response time for endpoint entries, None for services.
    """

    time: str
    status: str
    response_time_ms: int | None = None

    def to_dict(self) -> dict:
        data: dict = {"time": self.time, "status": self.status}
        if self.response_time_ms is not None:
            data["response_time_ms"] = self.response_time_ms
        return data
