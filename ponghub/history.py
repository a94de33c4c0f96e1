"""JSON history log: per-service and per-endpoint status series with retention."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from .models import HistoryEntry, ServiceResult, TriState, merge_status

logger = logging.getLogger(__name__)

LOG_FILE_MODE = 0o644


class LogStoreError(Exception):
    """Raised when the log file cannot be read, parsed or written."""

    pass


def format_time(value: datetime) -> str:
    """Render a timestamp the way history entries store it."""
    return value.astimezone(UTC).isoformat(timespec="seconds")


def parse_time(value: str) -> datetime:
    """Parse an entry timestamp. Naive timestamps are taken as UTC.

    Raises:
        ValueError: If the value is not ISO-8601.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _entry_from_dict(data: object, where: str) -> HistoryEntry:
    if not isinstance(data, dict):
        raise LogStoreError(f"{where}: history entry must be an object")
    if "time" not in data or "status" not in data:
        raise LogStoreError(f"{where}: history entry is missing 'time' or 'status'")

    response_time = data.get("response_time_ms", data.get("response_time"))
    if response_time is not None and not isinstance(response_time, int):
        raise LogStoreError(f"{where}: response_time_ms must be an integer")

    return HistoryEntry(time=str(data["time"]), status=str(data["status"]), response_time_ms=response_time)


@dataclass
class HistorySeries:
    """Chronological list of history entries for one service or URL."""

    entries: list[HistoryEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def add_entry(self, entry: HistoryEntry) -> None:
        """Append an entry. Entries from a new run are never older than stored ones."""
        self.entries.append(entry)

    def prune_older_than(self, max_days: int, now: datetime | None = None) -> int:
        """Drop entries older than max_days days.

        Entries whose timestamp cannot be parsed are dropped as well.

        Returns:
            Number of removed entries.
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(days=max_days)
        kept: list[HistoryEntry] = []
        for entry in self.entries:
            try:
                if parse_time(entry.time) >= cutoff:
                    kept.append(entry)
            except ValueError:
                logger.warning("Dropping history entry with invalid time %r", entry.time)
        removed = len(self.entries) - len(kept)
        self.entries = kept
        return removed

    def to_list(self) -> list[dict]:
        return [entry.to_dict() for entry in self.entries]

    @classmethod
    def from_list(cls, data: object, where: str) -> "HistorySeries":
        if data is None:
            return cls()
        if not isinstance(data, list):
            raise LogStoreError(f"{where}: history must be a list")
        return cls([_entry_from_dict(item, where) for item in data])


@dataclass
class ServiceLog:
    """History of one service and of each of its endpoint URLs."""

    service_history: HistorySeries = field(default_factory=HistorySeries)
    ports_data: dict[str, HistorySeries] = field(default_factory=dict)

    def series_for(self, url: str) -> HistorySeries:
        """Return the series of a URL, creating it if needed."""
        return self.ports_data.setdefault(url, HistorySeries())

    def all_series(self) -> list[HistorySeries]:
        return [self.service_history, *self.ports_data.values()]


@dataclass
class LogStore:
    """All persisted history, keyed by service name."""

    services: dict[str, ServiceLog] = field(default_factory=dict)

    def service(self, name: str) -> ServiceLog:
        """Return the record of a service, creating it if needed."""
        return self.services.setdefault(name, ServiceLog())

    def to_dict(self) -> dict:
        return {
            name: {
                "service_history": record.service_history.to_list(),
                "ports_data": {url: series.to_list() for url, series in record.ports_data.items()},
            }
            for name, record in self.services.items()
        }

    @classmethod
    def from_dict(cls, data: object) -> "LogStore":
        """Build a store from decoded JSON.

        Raises:
            LogStoreError: If the document does not have the expected shape.
        """
        if not isinstance(data, dict):
            raise LogStoreError("Log file must contain a JSON object")

        store = cls()
        for name, record in data.items():
            if not isinstance(record, dict):
                raise LogStoreError(f"Service '{name}': record must be an object")
            ports = record.get("ports_data") or {}
            if not isinstance(ports, dict):
                raise LogStoreError(f"Service '{name}': ports_data must be an object")
            store.services[name] = ServiceLog(
                service_history=HistorySeries.from_list(record.get("service_history"), f"Service '{name}'"),
                ports_data={
                    url: HistorySeries.from_list(series, f"Service '{name}' URL '{url}'")
                    for url, series in ports.items()
                },
            )
        return store


def load_log(log_path: str | Path) -> LogStore:
    """Load the log store from disk.

    Args:
        log_path: Path to the JSON log file.

    Returns:
        The stored history, or an empty store if the file does not exist.

    Raises:
        LogStoreError: If the file exists but cannot be read or parsed.
    """
    path = Path(log_path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No log file at %s, starting with empty history", path)
        return LogStore()
    except (OSError, UnicodeDecodeError) as e:
        raise LogStoreError(f"Failed to read log file {path}: {e}")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise LogStoreError(f"Failed to parse log file {path}: {e}")

    return LogStore.from_dict(data)


def save_log(store: LogStore, log_path: str | Path) -> None:
    """Write the whole log store to disk atomically.

    The JSON is written to a temporary file in the same directory and then
    renamed over the target, so a failed write leaves the old file intact.

    Raises:
        LogStoreError: If the file cannot be written.
    """
    path = Path(log_path)
    content = json.dumps(store.to_dict(), indent=2, ensure_ascii=False) + "\n"

    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        # NamedTemporaryFile creates files as 0600
        os.chmod(tmp_name, LOG_FILE_MODE)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise LogStoreError(f"Failed to write log file {path}: {e}")
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def record_results(store: LogStore, results: list[ServiceResult], max_log_days: int) -> LogStore:
    """Append one history point per service and per endpoint URL, then prune.

    Endpoints probed more than once under the same URL are folded into one
    point: statuses are merged, the earliest start time and the largest
    response time are kept. Services and URLs missing from results are left
    untouched.

    Args:
        store: Store to update in place.
        results: Results of the current run.
        max_log_days: Retention window in days.

    Returns:
        The same store, for chaining.
    """
    for service in results:
        record = store.service(service.name)

        record.service_history.add_entry(HistoryEntry(time=format_time(service.start_time), status=service.status.value))
        record.service_history.prune_older_than(max_log_days)

        url_statuses: dict[str, list[TriState]] = {}
        url_times: dict[str, datetime] = {}
        url_response_times: dict[str, int] = {}
        for endpoint in service.endpoints:
            url_statuses.setdefault(endpoint.url, []).append(endpoint.status)
            url_times.setdefault(endpoint.url, endpoint.start_time)
            url_response_times[endpoint.url] = max(
                url_response_times.get(endpoint.url, 0),
                endpoint.response_time_ms,
            )

        for url, statuses in url_statuses.items():
            series = record.series_for(url)
            series.add_entry(
                HistoryEntry(
                    time=format_time(url_times[url]),
                    status=merge_status(statuses).value,
                    response_time_ms=url_response_times[url],
                )
            )
            series.prune_older_than(max_log_days)

    return store


def update_log(results: list[ServiceResult], max_log_days: int, log_path: str | Path) -> LogStore:
    """Load the log file, record this run's results and write it back.

    Raises:
        LogStoreError: If the log cannot be loaded or saved.
    """
    store = load_log(log_path)
    record_results(store, results, max_log_days)
    save_log(store, log_path)
    logger.info("History for %d service(s) written to %s", len(results), log_path)
    return store


def prune_log(store: LogStore, max_log_days: int) -> int:
    """Prune every series in the store.

    Returns:
        Total number of removed entries.
    """
    return sum(series.prune_older_than(max_log_days) for record in store.services.values() for series in record.all_series())
