"""Storage interface for targets, observed values and attempt history.

The scraping core depends only on the ``ScrapeStore`` protocol. Two
implementations ship with the package:

- ``InMemoryStore``: dictionaries, used by tests and sandbox runs.
- ``JsonFileStore``: the in-memory store persisted to a single JSON file
  after every write (atomic replace), used by the CLI.

Attempt history is written through ``AttemptRecorder``, which never lets a
storage failure propagate into a scrape.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from pricescout.exceptions import StorageError
from pricescout.logger import get_logger
from pricescout.models import ScrapeAttempt, ScrapeTarget, TargetType

log = get_logger(__name__)


class ScrapeStore(Protocol):
    """Operations the scraping core needs from persistence."""

    def list_scrapeable(self, target_type: TargetType) -> list[ScrapeTarget]: ...

    def get_target(self, target_type: TargetType, target_id: int) -> ScrapeTarget | None: ...

    def write_back_discovered_url(
        self,
        target_type: TargetType,
        target_id: int,
        url: str,
        selector: str | None,
    ) -> None: ...

    def upsert_observed_value(
        self,
        target_type: TargetType,
        target_id: int,
        observed_date: str,
        observed_time: str,
        value: float,
    ) -> None: ...

    def record_attempt(self, attempt: ScrapeAttempt) -> None: ...

    def last_successful_attempt(self, target_type: TargetType | None = None) -> datetime | None: ...

    def list_currencies(self) -> list[ScrapeTarget]: ...

    def upsert_rate(self, currency_id: int, rate_date: str, scaled_rate: int) -> None: ...


class InMemoryStore:
    """Dictionary-backed ScrapeStore.

    Attributes:
        targets: Targets keyed by (type, id).
        values: Observed values keyed by (type, id, date).
        rates: Scaled exchange rates keyed by (currency_id, date).
        attempts: Attempt history in insertion order.
    """

    def __init__(self, targets: list[ScrapeTarget] | None = None) -> None:
        self.targets: dict[tuple[TargetType, int], ScrapeTarget] = {}
        self.values: dict[tuple[TargetType, int, str], dict[str, Any]] = {}
        self.rates: dict[tuple[int, str], int] = {}
        self.attempts: list[ScrapeAttempt] = []
        for target in targets or []:
            self.targets[(target.target_type, target.id)] = target

    def _changed(self) -> None:
        """Hook for persistent subclasses."""

    def upsert_target(self, target: ScrapeTarget) -> None:
        self.targets[(target.target_type, target.id)] = target
        self._changed()

    def list_targets(self, target_type: TargetType) -> list[ScrapeTarget]:
        return sorted(
            (t for (kind, _), t in self.targets.items() if kind == target_type),
            key=lambda t: t.id,
        )

    def list_scrapeable(self, target_type: TargetType) -> list[ScrapeTarget]:
        """Targets with a manual URL or a public identifier to derive one from."""
        return [t for t in self.list_targets(target_type) if t.url or t.public_id]

    def get_target(self, target_type: TargetType, target_id: int) -> ScrapeTarget | None:
        return self.targets.get((target_type, target_id))

    def write_back_discovered_url(
        self,
        target_type: TargetType,
        target_id: int,
        url: str,
        selector: str | None,
    ) -> None:
        target = self.get_target(target_type, target_id)
        if target is None:
            raise StorageError("write_back_discovered_url", f"No {target_type} with id {target_id}")
        self.targets[(target_type, target_id)] = target.model_copy(
            update={"url": url, "selector": selector}
        )
        log.info(
            "Discovered URL written back",
            target_type=target_type.value,
            target_id=target_id,
            url=url,
        )
        self._changed()

    def upsert_observed_value(
        self,
        target_type: TargetType,
        target_id: int,
        observed_date: str,
        observed_time: str,
        value: float,
    ) -> None:
        self.values[(target_type, target_id, observed_date)] = {
            "time": observed_time,
            "value": value,
        }
        target = self.get_target(target_type, target_id)
        if target is not None:
            self.targets[(target_type, target_id)] = target.model_copy(
                update={
                    "last_value": value,
                    "last_scraped_at": datetime.fromisoformat(f"{observed_date}T{observed_time}"),
                }
            )
        self._changed()

    def observed_values(self, target_type: TargetType, target_id: int) -> dict[str, dict[str, Any]]:
        """Observed values for one target keyed by date."""
        return {
            day: entry
            for (kind, ident, day), entry in self.values.items()
            if kind == target_type and ident == target_id
        }

    def record_attempt(self, attempt: ScrapeAttempt) -> None:
        self.attempts.append(attempt)
        self._changed()

    def last_successful_attempt(self, target_type: TargetType | None = None) -> datetime | None:
        """Time of the most recent successful attempt, overall or for one type."""
        times = [
            a.attempted_at
            for a in self.attempts
            if a.success and (target_type is None or a.target_type == target_type)
        ]
        return max(times) if times else None

    def list_attempts(
        self,
        target_type: TargetType | None = None,
        success: bool | None = None,
        limit: int = 100,
    ) -> list[ScrapeAttempt]:
        """Attempt history, newest first, with optional filters."""
        matching = [
            a
            for a in self.attempts
            if (target_type is None or a.target_type == target_type)
            and (success is None or a.success == success)
        ]
        matching.sort(key=lambda a: a.attempted_at, reverse=True)
        return matching[:limit]

    def list_currencies(self) -> list[ScrapeTarget]:
        return self.list_targets(TargetType.CURRENCY)

    def upsert_rate(self, currency_id: int, rate_date: str, scaled_rate: int) -> None:
        self.rates[(currency_id, rate_date)] = scaled_rate
        self._changed()


class JsonFileStore(InMemoryStore):
    """InMemoryStore persisted to a JSON file after every write.

    Example:
        store = JsonFileStore(Path("data/pricescout.json"))
        store.upsert_target(ScrapeTarget(target_type="investment", id=1, ...))
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            log.debug("No store file found, starting empty", path=str(self.path))
            return

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            for entry in payload.get("targets", []):
                target = ScrapeTarget.model_validate(entry)
                self.targets[(target.target_type, target.id)] = target
            for entry in payload.get("values", []):
                key = (TargetType(entry["target_type"]), entry["target_id"], entry["date"])
                self.values[key] = {"time": entry["time"], "value": entry["value"]}
            for entry in payload.get("rates", []):
                self.rates[(entry["currency_id"], entry["date"])] = entry["scaled_rate"]
            self.attempts = [
                ScrapeAttempt.model_validate(entry) for entry in payload.get("attempts", [])
            ]
        except (OSError, json.JSONDecodeError, KeyError, ValueError, ValidationError) as exc:
            raise StorageError("load", str(exc), path=str(self.path)) from exc

        log.debug(
            "Store loaded",
            path=str(self.path),
            targets=len(self.targets),
            attempts=len(self.attempts),
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "saved_at": datetime.now(UTC).isoformat(),
            "targets": [t.model_dump(mode="json") for t in self.targets.values()],
            "values": [
                {"target_type": kind.value, "target_id": ident, "date": day, **entry}
                for (kind, ident, day), entry in self.values.items()
            ],
            "rates": [
                {"currency_id": currency_id, "date": day, "scaled_rate": scaled}
                for (currency_id, day), scaled in self.rates.items()
            ],
            "attempts": [a.model_dump(mode="json") for a in self.attempts],
        }

    def _changed(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(self._snapshot(), indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise StorageError("save", str(exc), path=str(self.path)) from exc


class AttemptRecorder:
    """Best-effort writer of attempt history.

    A failing history write is logged and dropped so it can never change
    the outcome of the scrape being recorded.
    """

    def __init__(self, store: ScrapeStore) -> None:
        self.store = store

    def record(self, attempt: ScrapeAttempt) -> None:
        try:
            self.store.record_attempt(attempt)
        except Exception as exc:
            log.warning(
                "Failed to record scrape attempt",
                target_type=attempt.target_type.value,
                target_id=attempt.target_id,
                attempt_number=attempt.attempt_number,
                error=str(exc),
            )
