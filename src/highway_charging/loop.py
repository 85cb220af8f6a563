import argparse
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Tuple, Union

from .data import (
    ChargerApiError,
    ChargingSession,
    ErrorKind,
    SessionEstimator,
    extract_items,
    fetch_chargers,
    load_payload,
    missing_credential,
    parse_sessions,
    total_count,
)
from .logging_utils import setup_logging
from .report import build_report
from .storage import SettingsStore

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = 5 * 60


@dataclass(frozen=True)
class Snapshot:
    """The session collection produced by one successful fetch cycle."""

    sessions: Tuple[ChargingSession, ...]
    total_count: int
    last_updated: datetime


@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Loading:
    generation: int
    previous: Snapshot | None = None
    name = "loading"


@dataclass(frozen=True)
class Loaded:
    snapshot: Snapshot
    warning: ChargerApiError | None = None
    name = "success"


@dataclass(frozen=True)
class Failed:
    error: ChargerApiError
    name = "error"


State = Union[Idle, Loading, Loaded, Failed]

Fetcher = Callable[[str | None], Dict[str, Any]]


class RetrievalController:
    """Owns the fetch cycle and the current session snapshot.

    Each ``refresh`` replaces the whole snapshot. Cycles carry a generation
    token so a response arriving after a newer cycle started is dropped.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        fetcher: Fetcher = fetch_chargers,
        estimator: SessionEstimator | None = None,
        clock: Callable[[], datetime] = datetime.now,
        require_key: bool = True,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.require_key = require_key
        self.estimator = estimator
        self.clock = clock
        self._lock = threading.Lock()
        self._generation = 0
        self._state: State = Idle()

    @property
    def state(self) -> State:
        return self._state

    @property
    def snapshot(self) -> Snapshot | None:
        state = self._state
        if isinstance(state, Loaded):
            return state.snapshot
        if isinstance(state, Loading):
            return state.previous
        return None

    @property
    def sessions(self) -> Tuple[ChargingSession, ...]:
        snapshot = self.snapshot
        return snapshot.sessions if snapshot is not None else ()

    def begin(self) -> int:
        with self._lock:
            self._generation += 1
            self._state = Loading(self._generation, self.snapshot)
            return self._generation

    def complete(self, generation: int, payload: Dict[str, Any]) -> State:
        sessions = parse_sessions(
            extract_items(payload), estimator=self.estimator, now=self.clock()
        )
        total = total_count(payload)
        snapshot = Snapshot(tuple(sessions), total, self.clock())
        warning = None
        if total > 0 and not sessions:
            warning = ChargerApiError(
                ErrorKind.EMPTY_AFTER_TRANSFORM,
                "Data was loaded but no charger records could be processed. "
                "Check the API response.",
            )
            logger.warning("Provider reported %d records but none were usable", total)
        logger.info("Loaded %d sessions (provider total %d)", len(sessions), total)
        return self._apply(generation, Loaded(snapshot, warning))

    def fail(self, generation: int, error: ChargerApiError) -> State:
        logger.error("Fetch failed (%s): %s", error.kind.value, error.message)
        return self._apply(generation, Failed(error))

    def _apply(self, generation: int, state: State) -> State:
        with self._lock:
            if generation != self._generation:
                logger.info(
                    "Discarding result of fetch cycle %d; cycle %d is newer",
                    generation,
                    self._generation,
                )
                return self._state
            self._state = state
            return state

    def refresh(self) -> State:
        """Run one fetch cycle and return the resulting state."""
        generation = self.begin()
        api_key = self.settings.load_api_key()
        if api_key is None and self.require_key:
            return self.fail(generation, missing_credential())
        try:
            payload = self.fetcher(api_key)
        except ChargerApiError as exc:
            return self.fail(generation, exc)
        except Exception as exc:
            self.fail(
                generation,
                ChargerApiError(
                    ErrorKind.TRANSPORT_FAILURE,
                    f"Unexpected error while loading data: {exc}",
                ),
            )
            raise
        return self.complete(generation, payload)


def file_fetcher(path: Path) -> Fetcher:
    """Fetcher reading a saved provider envelope instead of the network."""

    def _fetch(api_key: str | None) -> Dict[str, Any]:
        try:
            return load_payload(path)
        except (OSError, ValueError) as exc:
            raise ChargerApiError(
                ErrorKind.TRANSPORT_FAILURE, f"Could not read {path}: {exc}"
            ) from exc

    return _fetch


def write_report(controller: RetrievalController, output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(build_report(controller), encoding="utf-8")
    logger.debug("Wrote output to %s", output)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Poll the charger API and keep a JSON dashboard report fresh"
    )
    parser.add_argument("--file", type=Path, help="Saved API response to read instead of fetching")
    parser.add_argument("--output", type=Path, default=Path("site/dashboard.json"))
    parser.add_argument(
        "--settings",
        type=Path,
        help="Settings file holding the API key (default: HIGHWAY_EV_SETTINGS_FILE)",
    )
    parser.add_argument(
        "--fetch-interval",
        type=int,
        default=REFRESH_INTERVAL,
        help="Seconds between data fetches",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    setup_logging(args.debug)

    settings = SettingsStore.from_env()
    if args.settings:
        settings.path = args.settings
    fetcher = file_fetcher(args.file) if args.file else fetch_chargers
    controller = RetrievalController(settings, fetcher=fetcher, require_key=args.file is None)

    # Keep the interval fixed regardless of how long each cycle takes.
    next_fetch = time.monotonic()
    while True:
        now = time.monotonic()
        if now >= next_fetch:
            logger.info("Fetching data")
            controller.refresh()
            write_report(controller, args.output)
            next_fetch += args.fetch_interval
            if next_fetch <= now:
                next_fetch = now + args.fetch_interval

        sleep_for = next_fetch - time.monotonic()
        if sleep_for > 0:
            time.sleep(sleep_for)


if __name__ == "__main__":
    main()
