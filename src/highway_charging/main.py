import argparse
import logging
import time
from datetime import date
from pathlib import Path

from .data import fetch_chargers
from .filters import FilterState
from .logging_utils import setup_logging
from .loop import Failed, RetrievalController, file_fetcher
from .report import build_report
from .storage import SettingsStore

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fetch highway charger data once and write the dashboard as JSON"
    )
    parser.add_argument("--file", type=Path, help="Saved API response to read instead of fetching")
    parser.add_argument("--output", type=Path, default=Path("site/dashboard.json"))
    parser.add_argument("--api-key", help="API key to use when none is stored")
    parser.add_argument("--start", type=date.fromisoformat, help="First day to include (YYYY-MM-DD)")
    parser.add_argument("--end", type=date.fromisoformat, help="Last day to include (YYYY-MM-DD)")
    parser.add_argument(
        "--operator",
        action="append",
        default=[],
        help="Restrict to an operator (repeatable)",
    )
    parser.add_argument(
        "--highway",
        action="append",
        default=[],
        help="Restrict to a highway (repeatable)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    setup_logging(args.debug)

    start = time.monotonic()
    settings = SettingsStore.from_env()
    if args.api_key:
        settings.env_api_key = args.api_key
    fetcher = file_fetcher(args.file) if args.file else fetch_chargers
    controller = RetrievalController(settings, fetcher=fetcher, require_key=args.file is None)

    logger.info("Reading data")
    state = controller.refresh()
    if isinstance(state, Failed):
        logger.error("Report will be empty: %s", state.error.message)

    filters = FilterState.from_query(args.start, args.end, args.operator, args.highway)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(build_report(controller, filters), encoding="utf-8")
    logger.info("Wrote report to %s in %.1fs", args.output, time.monotonic() - start)


if __name__ == "__main__":
    main()
