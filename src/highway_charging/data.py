import json
import logging
import math
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import requests

from .decode import infer_highway, map_connector_code, parse_timestamp

logger = logging.getLogger(__name__)

# Public data portal endpoint for charger metadata
CHARGER_INFO_URL = "https://apis.data.go.kr/B552584/EvCharger/getChargerInfo"

# Category filter for highway rest-area chargers
HIGHWAY_REST_AREA_KIND = "C001"
PAGE_SIZE = 9999

SUCCESS_CODE = "00"
UNREGISTERED_KEY_MARKER = "SERVICE KEY IS NOT REGISTERED"

UNKNOWN_OPERATOR = "알 수 없음"
DEFAULT_LOCATION = "휴게소"
DEFAULT_OUTPUT_KW = 50.0
MIN_CHARGE_KWH = 5.0
MAX_CHARGE_HOURS = 2.0

# Window used when a charger reports no transaction timestamps
ESTIMATE_LOOKBACK = timedelta(days=7)
ESTIMATE_MAX_DURATION = timedelta(hours=2)

# Leading decimal number of a string, so "7kW" reads as 7
NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    TRANSPORT_FAILURE = "transport_failure"
    INVALID_CREDENTIAL = "invalid_credential"
    PROVIDER_ERROR = "provider_error"
    EMPTY_AFTER_TRANSFORM = "empty_after_transform"


CREDENTIAL_ERRORS = {ErrorKind.MISSING_CREDENTIAL, ErrorKind.INVALID_CREDENTIAL}


class ChargerApiError(Exception):
    """A failed or suspicious fetch cycle with a user-facing message."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def settings_required(self) -> bool:
        return self.kind in CREDENTIAL_ERRORS


@dataclass(frozen=True)
class ChargingSession:
    """One synthesized charging event at one charger."""

    id: str
    station_id: str
    operator: str
    start_time: datetime
    end_time: datetime
    charge_amount: float
    location: str
    highway: str
    connector_type: str
    lat: float
    lng: float

    @property
    def duration_hours(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "operator": self.operator,
            "start_time": self.start_time.isoformat(timespec="seconds"),
            "end_time": self.end_time.isoformat(timespec="seconds"),
            "charge_amount": self.charge_amount,
            "location": self.location,
            "highway": self.highway,
            "connector_type": self.connector_type,
            "lat": self.lat,
            "lng": self.lng,
        }


class SessionEstimator:
    """Fills in session bounds the provider did not report."""

    def start_time(self, now: datetime) -> datetime:
        raise NotImplementedError

    def end_time(self, start: datetime) -> datetime:
        raise NotImplementedError


class RandomEstimator(SessionEstimator):
    """Plausible recent activity: start in the past week, up to 2h long."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self._random = random.Random(seed)

    def start_time(self, now: datetime) -> datetime:
        return now - self._random.random() * ESTIMATE_LOOKBACK

    def end_time(self, start: datetime) -> datetime:
        return start + self._random.random() * ESTIMATE_MAX_DURATION


class FixedEstimator(SessionEstimator):
    def __init__(
        self,
        start_offset: timedelta = timedelta(hours=1),
        duration: timedelta = timedelta(hours=1),
    ) -> None:
        self.start_offset = start_offset
        self.duration = duration

    def start_time(self, now: datetime) -> datetime:
        return now - self.start_offset

    def end_time(self, start: datetime) -> datetime:
        return start + self.duration


def missing_credential() -> ChargerApiError:
    return ChargerApiError(
        ErrorKind.MISSING_CREDENTIAL,
        "No API key configured. Save a key in the settings page.",
    )


def fetch_chargers(
    api_key: str | None,
    *,
    session: requests.Session | None = None,
    timeout: float = 30,
    url: str = CHARGER_INFO_URL,
    num_of_rows: int = PAGE_SIZE,
) -> Dict[str, Any]:
    """Fetch the highway rest-area charger listing from the provider.

    Returns the decoded JSON envelope. Every failure is raised as a
    ``ChargerApiError`` carrying the matching ``ErrorKind``.
    """
    if not api_key:
        raise missing_credential()
    params = {
        # Keys copied from the portal are often URL-encoded already
        "serviceKey": unquote(api_key),
        "pageNo": "1",
        "numOfRows": str(num_of_rows),
        "dataType": "JSON",
        "kindDetail": HIGHWAY_REST_AREA_KIND,
    }
    getter = session.get if session is not None else requests.get
    logger.debug("Fetching charger info from %s", url)
    try:
        resp = getter(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise ChargerApiError(
            ErrorKind.TRANSPORT_FAILURE, f"API request failed: {exc}"
        ) from exc
    if not resp.ok:
        raise ChargerApiError(
            ErrorKind.TRANSPORT_FAILURE,
            f"API request failed: status {resp.status_code}",
        )
    logger.debug("Fetched %d bytes from remote", len(resp.content))
    try:
        payload = resp.json()
    except ValueError as exc:
        raise ChargerApiError(
            ErrorKind.TRANSPORT_FAILURE, "API response could not be decoded as JSON"
        ) from exc
    check_envelope(payload)
    return payload


def check_envelope(payload: Any) -> None:
    """Raise when the provider envelope signals a failure."""
    if not isinstance(payload, dict):
        raise ChargerApiError(
            ErrorKind.TRANSPORT_FAILURE, "API response is not a JSON object"
        )
    code = payload.get("resultCode")
    message = payload.get("resultMsg")
    # A message without the success code is an error, even when the code is absent
    if str(code) == SUCCESS_CODE or not message:
        return
    if UNREGISTERED_KEY_MARKER in str(message):
        raise ChargerApiError(
            ErrorKind.INVALID_CREDENTIAL,
            "The API key is not valid. Check the key in the settings page.",
        )
    raise ChargerApiError(ErrorKind.PROVIDER_ERROR, f"API error: {message}")


def load_payload(path: Path) -> Dict[str, Any]:
    """Read a saved provider envelope from disk."""
    logger.debug("Loading charger info from %s", path)
    with path.open(encoding="utf-8") as f:
        payload = json.load(f)
    check_envelope(payload)
    return payload


def extract_items(payload: Dict[str, Any]) -> List[Any]:
    items = payload.get("items")
    if not isinstance(items, dict):
        return []
    item = items.get("item")
    return item if isinstance(item, list) else []


def total_count(payload: Dict[str, Any]) -> int:
    try:
        return int(payload.get("totalCount") or 0)
    except (TypeError, ValueError):
        return 0


def _parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = NUMBER_PREFIX.match(value.strip())
        if match is None:
            return None
        number = float(match.group())
    else:
        return None
    return number if math.isfinite(number) else None


def _output_kw(value: Any) -> float:
    power = _parse_float(value)
    if power is None or power <= 0:
        return DEFAULT_OUTPUT_KW
    return power


def charge_amount(output_kw: float, duration_hours: float) -> float:
    """Energy estimate, capped at two hours of charging and floored at 5 kWh."""
    return max(MIN_CHARGE_KWH, output_kw * min(duration_hours, MAX_CHARGE_HOURS))


def parse_sessions(
    items: Any,
    estimator: SessionEstimator | None = None,
    now: datetime | None = None,
) -> List[ChargingSession]:
    """Turn raw charger records into sessions, dropping records without coordinates."""
    if not isinstance(items, list):
        return []
    if estimator is None:
        estimator = RandomEstimator()
    if now is None:
        now = datetime.now()

    sessions: List[ChargingSession] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        lat = _parse_float(item.get("lat"))
        lng = _parse_float(item.get("lng"))
        if lat is None or lng is None:
            logger.debug(
                "Skipping charger %s-%s without coordinates",
                item.get("statId"),
                item.get("chgerId"),
            )
            continue

        start = parse_timestamp(item.get("lastTsdt")) or estimator.start_time(now)
        end = parse_timestamp(item.get("lastTedt")) or estimator.end_time(start)
        duration = (end - start).total_seconds() / 3600

        sessions.append(
            ChargingSession(
                id=f"{item.get('statId')}-{item.get('chgerId')}",
                station_id=str(item.get("statId")),
                operator=item.get("busiNm") or item.get("bnm") or UNKNOWN_OPERATOR,
                start_time=start,
                end_time=end,
                charge_amount=charge_amount(_output_kw(item.get("output")), duration),
                location=item.get("statNm") or DEFAULT_LOCATION,
                highway=infer_highway(item.get("addr")),
                connector_type=map_connector_code(item.get("chgerType")),
                lat=lat,
                lng=lng,
            )
        )
    logger.debug("Synthesized %d sessions from %d records", len(sessions), len(items))
    return sessions
