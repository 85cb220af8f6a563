"""Decoding helpers for raw charger-info fields."""
from datetime import datetime
from typing import Any, Dict, List, Optional

HIGHWAY_SUFFIX = "고속도로"

# Order matters: the first highway found in an address wins.
HIGHWAYS: List[str] = [
    "경부고속도로",
    "서해안고속도로",
    "호남고속도로",
    "영동고속도로",
    "중부고속도로",
    "남해고속도로",
]
OTHER_HIGHWAY = "기타"
HIGHWAY_CHOICES: List[str] = HIGHWAYS + [OTHER_HIGHWAY]

DC_COMBO = "DC Combo"
CHADEMO = "CHAdeMO"
AC_TYPE_2 = "AC Type 2"
UNKNOWN_CONNECTOR = "Unknown"
CONNECTOR_TYPES = (DC_COMBO, CHADEMO, AC_TYPE_2, UNKNOWN_CONNECTOR)

# Provider ``chgerType`` codes. 08 is slow DC, grouped with DC Combo.
CONNECTOR_CODES: Dict[str, str] = {
    "01": CHADEMO,
    "02": AC_TYPE_2,
    "03": CHADEMO,
    "04": DC_COMBO,
    "05": DC_COMBO,
    "06": DC_COMBO,
    "07": AC_TYPE_2,
    "08": DC_COMBO,
    "10": DC_COMBO,
}

TIMESTAMP_LENGTH = 14


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Decode a ``YYYYMMDDHHMMSS`` value into a naive local datetime."""
    if not isinstance(raw, str) or len(raw) != TIMESTAMP_LENGTH:
        return None
    if not raw.isdigit():
        return None
    try:
        return datetime(
            int(raw[0:4]),
            int(raw[4:6]),
            int(raw[6:8]),
            int(raw[8:10]),
            int(raw[10:12]),
            int(raw[12:14]),
        )
    except ValueError:
        return None


def map_connector_code(code: Any) -> str:
    if not isinstance(code, str):
        return UNKNOWN_CONNECTOR
    return CONNECTOR_CODES.get(code.strip(), UNKNOWN_CONNECTOR)


def highway_label(highway: str) -> str:
    """Return the short display name, e.g. ``경부`` for ``경부고속도로``."""
    return highway.split(HIGHWAY_SUFFIX)[0] or highway


def infer_highway(address: Any) -> str:
    """Best-effort highway classification from a free-text address."""
    if not isinstance(address, str) or not address:
        return OTHER_HIGHWAY
    for highway in HIGHWAYS:
        if highway in address or highway_label(highway) in address:
            return highway
    return OTHER_HIGHWAY
