import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from highway_charging.data import ChargingSession


def raw_item(**overrides):
    item = {
        "statNm": "안성휴게소",
        "statId": "ME000001",
        "chgerId": "01",
        "chgerType": "04",
        "addr": "경기도 안성시 원곡면 경부고속도로 362",
        "lat": "37.0123",
        "lng": "127.1234",
        "busiNm": "한국전력",
        "bnm": "한전",
        "lastTsdt": "20240115103045",
        "lastTedt": "20240115113045",
        "output": "100",
        "kindDetail": "C001",
    }
    item.update(overrides)
    return item


def payload(items, total=None, code="00", message="NORMAL SERVICE."):
    return {
        "resultCode": code,
        "resultMsg": message,
        "totalCount": len(items) if total is None else total,
        "items": {"item": items},
    }


def session(
    operator="A",
    start=datetime(2024, 1, 15, 10, 0),
    hours=1.0,
    energy=50.0,
    station="S1",
    charger="01",
    highway="경부고속도로",
    location="안성휴게소",
):
    return ChargingSession(
        id=f"{station}-{charger}",
        station_id=station,
        operator=operator,
        start_time=start,
        end_time=start + timedelta(hours=hours),
        charge_amount=energy,
        location=location,
        highway=highway,
        connector_type="DC Combo",
        lat=37.0,
        lng=127.0,
    )


@pytest.fixture
def make_item():
    return raw_item


@pytest.fixture
def make_payload():
    return payload


@pytest.fixture
def make_session():
    return session
