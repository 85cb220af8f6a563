import json
from datetime import datetime

import pytest

from highway_charging.data import ChargerApiError, ErrorKind, FixedEstimator
from highway_charging.loop import (
    Failed,
    Idle,
    Loaded,
    Loading,
    RetrievalController,
    file_fetcher,
    write_report,
)
from highway_charging.storage import SettingsStore

NOW = datetime(2024, 2, 1, 12, 0, 0)


def _controller(tmp_path, fetcher, api_key="key", require_key=True):
    store = SettingsStore(tmp_path / "settings.json", env_api_key=api_key)
    return RetrievalController(
        store,
        fetcher=fetcher,
        estimator=FixedEstimator(),
        clock=lambda: NOW,
        require_key=require_key,
    )


def test_initial_state_is_idle(tmp_path):
    controller = _controller(tmp_path, lambda key: {})
    assert isinstance(controller.state, Idle)
    assert controller.sessions == ()
    assert controller.snapshot is None


def test_refresh_success(tmp_path, make_item, make_payload):
    calls = []

    def fetcher(key):
        calls.append(key)
        return make_payload([make_item(), make_item(chgerId="02", lat=None)], total=40)

    controller = _controller(tmp_path, fetcher)
    state = controller.refresh()
    assert isinstance(state, Loaded)
    assert state.warning is None
    assert calls == ["key"]
    assert len(controller.sessions) == 1
    assert controller.snapshot.total_count == 40
    assert controller.snapshot.last_updated == NOW


def test_missing_credential_fails_without_network(tmp_path):
    calls = []
    controller = _controller(tmp_path, lambda key: calls.append(key), api_key=None)
    state = controller.refresh()
    assert calls == []
    assert isinstance(state, Failed)
    assert state.error.kind is ErrorKind.MISSING_CREDENTIAL
    assert controller.sessions == ()


def test_error_clears_previous_data(tmp_path, make_item, make_payload):
    responses = [make_payload([make_item()])]

    def fetcher(key):
        if responses:
            return responses.pop()
        raise ChargerApiError(ErrorKind.PROVIDER_ERROR, "API error: DOWN")

    controller = _controller(tmp_path, fetcher)
    controller.refresh()
    assert len(controller.sessions) == 1
    state = controller.refresh()
    assert isinstance(state, Failed)
    assert state.error.message == "API error: DOWN"
    assert controller.sessions == ()
    assert controller.snapshot is None


def test_empty_after_transform_is_advisory(tmp_path, make_item, make_payload):
    controller = _controller(
        tmp_path, lambda key: make_payload([make_item(lat=None)], total=5)
    )
    state = controller.refresh()
    assert isinstance(state, Loaded)
    assert state.warning.kind is ErrorKind.EMPTY_AFTER_TRANSFORM
    assert controller.snapshot.total_count == 5
    assert controller.sessions == ()


def test_zero_total_has_no_warning(tmp_path, make_payload):
    controller = _controller(tmp_path, lambda key: make_payload([], total=0))
    state = controller.refresh()
    assert isinstance(state, Loaded)
    assert state.warning is None


def test_loading_keeps_previous_snapshot(tmp_path, make_item, make_payload):
    controller = _controller(tmp_path, lambda key: make_payload([make_item()]))
    controller.refresh()
    previous = controller.snapshot
    controller.begin()
    assert isinstance(controller.state, Loading)
    assert controller.snapshot is previous
    assert len(controller.sessions) == 1


def test_stale_cycle_is_discarded(tmp_path, make_item, make_payload):
    controller = _controller(tmp_path, lambda key: {})
    old = controller.begin()
    new = controller.begin()
    controller.complete(new, make_payload([make_item()]))
    state = controller.complete(old, make_payload([make_item(), make_item(chgerId="02")]))
    assert isinstance(state, Loaded)
    assert len(controller.sessions) == 1

    controller.fail(old, ChargerApiError(ErrorKind.TRANSPORT_FAILURE, "late"))
    assert isinstance(controller.state, Loaded)


def test_unexpected_error_is_recorded_and_raised(tmp_path):
    def fetcher(key):
        raise RuntimeError("kaboom")

    controller = _controller(tmp_path, fetcher)
    with pytest.raises(RuntimeError):
        controller.refresh()
    assert isinstance(controller.state, Failed)
    assert controller.state.error.kind is ErrorKind.TRANSPORT_FAILURE


def test_file_fetcher(tmp_path, make_item, make_payload):
    path = tmp_path / "chargers.json"
    path.write_text(json.dumps(make_payload([make_item()]), ensure_ascii=False), encoding="utf-8")
    controller = _controller(tmp_path, file_fetcher(path), api_key=None, require_key=False)
    assert isinstance(controller.refresh(), Loaded)

    missing = _controller(tmp_path, file_fetcher(tmp_path / "missing.json"))
    state = missing.refresh()
    assert isinstance(state, Failed)
    assert state.error.kind is ErrorKind.TRANSPORT_FAILURE


def test_write_report(tmp_path, make_item, make_payload):
    controller = _controller(tmp_path, lambda key: make_payload([make_item()]))
    controller.refresh()
    output = tmp_path / "site" / "dashboard.json"
    write_report(controller, output)
    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["status"]["state"] == "success"
    assert report["status"]["session_count"] == 1
    assert report["dashboard"]["overview"]["sessions"] == 1
