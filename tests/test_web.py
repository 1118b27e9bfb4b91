import json

import pytest

import ptz_scheduler as ps


class FakeDevice:
    def __init__(self, status=None):
        self.status = status

    def send_command(self, address, path):
        return ps.CommandResult.OK

    def read_status(self, address):
        return self.status


class FakeTimeSource:
    synced = True
    last_sync = "2024-01-01T00:00:00"

    def epoch(self):
        # 2024-03-01 07:05 UTC
        return 1709276700

    def update(self):
        return True


def build_app(tmp_path, status=1, events=None, offset=0):
    cfg = {
        "device_address": "10.0.3.61",
        "utc_offset_seconds": offset,
        "events": events or [],
    }
    store = ps.ScheduleStore(cfg, path=str(tmp_path / "config.json"))
    device = FakeDevice(status)
    time_source = FakeTimeSource()
    rec = ps.Reconciler(store, device, time_source)
    app = ps.build_app(store, rec, device, time_source, probe=lambda: True)
    app.testing = True
    return app, store


def test_index_renders_status_and_events(tmp_path):
    app, _ = build_app(tmp_path, events=[{"date": "2024-03-01", "start_time": "09:45", "stop_time": "11:30"}])
    resp = app.test_client().get("/")
    assert resp.status_code == 200
    text = resp.data.decode()
    assert "PTZ Stream Scheduler" in text
    assert "Current Date: 2024-03-01" in text
    assert "Current Time: 07:05" in text
    assert "value=\"09:45\"" in text
    assert "PTZ: Connected" in text
    assert "During Stream" in text
    assert "<option value=\"0\" selected>GMT</option>" in text


def test_index_reports_unreachable_camera(tmp_path):
    app, _ = build_app(tmp_path, status=None)
    text = app.test_client().get("/").data.decode()
    assert "PTZ: Not Connected" in text
    assert "Stream Suspended" in text


def test_index_escapes_event_text(tmp_path):
    app, _ = build_app(tmp_path, events=[{"date": "<script>x</script>", "start_time": "", "stop_time": ""}])
    text = app.test_client().get("/").data.decode()
    assert "<script>x</script>" not in text
    assert "&lt;script&gt;" in text


def test_update_settings_replaces_everything(tmp_path):
    app, store = build_app(tmp_path, events=[{"date": "old", "start_time": "", "stop_time": ""}])
    resp = app.test_client().post("/updateSettings", data={
        "startDate0": "2024-03-01", "startTime0": "10:00", "stopTime0": "11:30",
        "startDate1": "2024-03-02", "startTime1": "09:00", "stopTime1": "10:00",
        "ip": "10.0.3.70",
        "timezone": "-5",
        "dst": "on",
    })
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/")
    assert store.list() == [
        ps.Event("2024-03-01", "10:00", "11:30"),
        ps.Event("2024-03-02", "09:00", "10:00"),
    ]
    assert store.device_address == "10.0.3.70"
    assert store.utc_offset_seconds == -5 * 3600
    assert store.daylight_saving is True

    saved = json.loads((tmp_path / "config.json").read_text())
    assert saved["device_address"] == "10.0.3.70"
    assert len(saved["events"]) == 2


def test_update_settings_ignores_bad_timezone_and_clears_dst(tmp_path):
    app, store = build_app(tmp_path)
    store.set_dst(True)
    app.test_client().post("/updateSettings", data={"timezone": "abc"})
    assert store.utc_offset_seconds == 0
    assert store.daylight_saving is False
    app.test_client().post("/updateSettings", data={"timezone": "13"})
    assert store.utc_offset_seconds == 0


def test_update_dst_only_touches_flag(tmp_path):
    app, store = build_app(tmp_path, events=[{"date": "a", "start_time": "b", "stop_time": "c"}])
    resp = app.test_client().post("/updateDST", data={"dst": "on", "startDate0": "changed"})
    assert resp.status_code == 302
    assert store.daylight_saving is True
    assert store.list() == [ps.Event("a", "b", "c")]


def test_add_event_appends_empty_event(tmp_path):
    app, store = build_app(tmp_path)
    resp = app.test_client().post("/addEvent", data={"startDate0": "ignored"})
    assert resp.status_code == 302
    assert store.list() == [ps.Event()]


@pytest.mark.parametrize("index, remaining", [("0", 1), ("5", 2), ("-1", 2), ("x", 2)])
def test_delete_event(tmp_path, index, remaining):
    app, store = build_app(tmp_path, events=[
        {"date": "a", "start_time": "", "stop_time": ""},
        {"date": "b", "start_time": "", "stop_time": ""},
    ])
    resp = app.test_client().post(f"/deleteEvent?index={index}")
    assert resp.status_code == 302
    assert len(store.list()) == remaining


def test_api_status(tmp_path):
    app, _ = build_app(tmp_path, status=0)
    data = app.test_client().get("/api/status").get_json()
    assert data["date"] == "2024-03-01"
    assert data["time"] == "07:05"
    assert data["ntp_synced"] is True
    assert data["internet"] is True
    assert data["camera_connected"] is True
    assert data["camera_state"] == "idle"
    assert data["reconciler"]["desired"] == "unset"


def test_half_hour_offset_is_preselected_and_kept(tmp_path):
    app, store = build_app(tmp_path, offset=19800)
    client = app.test_client()
    text = client.get("/").data.decode()
    assert '<option value="5.5" selected>GMT+5:30</option>' in text
    assert '<option value="5" selected>' not in text

    # the DST checkbox submits the whole form, including the selected zone
    client.post("/updateDST", data={"timezone": "5.5", "dst": "on"})
    client.post("/updateSettings", data={"timezone": "5.5", "dst": "on"})
    assert store.utc_offset_seconds == 19800
    assert store.daylight_saving is True


def test_negative_half_hour_offset_label(tmp_path):
    app, _ = build_app(tmp_path, offset=-(3 * 3600 + 1800))
    text = app.test_client().get("/").data.decode()
    assert '<option value="-3.5" selected>GMT-3:30</option>' in text
