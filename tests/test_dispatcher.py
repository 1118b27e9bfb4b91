import pytest
import requests

import ptz_scheduler as ps


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Stand-in for requests.Session that records the URLs requested."""

    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response or FakeResponse()
        self.error = error
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.error:
            raise self.error
        return self.response


def test_send_command_builds_url_and_reports_ok():
    session = FakeSession()
    client = ps.DeviceClient(session=session)
    assert client.start("10.0.3.61") is ps.CommandResult.OK
    assert session.urls == ["http://10.0.3.61/cgi-bin/rtmp_ctrl?cmd=start"]
    assert session.headers["User-Agent"] == ps.DeviceClient.USER_AGENT


def test_any_http_status_counts_as_delivered():
    client = ps.DeviceClient(session=FakeSession(FakeResponse(status_code=500)))
    assert client.stop("10.0.3.61") is ps.CommandResult.OK


@pytest.mark.parametrize("error", [
    requests.ConnectionError("refused"),
    requests.Timeout("slow"),
    requests.exceptions.InvalidURL("bad"),
])
def test_transport_failure_reports_failed(error):
    client = ps.DeviceClient(session=FakeSession(error=error))
    assert client.send_command("10.0.3.61", ps.START_PATH) is ps.CommandResult.FAILED


def test_preset_recall_path():
    session = FakeSession()
    ps.DeviceClient(session=session).recall_preset("cam.local")
    assert session.urls == ["http://cam.local/cgi-bin/aw_ptz?cmd=%23R00&res=1"]


@pytest.mark.parametrize("body, expected", [
    ("status=1", ps.ActualState.STREAMING),
    ("rtmp\nstatus=0\n", ps.ActualState.IDLE),
    ("status=2", ps.ActualState.IDLE),
    ("status=-1", ps.ActualState.IDLE),
    ("state=1", ps.ActualState.UNKNOWN),
    ("status=abc", ps.ActualState.UNKNOWN),
    ("", ps.ActualState.UNKNOWN),
])
def test_poll_status_maps_body(body, expected):
    client = ps.DeviceClient(session=FakeSession(FakeResponse(text=body)))
    assert client.poll_status("10.0.3.61") is expected


def test_poll_status_unreachable_is_unknown():
    session = FakeSession(error=requests.ConnectionError("down"))
    client = ps.DeviceClient(session=session)
    assert client.poll_status("10.0.3.61") is ps.ActualState.UNKNOWN
    assert session.urls == ["http://10.0.3.61/cgi-bin/get_rtmp_status"]


def test_parse_rtmp_status_uses_first_marker():
    assert ps.parse_rtmp_status("status=1&x=2 status=0") == 1
    assert ps.parse_rtmp_status("status= 7") == 7
    assert ps.parse_rtmp_status("nothing here") is None


def test_device_url_keeps_explicit_scheme():
    assert ps.device_url("https://cam.example/", ps.STATUS_PATH) == "https://cam.example/cgi-bin/get_rtmp_status"
    assert ps.device_url(" 10.0.3.61 ", ps.STOP_PATH) == "http://10.0.3.61/cgi-bin/rtmp_ctrl?cmd=stop"


def test_check_internet(monkeypatch):
    monkeypatch.setattr(ps.requests, "get", lambda url, timeout=None, allow_redirects=True: FakeResponse(204))
    assert ps.check_internet() is True

    monkeypatch.setattr(ps.requests, "get", lambda url, timeout=None, allow_redirects=True: FakeResponse(200))
    assert ps.check_internet() is False

    def boom(url, timeout=None, allow_redirects=True):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(ps.requests, "get", boom)
    assert ps.check_internet() is False
