#!/usr/bin/env python3
"""
ptz_scheduler.py

This script runs a calendar-driven stream controller for a network PTZ
camera that exposes RTMP start/stop controls over HTTP.  The operator
enters streaming windows (a date plus start and stop times) through a
small web UI; the controller then keeps the camera's streaming state in
line with that calendar.

Key features:

  • Schedule evaluation once per second against NTP-corrected local
    time (UTC offset plus an optional +1h daylight saving flag).
  • The camera only exposes a polled status endpoint, so every few
    seconds the controller reads it and re-sends start/stop until the
    camera agrees with the schedule.  Failed HTTP calls are simply
    retried on the next poll.
  • Events, camera address, timezone and DST flag persist to
    config.json next to this script.  A missing or corrupt file falls
    back to defaults and never blocks startup.
  • A built in web UI (Flask) shows clock/NTP/internet/camera status
    and edits the event list; a CLI covers the same ground.

See print_info() for a concise usage manual.
"""
from __future__ import annotations

import argparse
import copy
import json
import logging
import os
import re
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

import ntplib
import requests
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask, jsonify, redirect, render_template_string, request

logger = logging.getLogger(__name__)

# Path to our persistent configuration.  It lives next to this script
# unless PTZ_SCHEDULER_CONFIG or --config points elsewhere.
CONFIG_PATH = os.environ.get(
    "PTZ_SCHEDULER_CONFIG",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.json"),
)
# Re‑entrant lock guarding the schedule store.  Web handlers mutate the
# store under it and the reconciler snapshots the store under it.
LOCK = threading.RLock()

# ---------- Camera HTTP API ----------
START_PATH = "/cgi-bin/rtmp_ctrl?cmd=start"
STOP_PATH = "/cgi-bin/rtmp_ctrl?cmd=stop"
STATUS_PATH = "/cgi-bin/get_rtmp_status"
# Recall preset 0 (%23 is a URL encoded '#').  Sent once at startup.
PRESET_RECALL_PATH = "/cgi-bin/aw_ptz?cmd=%23R00&res=1"
STATUS_MARKER = "status="

CONNECTIVITY_URL = "http://clients3.google.com/generate_204"

HTTP_TIMEOUT_SECONDS = 5.0
TICK_SECONDS = 1.0
POLL_INTERVAL_SECONDS = 4.0
DST_SECONDS = 3600

# ---------- Default Config ----------
#
# `utc_offset_seconds` defaults to PST.  Events are stored as plain
# strings exactly as typed into the form; nothing is validated.

DEFAULT_CONFIG = {
    "device_address": "10.0.3.61",
    "utc_offset_seconds": -8 * 3600,
    "daylight_saving": False,
    "events": [],
    # NTP server and how often to re-query it.
    "ntp": {"server": "pool.ntp.org", "resync_seconds": 60},
    # Web server defaults.  You may override at runtime via CLI.
    "web": {"host": "0.0.0.0", "port": 8000},
}

TIMEZONE_LABELS = {-8: "PST (GMT-8)", -7: "MST (GMT-7)", -6: "CST (GMT-6)", -5: "EST (GMT-5)", 0: "GMT"}


# =========================
# Clock
# =========================

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_HHMM_RE = re.compile(r"([01]\d|2[0-3]):([0-5]\d)")


@dataclass(frozen=True)
class TimeOfDay:
    """A zero-padded 24h ``HH:MM`` value.

    Two parsed values compare equal exactly when their ``HH:MM`` strings
    are identical, so "8:00" or "08:00:00" never equal 08:00.
    """

    hour: int
    minute: int

    @classmethod
    def parse(cls, text) -> Optional[TimeOfDay]:
        m = _HHMM_RE.fullmatch(str(text or ""))
        if not m:
            return None
        return cls(int(m.group(1)), int(m.group(2)))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class LocalTime:
    date: str
    time: TimeOfDay


def adjusted_epoch(raw_epoch: float, utc_offset_seconds: int, dst: bool) -> int:
    return int(raw_epoch) + int(utc_offset_seconds) + (DST_SECONDS if dst else 0)


def local_time(raw_epoch: float, utc_offset_seconds: int, dst: bool) -> LocalTime:
    """Convert a raw epoch into the local date and time of day.

    Works for any epoch, including an unsynchronised clock sitting at
    zero; whether the clock has been synced is tracked by the time
    source, not inferred here.
    """
    moment = _EPOCH + timedelta(seconds=adjusted_epoch(raw_epoch, utc_offset_seconds, dst))
    date_str = f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
    return LocalTime(date_str, TimeOfDay(moment.hour, moment.minute))


class NtpTimeSource:
    """Epoch seconds corrected by the last successful NTP response.

    Until the first sync this is just the host clock.  `synced` flips
    to True on the first successful query and stays True.
    """

    def __init__(self, server: str = "pool.ntp.org", client=None, clock: Callable[[], float] = time.time):
        self.server = server
        self.client = client or ntplib.NTPClient()
        self._clock = clock
        self._offset = 0.0
        self.synced = False
        self.last_sync: Optional[str] = None

    def update(self) -> bool:
        try:
            resp = self.client.request(self.server, version=3, timeout=5)
        except (ntplib.NTPException, OSError) as e:
            logger.warning("[NTP] query to %s failed: %s", self.server, e)
            return False
        self._offset = resp.tx_time - self._clock()
        if not self.synced:
            logger.info("[NTP] first sync with %s (offset %.3fs)", self.server, self._offset)
        self.synced = True
        self.last_sync = datetime.now().isoformat(timespec="seconds")
        return True

    def epoch(self) -> int:
        return int(self._clock() + self._offset)


# =========================
# Schedule store
# =========================

@dataclass
class Event:
    """One streaming window.  Fields are free-form operator text."""

    date: str = ""
    start_time: str = ""
    stop_time: str = ""

    def starts_at(self, now: LocalTime) -> bool:
        return self.date == now.date and TimeOfDay.parse(self.start_time) == now.time

    def stops_at(self, now: LocalTime) -> bool:
        # Only the time of day is compared: a stop time fires on every
        # day, whatever the event's date.
        return TimeOfDay.parse(self.stop_time) == now.time

    def to_dict(self) -> dict:
        return {"date": self.date, "start_time": self.start_time, "stop_time": self.stop_time}

    @classmethod
    def from_dict(cls, data: dict) -> Event:
        def text(key):
            v = data.get(key)
            return "" if v is None else str(v)
        return cls(text("date"), text("start_time"), text("stop_time"))


def default_config() -> dict:
    return copy.deepcopy(DEFAULT_CONFIG)


def _normalise(cfg: dict) -> dict:
    """Coerce the core fields of a loaded config, falling back per field."""
    defaults = DEFAULT_CONFIG
    address = cfg.get("device_address")
    cfg["device_address"] = defaults["device_address"] if address is None else str(address)
    try:
        cfg["utc_offset_seconds"] = int(cfg.get("utc_offset_seconds"))
    except (TypeError, ValueError):
        cfg["utc_offset_seconds"] = defaults["utc_offset_seconds"]
    cfg["daylight_saving"] = cfg.get("daylight_saving") is True
    events = cfg.get("events")
    cfg["events"] = [e for e in events if isinstance(e, dict)] if isinstance(events, list) else []
    for section in ("ntp", "web"):
        if not isinstance(cfg.get(section), dict):
            cfg[section] = copy.deepcopy(defaults[section])
    ntp, web = cfg["ntp"], cfg["web"]
    ntp["server"] = str(ntp.get("server") or defaults["ntp"]["server"])
    ntp["resync_seconds"] = _coerce(ntp.get("resync_seconds"), float, defaults["ntp"]["resync_seconds"], lambda v: 0 < v <= 86400)
    web["host"] = str(web.get("host") or defaults["web"]["host"])
    web["port"] = _coerce(web.get("port"), int, defaults["web"]["port"], lambda v: 0 < v < 65536)
    return cfg


def _coerce(value, kind, default, valid):
    try:
        value = kind(value)
    except (TypeError, ValueError):
        return default
    return value if valid(value) else default


def load_config(path: Optional[str] = None) -> dict:
    """Load the JSON config from disk, creating it with defaults if needed.

    An unreadable or corrupt file is logged and replaced in memory by the
    defaults; the file itself is left alone until the next save.
    """
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        cfg = default_config()
        try:
            save_config(cfg, path)
        except OSError as e:
            logger.error("[Store] could not create %s: %s", path, e)
        return cfg
    try:
        with open(path, "r") as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        logger.error("[Store] failed to read %s: %s; using defaults", path, e)
        return default_config()
    if not isinstance(cfg, dict):
        logger.error("[Store] %s does not hold a JSON object; using defaults", path)
        return default_config()
    # Merge missing top level keys
    for k, v in DEFAULT_CONFIG.items():
        if k not in cfg:
            cfg[k] = copy.deepcopy(v)
    return _normalise(cfg)


def save_config(cfg: dict, path: Optional[str] = None):
    """Atomically save the configuration to disk."""
    path = path or CONFIG_PATH
    with LOCK:
        tmp = path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(cfg, f, indent=2)
        os.replace(tmp, path)


class ScheduleStore:
    """Ordered event list plus controller settings, persisted as one unit.

    Every mutating call writes the whole document.  Inside ``batch()``
    the write is deferred until the outermost batch exits, so a bulk
    form update lands on disk once.
    """

    def __init__(self, cfg: Optional[dict] = None, path: Optional[str] = None):
        self.path = path or CONFIG_PATH
        self.cfg = _normalise(cfg if cfg is not None else default_config())
        self._events: List[Event] = [Event.from_dict(e) for e in self.cfg["events"]]
        self._batch_depth = 0

    @classmethod
    def load(cls, path: Optional[str] = None) -> ScheduleStore:
        path = path or CONFIG_PATH
        return cls(load_config(path), path)

    # ---- reads ----

    def list(self) -> List[Event]:
        with LOCK:
            return [replace(e) for e in self._events]

    @property
    def device_address(self) -> str:
        return self.cfg["device_address"]

    @property
    def utc_offset_seconds(self) -> int:
        return self.cfg["utc_offset_seconds"]

    @property
    def daylight_saving(self) -> bool:
        return self.cfg["daylight_saving"]

    def to_document(self) -> dict:
        with LOCK:
            doc = copy.deepcopy(self.cfg)
            doc["events"] = [e.to_dict() for e in self._events]
            return doc

    # ---- writes ----

    def append(self, event: Optional[Event] = None) -> bool:
        with LOCK:
            self._events.append(replace(event) if event else Event())
            return self.save()

    def replace_all(self, events: List[Event]) -> bool:
        with LOCK:
            self._events = [replace(e) for e in events]
            return self.save()

    def remove_at(self, index: int) -> bool:
        """Delete the event at `index`; out-of-range indices are ignored."""
        with LOCK:
            if 0 <= index < len(self._events):
                del self._events[index]
            else:
                logger.info("[Store] ignoring delete of event %s (have %d)", index, len(self._events))
            return self.save()

    def set_device_address(self, address: str) -> bool:
        with LOCK:
            self.cfg["device_address"] = str(address).strip()
            return self.save()

    def set_offset(self, seconds: int) -> bool:
        with LOCK:
            self.cfg["utc_offset_seconds"] = int(seconds)
            return self.save()

    def set_dst(self, enabled: bool) -> bool:
        with LOCK:
            self.cfg["daylight_saving"] = bool(enabled)
            return self.save()

    @contextmanager
    def batch(self):
        with LOCK:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self.save()

    def save(self) -> bool:
        """Persist the store.  Failures are logged; memory is kept as is."""
        if self._batch_depth:
            return True
        try:
            save_config(self.to_document(), self.path)
        except OSError as e:
            logger.error("[Store] failed to write %s: %s", self.path, e)
            return False
        return True


# =========================
# Camera client
# =========================

class CommandResult(Enum):
    OK = "ok"
    FAILED = "failed"


class ActualState(Enum):
    STREAMING = "streaming"
    IDLE = "idle"
    UNKNOWN = "unknown"


class DesiredState(Enum):
    STREAMING = "streaming"
    IDLE = "idle"
    UNSET = "unset"


def device_url(address: str, path: str) -> str:
    base = address.strip().rstrip("/")
    if "://" not in base:
        base = "http://" + base
    return base + path


def parse_rtmp_status(body: str) -> Optional[int]:
    """Return the integer after the first ``status=`` marker, if any."""
    idx = body.find(STATUS_MARKER)
    if idx == -1:
        return None
    m = re.match(r"\s*(-?\d+)", body[idx + len(STATUS_MARKER):])
    return int(m.group(1)) if m else None


def state_from_status(status: Optional[int]) -> ActualState:
    if status is None:
        return ActualState.UNKNOWN
    return ActualState.STREAMING if status == 1 else ActualState.IDLE


class DeviceClient:
    """Plain HTTP GETs against the camera's CGI endpoints.

    No method raises on network trouble: commands report FAILED and
    status reads report None, leaving retries to the reconciler.
    """

    USER_AGENT = "ptz-scheduler/1.0"

    def __init__(self, timeout: float = HTTP_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.USER_AGENT})

    def send_command(self, address: str, path: str) -> CommandResult:
        """Fire a command; any HTTP response at all counts as delivered."""
        url = device_url(address, path)
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("[Dispatcher] GET %s failed: %s", url, e)
            return CommandResult.FAILED
        logger.info("[Dispatcher] GET %s -> HTTP %s", url, resp.status_code)
        return CommandResult.OK

    def start(self, address: str) -> CommandResult:
        return self.send_command(address, START_PATH)

    def stop(self, address: str) -> CommandResult:
        return self.send_command(address, STOP_PATH)

    def recall_preset(self, address: str) -> CommandResult:
        return self.send_command(address, PRESET_RECALL_PATH)

    def read_status(self, address: str) -> Optional[int]:
        url = device_url(address, STATUS_PATH)
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("[Dispatcher] status poll %s failed: %s", url, e)
            return None
        return parse_rtmp_status(resp.text)

    def poll_status(self, address: str) -> ActualState:
        return state_from_status(self.read_status(address))


def check_internet(url: str = CONNECTIVITY_URL, timeout: float = HTTP_TIMEOUT_SECONDS) -> bool:
    """True when the generate_204 probe answers 204.  Display only."""
    try:
        resp = requests.get(url, timeout=timeout, allow_redirects=False)
    except requests.RequestException:
        return False
    return resp.status_code == 204


# =========================
# Reconciliation
# =========================

class Reconciler:
    """Turn the schedule into start/stop commands and keep the camera there.

    `tick()` is meant to run once a second.  It matches every event
    against the current minute and moves the desired state:

      * an event whose date and start time match sets STREAMING and
        sends ``start`` unless STREAMING is already desired;
      * an event whose stop time matches sets IDLE and sends ``stop``
        unless IDLE is already desired.  The stop match ignores the
        event date.

    Because the desired state only changes on a match, a minute that
    keeps matching for sixty ticks sends its command once.

    Independently, once `poll_interval` seconds have passed since the
    last poll or schedule command, `repair()` reads the camera status
    and re-sends whatever command the desired state calls for when the
    camera disagrees.  UNKNOWN never agrees, so an unreachable camera is
    retried on every poll.
    """

    def __init__(self, store: ScheduleStore, device, time_source,
                 poll_interval: float = POLL_INTERVAL_SECONDS,
                 monotonic: Callable[[], float] = time.monotonic):
        self.store = store
        self.device = device
        self.time_source = time_source
        self.poll_interval = poll_interval
        self._monotonic = monotonic
        self.desired = DesiredState.UNSET
        self.actual = ActualState.UNKNOWN
        self.last_status: Optional[int] = None
        self._last_poll = monotonic()

    @property
    def start_command_issued(self) -> bool:
        return self.desired is DesiredState.STREAMING

    @property
    def stop_command_issued(self) -> bool:
        return self.desired is DesiredState.IDLE

    def now(self) -> LocalTime:
        with LOCK:
            offset, dst = self.store.utc_offset_seconds, self.store.daylight_saving
        return local_time(self.time_source.epoch(), offset, dst)

    def tick(self) -> List[str]:
        """Run one schedule evaluation.  Returns the commands sent."""
        with LOCK:
            events = self.store.list()
            address = self.store.device_address
            offset, dst = self.store.utc_offset_seconds, self.store.daylight_saving
        now = local_time(self.time_source.epoch(), offset, dst)

        sent = []
        for event in events:
            if event.starts_at(now) and self.desired is not DesiredState.STREAMING:
                self._transition(DesiredState.STREAMING, address, now)
                sent.append("start")
            if event.stops_at(now) and self.desired is not DesiredState.IDLE:
                self._transition(DesiredState.IDLE, address, now)
                sent.append("stop")

        if self._monotonic() - self._last_poll >= self.poll_interval:
            sent.extend(self.repair(address))
        return sent

    def _transition(self, desired: DesiredState, address: str, now: LocalTime):
        logger.info("[Reconciler] %s %s: desired %s -> %s", now.date, now.time,
                    self.desired.name, desired.name)
        self.desired = desired
        if desired is DesiredState.STREAMING:
            self.device.send_command(address, START_PATH)
        else:
            self.device.send_command(address, STOP_PATH)
        self._last_poll = self._monotonic()

    def repair(self, address: Optional[str] = None) -> List[str]:
        """Poll the camera and re-send the desired command if it disagrees.

        The start check runs first.  Only one of the two can apply since
        the desired state is a single value.
        """
        if address is None:
            with LOCK:
                address = self.store.device_address
        status = self.device.read_status(address)
        actual = state_from_status(status)

        sent = []
        if self.desired is DesiredState.STREAMING and actual is not ActualState.STREAMING:
            self.device.send_command(address, START_PATH)
            sent.append("start")
        elif self.desired is DesiredState.IDLE and actual is not ActualState.IDLE:
            self.device.send_command(address, STOP_PATH)
            sent.append("stop")

        if actual is not self.actual:
            logger.info("[Reconciler] camera %s -> %s", self.actual.name, actual.name)
        self.actual = actual
        self.last_status = status
        self._last_poll = self._monotonic()
        return sent

    def status(self) -> dict:
        return {
            "desired": self.desired.value,
            "actual": self.actual.value,
            "last_status": self.last_status,
        }


class StreamScheduler:
    """Drive the reconciler and NTP resync from APScheduler interval jobs.

    A single worker thread runs all jobs, so a tick never overlaps
    another tick or an NTP query.
    """

    def __init__(self, reconciler: Reconciler, time_source: NtpTimeSource,
                 tick_seconds: float = TICK_SECONDS, resync_seconds: float = 60):
        self.reconciler = reconciler
        self.time_source = time_source
        self.tick_seconds = tick_seconds
        self.resync_seconds = resync_seconds
        self.sched = BackgroundScheduler(
            daemon=True,
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )

    def start(self, recall_preset: bool = True):
        self.time_source.update()
        if recall_preset:
            address = self.reconciler.store.device_address
            logger.info("[Reconciler] recalling preset 0 on %s", address)
            self.reconciler.device.send_command(address, PRESET_RECALL_PATH)
        self.sched.add_job(self._run_tick, trigger=IntervalTrigger(seconds=self.tick_seconds),
                           id="reconcile", replace_existing=True)
        self.sched.add_job(self.time_source.update, trigger=IntervalTrigger(seconds=self.resync_seconds),
                           id="ntp-resync", replace_existing=True)
        self.sched.start()

    def shutdown(self):
        self.sched.shutdown(wait=False)

    def _run_tick(self):
        try:
            self.reconciler.tick()
        except Exception:
            # Keep the job alive; the next tick starts from scratch.
            logger.exception("[Reconciler] tick failed")


# =========================
# Web UI
# =========================

PAGE_HTML = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>PTZ Stream Scheduler</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<style>
body{font-family:system-ui,-apple-system,Segoe UI,Roboto,sans-serif;background:#0b0f14;color:#e6edf3;padding:16px}
.card{background:#10161d;border:1px solid #1e2936;border-radius:8px;padding:8px 12px;margin-bottom:10px}
input,select{background:transparent;color:#e6edf3;border:1px solid #1e2936;border-radius:6px;padding:4px 6px}
.ok{color:#3fb950}.bad{color:#f85149}
</style>
</head>
<body>
<h1>PTZ Stream Scheduler</h1>
<div class="card">
<p>Internet Connected: <span class="{{ 'ok' if internet else 'bad' }}">{{ 'Yes' if internet else 'No' }}</span></p>
<p>NTP Updated: <span class="{{ 'ok' if ntp_synced else 'bad' }}">{{ 'Yes' if ntp_synced else 'No' }}</span></p>
<p>Current Date: {{ now.date }}</p>
<p>Current Time: {{ now.time }}</p>
</div>
<form action="/updateSettings" method="post" id="settingsForm">
{% for ev in events %}
<div class="card" id="event{{ loop.index0 }}">
<h2>Event {{ loop.index }}</h2>
<label for="startDate{{ loop.index0 }}">Start Date (YYYY-MM-DD):</label><br>
<input type="text" id="startDate{{ loop.index0 }}" name="startDate{{ loop.index0 }}" value="{{ ev.date }}"><br>
<label for="startTime{{ loop.index0 }}">Start Time (HH:MM):</label><br>
<input type="text" id="startTime{{ loop.index0 }}" name="startTime{{ loop.index0 }}" value="{{ ev.start_time }}"><br>
<label for="stopTime{{ loop.index0 }}">Stop Time (HH:MM):</label><br>
<input type="text" id="stopTime{{ loop.index0 }}" name="stopTime{{ loop.index0 }}" value="{{ ev.stop_time }}"><br><br>
<button type="button" onclick="deleteEvent({{ loop.index0 }})">Delete Event</button>
</div>
{% endfor %}
<button type="button" onclick="addEvent()">Add Event</button><br><br>
<label for="ip">PTZ Camera IP:</label><br>
<input type="text" id="ip" name="ip" value="{{ device_address }}"><br><br>
<label for="timezone">Select Timezone:</label><br>
<select id="timezone" name="timezone">
{% for value, label, selected in timezones %}
<option value="{{ value }}"{% if selected %} selected{% endif %}>{{ label }}</option>
{% endfor %}
</select><br><br>
<label for="dst">Daylight Saving Time (+1hr):</label><br>
<input type="checkbox" id="dst" name="dst"{% if dst %} checked{% endif %} onchange="updateDST()"><br><br>
<input type="submit" value="Update Settings">
</form>
<h2>Current Settings</h2>
<div class="card">
{% for ev in events %}
<p>Event {{ loop.index }}: {{ ev.date }} {{ ev.start_time }} &rarr; {{ ev.stop_time }}</p>
{% endfor %}
<p>PTZ Camera IP: {{ device_address }}</p>
<p>PTZ: {{ 'Connected' if camera_status is not none else 'Not Connected' }}</p>
<p>Stream Status: {{ 'During Stream' if camera_status == 1 else 'Stream Suspended' }}</p>
<p>Scheduled State: {{ desired }}</p>
</div>
<script>
function submitTo(action){var f=document.getElementById('settingsForm');f.action=action;f.submit();}
function addEvent(){submitTo('/addEvent');}
function deleteEvent(index){submitTo('/deleteEvent?index='+index);}
function updateDST(){submitTo('/updateDST');}
</script>
</body>
</html>
"""


def _parse_int(value) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def timezone_options(utc_offset_seconds: int) -> List[tuple]:
    """Return (value, label, selected) rows for the timezone select.

    An offset that is not a whole hour gets its own selected row.  Its
    value does not parse as an integer, so submitting the form leaves
    the stored offset alone.
    """
    options = [(str(h), TIMEZONE_LABELS.get(h, f"GMT{h:+d}"), h * 3600 == utc_offset_seconds)
               for h in range(-12, 13)]
    if utc_offset_seconds % 3600:
        sign = "-" if utc_offset_seconds < 0 else "+"
        minutes = abs(utc_offset_seconds) // 60
        label = f"GMT{sign}{minutes // 60}:{minutes % 60:02d}"
        options.append((f"{utc_offset_seconds / 3600:g}", label, True))
    return options


def build_app(store: ScheduleStore, reconciler: Reconciler, device: DeviceClient,
              time_source: NtpTimeSource, probe: Callable[[], bool] = check_internet) -> Flask:
    """Construct the Flask application for the web UI.

    Every mutating endpoint persists the store and redirects back to
    the form, matching what a plain HTML form submit expects.
    """
    app = Flask(__name__)

    @app.get("/")
    def index():
        now = reconciler.now()
        with LOCK:
            events = store.list()
            address = store.device_address
            offset = store.utc_offset_seconds
            dst = store.daylight_saving
        return render_template_string(
            PAGE_HTML,
            internet=probe(),
            ntp_synced=time_source.synced,
            now=now,
            events=events,
            device_address=address,
            timezones=timezone_options(offset),
            dst=dst,
            camera_status=device.read_status(address),
            desired=reconciler.desired.name,
        )

    @app.get("/api/status")
    def api_status():
        now = reconciler.now()
        with LOCK:
            doc = store.to_document()
        status = device.read_status(doc["device_address"])
        return jsonify({
            "date": now.date,
            "time": str(now.time),
            "ntp_synced": bool(time_source.synced),
            "ntp_last_sync": time_source.last_sync,
            "internet": probe(),
            "device_address": doc["device_address"],
            "utc_offset_seconds": doc["utc_offset_seconds"],
            "daylight_saving": doc["daylight_saving"],
            "camera_connected": status is not None,
            "camera_state": state_from_status(status).value,
            "reconciler": reconciler.status(),
            "events": doc["events"],
        })

    @app.route("/updateSettings", methods=["GET", "POST"])
    def update_settings():
        values = request.values
        events = []
        i = 0
        while f"startDate{i}" in values:
            events.append(Event(
                values.get(f"startDate{i}", ""),
                values.get(f"startTime{i}", ""),
                values.get(f"stopTime{i}", ""),
            ))
            i += 1
        with store.batch():
            store.replace_all(events)
            if "ip" in values:
                store.set_device_address(values["ip"])
            if "timezone" in values:
                hours = _parse_int(values["timezone"])
                if hours is not None and -12 <= hours <= 12:
                    store.set_offset(hours * 3600)
            store.set_dst(values.get("dst") == "on")
        return redirect("/")

    @app.route("/updateDST", methods=["GET", "POST"])
    def update_dst():
        store.set_dst(request.values.get("dst") == "on")
        return redirect("/")

    @app.route("/addEvent", methods=["GET", "POST"])
    def add_event():
        store.append(Event())
        return redirect("/")

    @app.route("/deleteEvent", methods=["GET", "POST"])
    def delete_event():
        index = _parse_int(request.values.get("index"))
        if index is None:
            store.save()
        else:
            store.remove_at(index)
        return redirect("/")

    return app


# =========================
# CLI
# =========================

def print_info():
    """Print a friendly command reference to stdout."""
    print(r"""
PTZ STREAM SCHEDULER
--------------------

Running the controller
----------------------
Start the web UI together with the schedule loop:

  ./ptz_scheduler.py run

Navigate to http://<host>:8000 to see clock, NTP, internet and camera
status and to edit events.  Set PTZ_SCHEDULER_HOST to override the
listen host without editing the configuration file.

Events
------
  ./ptz_scheduler.py event add --date 2025-06-01 --start 09:45 --stop 11:30
  ./ptz_scheduler.py event list
  ./ptz_scheduler.py event delete --index 0

Settings
--------
  ./ptz_scheduler.py device 10.0.3.61
  ./ptz_scheduler.py timezone -8
  ./ptz_scheduler.py dst on

Camera
------
  ./ptz_scheduler.py poll        # print the RTMP status once
  ./ptz_scheduler.py start|stop  # send a manual command
  ./ptz_scheduler.py preset      # recall preset 0

The configuration lives in config.json next to this script (or the
path given with --config / PTZ_SCHEDULER_CONFIG).
""")


def print_status(store: ScheduleStore):
    print(f"Camera: {store.device_address}")
    hours = store.utc_offset_seconds / 3600
    print(f"Timezone: GMT{hours:+g}  DST: {'ON' if store.daylight_saving else 'OFF'}")
    print("\nEvents:")
    events = store.list()
    if not events:
        print("  (none)")
    for i, e in enumerate(events):
        print(f"  [{i}] {e.date or '-'} | {e.start_time or '-'} -> {e.stop_time or '-'}")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="PTZ camera stream scheduler")
    parser.add_argument("-info", action="store_true", help="Show usage manual")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="Run web UI and schedule loop")
    p_run.add_argument("--host", default=None)
    p_run.add_argument("--port", type=int, default=None)
    p_run.add_argument("--tick", type=float, default=TICK_SECONDS, help="Schedule evaluation interval (s)")
    p_run.add_argument("--poll", type=float, default=POLL_INTERVAL_SECONDS, help="Camera status poll interval (s)")
    p_run.add_argument("--no-preset", action="store_true", help="Skip the startup preset recall")

    sub.add_parser("status", help="Show settings and events")

    p_ev = sub.add_parser("event", help="Manage events")
    ev_sub = p_ev.add_subparsers(dest="ev_cmd")
    p_add = ev_sub.add_parser("add", help="Append an event")
    p_add.add_argument("--date", default="", help="YYYY-MM-DD")
    p_add.add_argument("--start", default="", help="HH:MM 24h")
    p_add.add_argument("--stop", default="", help="HH:MM 24h")
    ev_sub.add_parser("list", help="List events")
    p_del = ev_sub.add_parser("delete", help="Delete an event by index")
    p_del.add_argument("--index", type=int, required=True)

    p_dev = sub.add_parser("device", help="Set the camera address")
    p_dev.add_argument("address")
    p_tz = sub.add_parser("timezone", help="Set the UTC offset in hours")
    p_tz.add_argument("hours", type=int, choices=range(-12, 13), metavar="HOURS")
    p_dst = sub.add_parser("dst", help="Enable or disable daylight saving (+1h)")
    p_dst.add_argument("state", choices=["on", "off"])

    sub.add_parser("poll", help="Read the camera RTMP status once")
    sub.add_parser("start", help="Send a start command")
    sub.add_parser("stop", help="Send a stop command")
    sub.add_parser("preset", help="Recall preset 0")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if args.info or not args.cmd:
        print_info()
        return

    store = ScheduleStore.load(args.config)
    device = DeviceClient()

    if args.cmd == "run":
        ntp_cfg = store.cfg["ntp"]
        web_cfg = store.cfg["web"]
        time_source = NtpTimeSource(ntp_cfg["server"])
        reconciler = Reconciler(store, device, time_source, poll_interval=args.poll)
        scheduler = StreamScheduler(reconciler, time_source, tick_seconds=args.tick,
                                    resync_seconds=ntp_cfg["resync_seconds"])
        scheduler.start(recall_preset=not args.no_preset)
        app = build_app(store, reconciler, device, time_source)
        host = args.host or os.environ.get("PTZ_SCHEDULER_HOST") or web_cfg["host"]
        port = args.port or web_cfg["port"]
        try:
            app.run(host=host, port=port)
        finally:
            scheduler.shutdown()
        return

    if args.cmd == "status":
        print_status(store)
        return

    if args.cmd == "event":
        if args.ev_cmd == "add":
            store.append(Event(args.date, args.start, args.stop))
            print(f"Added event {len(store.list()) - 1}")
            return
        if args.ev_cmd == "delete":
            before = len(store.list())
            store.remove_at(args.index)
            print(f"Deleted {before - len(store.list())}")
            return
        for i, e in enumerate(store.list()):
            print(f"[{i}] {e.date} | {e.start_time} -> {e.stop_time}")
        return

    if args.cmd == "device":
        store.set_device_address(args.address)
        print(f"Camera address set to {store.device_address}")
        return

    if args.cmd == "timezone":
        store.set_offset(args.hours * 3600)
        print(f"Timezone set to GMT{args.hours:+d}")
        return

    if args.cmd == "dst":
        store.set_dst(args.state == "on")
        print(f"Daylight saving {'ENABLED' if store.daylight_saving else 'DISABLED'}")
        return

    if args.cmd == "poll":
        status = device.read_status(store.device_address)
        print(f"RTMP status: {status if status is not None else 'N/A'} ({state_from_status(status).value})")
        return

    if args.cmd in ("start", "stop", "preset"):
        path = {"start": START_PATH, "stop": STOP_PATH, "preset": PRESET_RECALL_PATH}[args.cmd]
        result = device.send_command(store.device_address, path)
        print(result.value.upper())
        if result is CommandResult.FAILED:
            sys.exit(1)
        return

    print_info()


if __name__ == "__main__":
    main()
