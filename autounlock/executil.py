from __future__ import annotations

"""Subprocess wrapper with deadline enforcement and JSONL event logging."""

import datetime as _dt
import json
import os
import subprocess
import sys
import threading
import time
from typing import IO, Sequence

from .paths import log_dirs


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_FILENAME = "zfs-auto-unlock.jsonl"

_WRITE_LOCK = threading.Lock()


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return log_dirs()


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
        except OSError:
            continue
        if not os.access(d_expanded, os.W_OK):
            continue
        LOG_PATH = os.path.join(d_expanded, LOG_FILENAME)
        return LOG_PATH
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration

    @property
    def ok(self) -> bool:
        return self.rc == 0


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("AUTOUNLOCK_LOG_LEVEL", "INFO").upper()
ECHO_LEVEL = "INFO"


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with _WRITE_LOCK, open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
    except OSError:
        pass


def _echo(rec: dict) -> None:
    fields = " ".join(
        f"{k}={v}" for k, v in rec.items() if k not in ("ts", "level", "event") and v is not None
    )
    line = f"{rec['level']} {rec['event']}"
    if fields:
        line = f"{line} {fields}"
    try:
        print(line, file=sys.stderr, flush=True)
    except (OSError, ValueError):
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, LEVELS["INFO"])
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    path = _ensure_logger()
    if path:
        append_jsonl(path, rec)
    if lvl >= LEVELS.get(ECHO_LEVEL, 20):
        _echo(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def info(event: str, **fields):
    log("INFO", event, **fields)


def warn(event: str, **fields):
    log("WARN", event, **fields)


def error(event: str, **fields):
    log("ERROR", event, **fields)


def run(
    cmd: Sequence[str],
    check: bool = False,
    timeout: float | None = 60.0,
    env: dict | None = None,
    stdout: IO | None = None,
) -> Result:
    """Run ``cmd`` and capture its output.

    ``timeout`` is the remaining budget for the caller.  A budget that is
    already spent raises ``subprocess.TimeoutExpired`` without starting the
    process; an expiry mid-run kills the child before the exception
    propagates.  When ``stdout`` is a file object the child writes straight
    into it and ``Result.out`` is empty.
    """

    trace("exec.start", cmd=list(cmd), timeout=timeout)
    if timeout is not None and timeout <= 0:
        trace("exec.deadline_spent", cmd=list(cmd))
        raise subprocess.TimeoutExpired(list(cmd), 0)
    started = time.monotonic()
    kwargs = {"text": True, "timeout": timeout, "env": env}
    if stdout is not None:
        kwargs.update(stdout=stdout, stderr=subprocess.PIPE)
    else:
        kwargs.update(capture_output=True)
    try:
        proc = subprocess.run(list(cmd), **kwargs)
    except subprocess.TimeoutExpired:
        dur = time.monotonic() - started
        trace("exec.timeout", cmd=list(cmd), dur=dur)
        raise
    dur = time.monotonic() - started
    out = proc.stdout if stdout is None else ""
    trace("exec.done", cmd=list(cmd), rc=proc.returncode, dur=dur, err=(proc.stderr or "").strip() or None)
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, list(cmd), out, proc.stderr)
    return Result(proc.returncode, out or "", proc.stderr or "", dur)
