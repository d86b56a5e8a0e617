#!/usr/bin/env python3
"""
Reference dev-server command for e2e-mcp-server.

    server_command.py --start     boot a small HTTP app, print one JSON line, keep serving
    server_command.py --status    probe the running app
    server_command.py --restart   stop the running app (if any) and start a new one
    server_command.py --shutdown  stop the running app

Every invocation prints exactly one JSON object on stdout. State lives in a
JSON file next to the log files so the short-lived --status/--shutdown
invocations can find the long-running --start process.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import socket
import sys
import tempfile
import threading
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import httpx


STATE_DIR = Path(os.getenv("E2E_SERVER_STATE_DIR") or Path(tempfile.gettempdir()) / "e2e-mcp-server")
STATE_FILE = STATE_DIR / "state.json"
LOG_DIR = STATE_DIR / "logs"
FIRST_PORT = 3001
STOP_GRACE_SECONDS = 5.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def _load_state() -> dict[str, Any] | None:
    try:
        return json.loads(STATE_FILE.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def _save_state(state: dict[str, Any]) -> None:
    STATE_DIR.mkdir(parents=True, exist_ok=True)
    tmp = STATE_FILE.with_suffix(".tmp")
    tmp.write_text(json.dumps(state, indent=2), encoding="utf-8")
    os.replace(tmp, STATE_FILE)


def _clear_state() -> None:
    try:
        STATE_FILE.unlink()
    except FileNotFoundError:
        pass


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _find_free_port(start: int = FIRST_PORT, attempts: int = 200) -> int:
    for port in range(start, start + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(("127.0.0.1", port))
            except OSError:
                continue
            return port
    raise RuntimeError(f"no free port in {start}..{start + attempts - 1}")


def _uptime_seconds(state: dict[str, Any]) -> float | None:
    try:
        started = datetime.fromisoformat(str(state["startedAt"]))
    except (KeyError, ValueError):
        return None
    return round((datetime.now(timezone.utc) - started).total_seconds(), 3)


class _LogWriter:
    def __init__(self, logs: dict[str, str]) -> None:
        self.logs = logs
        self._lock = threading.Lock()
        for path in logs.values():
            Path(path).write_text("", encoding="utf-8")

    def write(self, message: str, *, error: bool = False) -> None:
        line = f"[{_now_iso()}] {message}\n"
        with self._lock:
            with open(self.logs["combined"], "a", encoding="utf-8") as f:
                f.write(line)
            with open(self.logs["stderr" if error else "stdout"], "a", encoding="utf-8") as f:
                f.write(line)


def _make_handler(log: _LogWriter):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            log.write(f"GET {self.path}")
            if self.path.startswith("/api/"):
                body = json.dumps({"message": "E2E Test Server", "timestamp": _now_iso(), "path": self.path}).encode()
                ctype = "application/json"
            else:
                body = (
                    "<!doctype html><html><head><title>E2E Test Server</title></head><body>"
                    "<h1 id='title'>E2E Test Server</h1>"
                    "<input id='name' type='text'><button id='go' onclick=\"document.getElementById('out')"
                    ".textContent = 'Hello, ' + document.getElementById('name').value\">Go</button>"
                    "<p id='out'></p></body></html>"
                ).encode()
                ctype = "text/html; charset=utf-8"
            self.send_response(200)
            self.send_header("Content-Type", ctype)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            return

    return Handler


def start(*, previous: dict[str, Any] | None = None) -> int:
    state = _load_state()
    if state and _pid_alive(int(state.get("pid") or 0)):
        _emit(
            {
                "status": "already_running",
                "url": state["url"],
                "port": state["port"],
                "pid": state["pid"],
                "startedAt": state["startedAt"],
                "logs": state["logs"],
                "message": "Server is already running",
            }
        )
        return 0

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    logs = {kind: str(LOG_DIR / f"{kind}-{stamp}.log") for kind in ("stdout", "stderr", "combined")}
    log = _LogWriter(logs)

    port = _find_free_port()
    try:
        httpd = ThreadingHTTPServer(("127.0.0.1", port), _make_handler(log))
    except OSError as exc:
        log.write(f"Server error: {exc}", error=True)
        _emit({"status": "error", "message": f"Failed to start server: {exc}"})
        return 1

    url = f"http://localhost:{port}"
    started_at = _now_iso()
    state = {"url": url, "port": port, "pid": os.getpid(), "startedAt": started_at, "logs": logs}
    _save_state(state)
    log.write(f"Server started at {url}")

    def _stop(signum: int, _frame: Any) -> None:
        log.write(f"Received {signal.Signals(signum).name}, shutting down")
        threading.Thread(target=httpd.shutdown, daemon=True).start()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    if previous is None:
        _emit({"status": "ready", **state, "message": "Server started successfully"})
    else:
        _emit(
            {
                "status": "restarted",
                **state,
                "previousPid": previous.get("pid"),
                "previousPort": previous.get("port"),
                "message": "Server restarted successfully",
            }
        )

    try:
        httpd.serve_forever()
    finally:
        httpd.server_close()
        current = _load_state()
        if current and current.get("pid") == os.getpid():
            _clear_state()
    return 0


def _terminate(pid: int) -> str:
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return "already_stopped"
    deadline = time.monotonic() + STOP_GRACE_SECONDS
    while time.monotonic() < deadline:
        if not _pid_alive(pid):
            return "stopped"
        time.sleep(0.1)
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        return "stopped"
    return "force_stopped"


def shutdown() -> int:
    state = _load_state()
    if not state:
        _emit({"status": "already_stopped", "message": "Server is not running"})
        return 0

    pid = int(state.get("pid") or 0)
    outcome = _terminate(pid) if pid > 0 else "already_stopped"
    _clear_state()
    _emit(
        {
            "status": outcome,
            "previousPid": state.get("pid"),
            "previousPort": state.get("port"),
            "stoppedAt": _now_iso(),
            "uptime": _uptime_seconds(state),
            "message": "Server stopped" if outcome != "already_stopped" else "Server was not running",
        }
    )
    return 0


def status() -> int:
    state = _load_state()
    if not state or not _pid_alive(int(state.get("pid") or 0)):
        _emit({"status": "stopped", "message": "Server is not running"})
        return 0

    try:
        resp = httpx.get(state["url"], timeout=5.0)
        healthy = resp.status_code == 200
    except httpx.HTTPError:
        healthy = False

    _emit(
        {
            "status": "running" if healthy else "unhealthy",
            "url": state["url"],
            "port": state["port"],
            "pid": state["pid"],
            "startedAt": state["startedAt"],
            "uptime": _uptime_seconds(state),
            "healthy": healthy,
            "logs": state["logs"],
        }
    )
    return 0


def restart() -> int:
    state = _load_state()
    if state:
        pid = int(state.get("pid") or 0)
        if pid > 0:
            _terminate(pid)
        _clear_state()
    return start(previous=state or {})


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reference dev-server command")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--start", action="store_true")
    group.add_argument("--status", action="store_true")
    group.add_argument("--restart", action="store_true")
    group.add_argument("--shutdown", action="store_true")
    args = parser.parse_args(argv)

    if args.start:
        return start()
    if args.status:
        return status()
    if args.restart:
        return restart()
    return shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
