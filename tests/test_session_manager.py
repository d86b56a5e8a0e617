from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from e2e_mcp.session.manager import SessionManager
from e2e_mcp.session.store import SessionStore
from e2e_mcp.settings import Settings


ECHO = "/bin/echo"
FALSE = "/bin/false"


class FakePage:
    def __init__(self) -> None:
        self.closed = False

    def is_closed(self) -> bool:
        return self.closed


class FakeBrowser:
    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0

    def is_connected(self) -> bool:
        return not self.closed

    async def new_page(self) -> FakePage:
        return FakePage()

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeLauncher:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.browsers: list[FakeBrowser] = []

    async def __call__(self) -> FakeBrowser:
        if self.fail:
            raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")
        browser = FakeBrowser()
        self.browsers.append(browser)
        return browser


def _start_json(tmp_path: Path, port: int = 3001) -> str:
    logs = {}
    for kind in ("stdout", "stderr", "combined"):
        path = tmp_path / f"{kind}.log"
        path.write_text("".join(f"{kind} {i}\n" for i in range(1, 151)), encoding="utf-8")
        logs[kind] = str(path)
    return json.dumps(
        {
            "status": "ready",
            "url": f"http://localhost:{port}",
            "port": port,
            "pid": 12345,
            "startedAt": "2026-01-01T00:00:00.000Z",
            "logs": logs,
        }
    )


SHUTDOWN_JSON = json.dumps({"status": "stopped", "previousPid": 12345, "message": "Server stopped"})
STATUS_JSON = json.dumps({"status": "running", "healthy": True, "port": 3001})


def _manager(
    *,
    timeout_ms: int = 60_000,
    launcher: FakeLauncher | None = None,
    server_command_path: str | None = None,
    log_allowed_dir: str | None = None,
) -> SessionManager:
    settings = Settings(
        session_timeout_ms=timeout_ms,
        command_timeout_ms=5000,
        server_command_path=server_command_path,
        log_allowed_dir=log_allowed_dir,
    )
    return SessionManager(SessionStore(), settings=settings, browser_launcher=launcher or FakeLauncher())


@pytest.mark.asyncio
async def test_start_session_registers_browser_and_timer(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)

    r = await m.start_session(ECHO, [_start_json(tmp_path)])
    assert r.ok is True
    session = r.value
    assert session.server_info.url == "http://localhost:3001"
    assert session.server_info.pid == 12345
    assert session.browser is launcher.browsers[0]
    assert m.get_session(session.session_id).ok
    assert m.has_timer(session.session_id)

    await m.cleanup()


@pytest.mark.asyncio
async def test_validation_failure_spawns_nothing() -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)

    r = await m.start_session("bin/dev-server", ["--start"])
    assert r.error_type == "relative_path"

    r = await m.start_session("/bin/echo; rm -rf /", ["--start"])
    assert r.error_type == "invalid_characters"

    assert m.list_sessions() == []
    assert launcher.browsers == []


@pytest.mark.asyncio
async def test_allow_list_is_enforced(tmp_path: Path) -> None:
    m = _manager(server_command_path="/usr/local/bin/dev-server")
    r = await m.start_session(ECHO, [_start_json(tmp_path)])
    assert r.error_type == "path_not_allowed"
    assert m.list_sessions() == []


@pytest.mark.asyncio
async def test_start_failure_before_insert_propagates() -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)

    r = await m.start_session(ECHO, ["server listening on 3001"])
    assert r.error_type == "invalid_json"

    r = await m.start_session(FALSE, [])
    assert r.error_type == "non_zero_exit"

    assert m.list_sessions() == []
    assert launcher.browsers == []


@pytest.mark.asyncio
async def test_start_response_with_wrong_shape_is_invalid_json() -> None:
    m = _manager()
    r = await m.start_session(ECHO, [json.dumps({"status": "ready", "url": "http://localhost:3001"})])
    assert r.error_type == "invalid_json"
    assert m.list_sessions() == []


@pytest.mark.asyncio
async def test_browser_launch_failure_removes_record(tmp_path: Path) -> None:
    m = _manager(launcher=FakeLauncher(fail=True))

    r = await m.start_session(ECHO, [_start_json(tmp_path)])
    assert r.ok is False
    assert r.error_type == "browser_launch_failed"
    assert "Executable doesn't exist" in r.error.message
    assert m.list_sessions() == []
    assert m.has_timer(r.error.details["session_id"]) is False


@pytest.mark.asyncio
async def test_stop_session_releases_everything(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.stop_session(session.session_id, ECHO, [SHUTDOWN_JSON])
    assert r.ok is True
    assert r.value["status"] == "stopped"
    assert r.value["previousPid"] == 12345

    assert m.get_session(session.session_id).error_type == "session_not_found"
    assert m.has_timer(session.session_id) is False
    assert launcher.browsers[0].close_calls == 1

    again = await m.stop_session(session.session_id, ECHO, [SHUTDOWN_JSON])
    assert again.error_type == "session_not_found"


@pytest.mark.asyncio
async def test_failed_shutdown_keeps_record_without_timer(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.stop_session(session.session_id, FALSE, [])
    assert r.error_type == "non_zero_exit"
    assert m.get_session(session.session_id).ok is True
    assert m.has_timer(session.session_id) is False
    assert launcher.browsers[0].closed is False

    # Retry succeeds.
    assert (await m.stop_session(session.session_id, ECHO, [SHUTDOWN_JSON])).ok
    assert m.list_sessions() == []


@pytest.mark.asyncio
async def test_stop_validation_failure_leaves_timer_armed(tmp_path: Path) -> None:
    m = _manager()
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.stop_session(session.session_id, "relative/cmd", ["--shutdown"])
    assert r.error_type == "relative_path"
    assert m.has_timer(session.session_id) is True

    await m.cleanup()


@pytest.mark.asyncio
async def test_idle_timeout_tears_session_down(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(timeout_ms=200, launcher=launcher)
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    await asyncio.sleep(0.45)

    assert m.get_session(session.session_id).error_type == "session_not_found"
    assert launcher.browsers[0].closed is True
    assert m.has_timer(session.session_id) is False


@pytest.mark.asyncio
async def test_activity_postpones_expiry(tmp_path: Path) -> None:
    m = _manager(timeout_ms=400)
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value
    first_activity = session.last_activity

    await asyncio.sleep(0.25)
    touched = m.update_session_activity(session.session_id)
    assert touched.ok is True
    assert touched.value.last_activity >= first_activity

    await asyncio.sleep(0.25)
    # 0.5s since start, only 0.25s since the touch.
    assert m.get_session(session.session_id).ok is True

    await asyncio.sleep(0.4)
    assert m.get_session(session.session_id).error_type == "session_not_found"


@pytest.mark.asyncio
async def test_stop_after_expiry_reports_not_found(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(timeout_ms=100, launcher=launcher)
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    await asyncio.sleep(0.3)
    r = await m.stop_session(session.session_id, ECHO, [SHUTDOWN_JSON])
    assert r.error_type == "session_not_found"
    assert launcher.browsers[0].close_calls == 1


@pytest.mark.asyncio
async def test_status_touches_activity(tmp_path: Path) -> None:
    m = _manager()
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.get_session_status(session.session_id, ECHO, [STATUS_JSON])
    assert r.ok is True
    assert r.value == {"status": "running", "healthy": True, "port": 3001}
    assert m.get_session(session.session_id).value.last_activity >= session.last_activity

    missing = await m.get_session_status("nope", ECHO, [STATUS_JSON])
    assert missing.error_type == "session_not_found"

    await m.cleanup()


@pytest.mark.asyncio
async def test_read_session_logs(tmp_path: Path) -> None:
    m = _manager()
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.read_session_logs(session.session_id, "stderr")
    assert r.ok is True
    lines = r.value.split("\n")
    assert lines[0] == "stderr 51"
    assert lines[-1] == "stderr 150"

    r = await m.read_session_logs(session.session_id, "combined", lines=2, offset=0)
    assert r.value == "combined 1\ncombined 2"

    bad = await m.read_session_logs(session.session_id, "access")
    assert bad.error_type == "invalid_log_type"

    missing = await m.read_session_logs("nope", "stdout")
    assert missing.error_type == "session_not_found"

    await m.cleanup()


@pytest.mark.asyncio
async def test_read_session_logs_outside_allowed_dir(tmp_path: Path) -> None:
    allowed = tmp_path / "allowed"
    allowed.mkdir()
    m = _manager(log_allowed_dir=str(allowed))
    session = (await m.start_session(ECHO, [_start_json(tmp_path)])).value

    r = await m.read_session_logs(session.session_id, "stdout")
    assert r.error_type == "invalid_path"

    await m.cleanup()


@pytest.mark.asyncio
async def test_cleanup_closes_all_browsers(tmp_path: Path) -> None:
    launcher = FakeLauncher()
    m = _manager(launcher=launcher)
    ids = []
    for port in (3001, 3002, 3003):
        ids.append((await m.start_session(ECHO, [_start_json(tmp_path, port)])).value.session_id)

    await m.cleanup()

    assert m.list_sessions() == []
    assert all(b.closed for b in launcher.browsers)
    assert not any(m.has_timer(i) for i in ids)
