"""
Run a dev-server command and parse the single JSON value it prints.

A start command typically prints its ready-state JSON and keeps serving, so
the call resolves on the first successful parse rather than on process exit.
Each call is a race between these conditions:

  - stdout parsed as JSON   -> success, process handed to a background reaper
  - process exited first    -> invalid_json (exit 0) or non_zero_exit
  - timeout elapsed         -> SIGTERM, resolve "timeout"
  - stdout over the cap     -> SIGTERM, invalid_json

Arguments are always passed as a vector; no shell is involved.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import Any, Iterable, Sequence

import structlog

from e2e_mcp.result import Result


logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
READ_CHUNK_SIZE = 4096
# stdout is buffered until it parses; a command that never prints JSON is cut off here.
MAX_OUTPUT_BYTES = 1024 * 1024
# After the process exits, how long to wait for its pipes to reach EOF. A
# daemonized grandchild may keep them open forever.
EXIT_DRAIN_GRACE_SECONDS = 1.0
# After SIGTERM, how long before SIGKILL.
TERMINATE_GRACE_SECONDS = 5.0

_NO_JSON = object()
_TOO_LARGE = object()


def _decode(buf: bytes | bytearray) -> str:
    return bytes(buf).decode("utf-8", errors="replace")


_DECODER = json.JSONDecoder()


def _try_parse(buf: bytes | bytearray) -> Any:
    # First complete JSON value wins; a server that keeps logging to stdout
    # after its ready line must not spoil the parse.
    text = _decode(buf).strip()
    if not text:
        return _NO_JSON
    try:
        value, end = _DECODER.raw_decode(text)
    except ValueError:
        return _NO_JSON
    if end != len(text) and not isinstance(value, (dict, list)):
        # "3 workers started" is prose, not the number 3.
        return _NO_JSON
    return value


async def _read_until_json(stream: asyncio.StreamReader | None, buf: bytearray, limit: int) -> Any:
    if stream is None:
        return _NO_JSON
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return _NO_JSON
        buf.extend(chunk)
        if len(buf) > limit:
            return _TOO_LARGE
        parsed = _try_parse(buf)
        if parsed is not _NO_JSON:
            return parsed


async def _collect(stream: asyncio.StreamReader | None, buf: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return
        buf.extend(chunk)


async def _discard(stream: asyncio.StreamReader | None) -> None:
    if stream is None:
        return
    while await stream.read(READ_CHUNK_SIZE):
        pass


async def _cancel_all(tasks: Iterable[asyncio.Task]) -> None:
    pending = [t for t in tasks if not t.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


def _signal(proc: asyncio.subprocess.Process, sig: int) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.send_signal(sig)
    except ProcessLookupError:
        pass


class CommandExecutor:
    """Spawns server commands; keeps detached processes referenced until they exit."""

    def __init__(
        self, *, default_timeout_ms: int = DEFAULT_TIMEOUT_MS, max_output_bytes: int = MAX_OUTPUT_BYTES
    ) -> None:
        if default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be positive")
        self.default_timeout_ms = int(default_timeout_ms)
        self.max_output_bytes = int(max_output_bytes)
        self._reapers: dict[asyncio.Task, asyncio.subprocess.Process] = {}

    @property
    def detached_count(self) -> int:
        return len(self._reapers)

    async def execute(
        self,
        command_path: str,
        args: Sequence[str] | None = None,
        *,
        timeout_ms: int | None = None,
        cwd: str | None = None,
    ) -> Result:
        argv = [str(a) for a in (args or [])]
        timeout_ms = int(self.default_timeout_ms if timeout_ms is None else timeout_ms)
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        log = logger.bind(command=command_path, args=argv)

        try:
            proc = await asyncio.create_subprocess_exec(
                command_path,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            log.warning("command_spawn_failed", error=str(exc))
            return Result.failure("execution_error", str(exc), command=command_path, args=argv)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        stdout = bytearray()
        stderr = bytearray()
        parse_task = asyncio.create_task(_read_until_json(proc.stdout, stdout, self.max_output_bytes))
        stderr_task = asyncio.create_task(_collect(proc.stderr, stderr))
        exit_task = asyncio.create_task(proc.wait())
        helpers = (parse_task, stderr_task, exit_task)

        try:
            done, _ = await asyncio.wait(
                {parse_task, exit_task},
                timeout=max(0.0, deadline - loop.time()),
                return_when=asyncio.FIRST_COMPLETED,
            )

            if parse_task in done and parse_task.result() is _TOO_LARGE:
                await _cancel_all(helpers)
                if exit_task not in done:
                    _signal(proc, signal.SIGTERM)
                self._detach(proc, kill_after=TERMINATE_GRACE_SECONDS)
                return self._output_too_large(command_path, argv, stdout, log)

            if parse_task in done and parse_task.result() is not _NO_JSON:
                await _cancel_all(helpers)
                self._detach(proc)
                log.info("command_output_parsed", pid=proc.pid, exited=proc.returncode is not None)
                return Result.success(parse_task.result())

            if exit_task not in done:
                if done:
                    # stdout closed without JSON while the process keeps running.
                    await asyncio.wait({exit_task}, timeout=max(0.0, deadline - loop.time()))
                if not exit_task.done():
                    await _cancel_all(helpers)
                    return self._on_timeout(proc, command_path, argv, timeout_ms, log)

            # The process exited. Give the pipes a short grace to deliver their
            # last bytes before judging the output.
            grace = min(EXIT_DRAIN_GRACE_SECONDS, max(0.0, deadline - loop.time()))
            if grace > 0:
                await asyncio.wait({parse_task, stderr_task}, timeout=grace)
            pipes_open = not (parse_task.done() and stderr_task.done())

            parsed = parse_task.result() if parse_task.done() else _NO_JSON
            await _cancel_all(helpers)
            if pipes_open or parsed is _TOO_LARGE:
                self._detach(proc)

            if parsed is _TOO_LARGE:
                return self._output_too_large(command_path, argv, stdout, log)

            if parsed is not _NO_JSON:
                log.info("command_output_parsed", pid=proc.pid, exited=True)
                return Result.success(parsed)

            exit_code = proc.returncode
            if exit_code != 0:
                log.warning("command_non_zero_exit", exit_code=exit_code)
                return Result.failure(
                    "non_zero_exit",
                    f"Command exited with code {exit_code}",
                    command=command_path,
                    args=argv,
                    exit_code=exit_code,
                    stderr=_decode(stderr),
                )

            raw = _decode(stdout)
            try:
                json.loads(raw.strip())
                parse_error = "incomplete output"
            except ValueError as exc:
                parse_error = str(exc)
            log.warning("command_invalid_json", parse_error=parse_error)
            return Result.failure(
                "invalid_json",
                "Failed to parse command output as JSON",
                command=command_path,
                args=argv,
                stdout=raw,
                parse_error=parse_error,
            )
        finally:
            await _cancel_all(helpers)

    def _on_timeout(self, proc, command_path: str, argv: list[str], timeout_ms: int, log) -> Result:
        _signal(proc, signal.SIGTERM)
        self._detach(proc, kill_after=TERMINATE_GRACE_SECONDS)
        log.warning("command_timeout", timeout_ms=timeout_ms, pid=proc.pid)
        return Result.failure(
            "timeout",
            f"Command timed out after {timeout_ms}ms",
            command=command_path,
            args=argv,
            timeout_ms=timeout_ms,
        )

    def _output_too_large(self, command_path: str, argv: list[str], stdout: bytearray, log) -> Result:
        log.warning("command_output_too_large", limit=self.max_output_bytes, received=len(stdout))
        return Result.failure(
            "invalid_json",
            f"Command printed more than {self.max_output_bytes} bytes without a JSON value",
            command=command_path,
            args=argv,
            stdout=_decode(stdout[:READ_CHUNK_SIZE]),
            parse_error="output too large",
        )

    def _detach(self, proc: asyncio.subprocess.Process, *, kill_after: float | None = None) -> None:
        task = asyncio.create_task(self._reap(proc, kill_after=kill_after))
        self._reapers[task] = proc
        task.add_done_callback(lambda t: self._reapers.pop(t, None))

    async def _reap(self, proc: asyncio.subprocess.Process, *, kill_after: float | None) -> None:
        # Keep draining so a chatty server never blocks on a full pipe.
        drains = [asyncio.create_task(_discard(proc.stdout)), asyncio.create_task(_discard(proc.stderr))]
        try:
            if kill_after is not None:
                try:
                    await asyncio.wait_for(proc.wait(), timeout=kill_after)
                except asyncio.TimeoutError:
                    _signal(proc, signal.SIGKILL)
            await proc.wait()
            logger.debug("detached_process_exited", pid=proc.pid, exit_code=proc.returncode)
            await asyncio.gather(*drains, return_exceptions=True)
        finally:
            await _cancel_all(drains)

    async def shutdown(self) -> None:
        """Terminate and reap processes this executor still tracks."""
        tracked = dict(self._reapers)
        if not tracked:
            return
        for proc in tracked.values():
            _signal(proc, signal.SIGTERM)
        _, pending = await asyncio.wait(tracked.keys(), timeout=TERMINATE_GRACE_SECONDS)
        for task in pending:
            _signal(tracked[task], signal.SIGKILL)
        await _cancel_all(pending)
