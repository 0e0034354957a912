"""ProcessSupervisor — owns the lifecycle of the single agent worker.

Spawns the worker as a real OS process, hands it the agent config,
turns its stdout/stderr into LogEvents and publishes them on the
EventBus. At most one worker exists per supervisor; starting a new run
stops and reaps the previous one first.

Think of this as the init system for one agent.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

import agentctl
from agentctl.config import AgentctlSettings, settings as default_settings
from agentctl.events.bus import EventBus, EventHandler
from agentctl.events.decoder import (
    LineDecoder,
    aiter_lines,
    parse_stderr_line,
    parse_stdout_line,
)
from agentctl.exceptions import ConfigMalformedError, RuntimeNotFoundError, SpawnFailureError
from agentctl.processes.resolver import RuntimeResolver, RuntimeTarget
from agentctl.processes.state_machine import LifecycleStateMachine
from agentctl.types import (
    KILLED_EXIT_CODE,
    AgentConfig,
    LifecycleState,
    LogEvent,
    LogKind,
    RunId,
    load_agent_config,
    new_id,
)

_logger = logging.getLogger(__name__)

# Tells the worker which variable carries the config in env delivery mode
CONFIG_ENV_VAR_HINT = "AGENTCTL_CONFIG_ENV_VAR"


@dataclass
class ProcessHandle:
    """One spawned worker. Never handed out for mutation."""

    run_id: RunId
    command: tuple[str, ...]
    runtime_path: Path | None = None
    is_stub: bool = False
    os_pid: int | None = None
    started_at: float | None = None
    stopped_at: float | None = None
    exit_code: int | None = None
    killed: bool = False
    stop_requested: bool = False
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)
    # Partial-line buffers, one per stream
    stdout_decoder: LineDecoder = field(default_factory=LineDecoder)
    stderr_decoder: LineDecoder = field(default_factory=LineDecoder)
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    run_task: asyncio.Task | None = field(default=None, repr=False)
    stop_task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def uptime_s(self) -> float:
        if self.started_at is None:
            return 0.0
        return (self.stopped_at or time.time()) - self.started_at


class ProcessSupervisor:
    """Start, watch and stop one agent worker process.

    Every observable thing that happens to the worker is published as a
    LogEvent; only malformed configs, spawn failures and a missing
    runtime with the stub disabled raise from ``start``.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        config: AgentctlSettings | None = None,
    ) -> None:
        self._settings = config or default_settings
        self._bus = event_bus or EventBus(history_limit=self._settings.history_limit)
        self._lifecycle = LifecycleStateMachine()
        self._lifecycle.on_transition(self._log_transition)
        self._handle: ProcessHandle | None = None
        self._last_handle: ProcessHandle | None = None
        self._start_lock = asyncio.Lock()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def state(self) -> LifecycleState:
        return self._lifecycle.state

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def current_run_id(self) -> RunId | None:
        return self._handle.run_id if self._handle else None

    def describe(self) -> dict[str, Any]:
        """Snapshot of the supervisor for status APIs."""
        handle = self._handle or self._last_handle
        info: dict[str, Any] = {"state": self.state.value, "run": None}
        if handle:
            info["run"] = {
                "run_id": handle.run_id,
                "os_pid": handle.os_pid,
                "command": " ".join(handle.command),
                "runtime": str(handle.runtime_path) if handle.runtime_path else None,
                "stub": handle.is_stub,
                "uptime_s": int(handle.uptime_s),
                "exit_code": handle.exit_code,
                "killed": handle.killed,
            }
        return info

    def get_output(self, lines: int = 50) -> dict[str, list[str]]:
        """Recent stdout/stderr lines of the current or last run."""
        handle = self._handle or self._last_handle
        if not handle or lines <= 0:
            return {"stdout": [], "stderr": []}
        return {
            "stdout": handle.stdout_lines[-lines:],
            "stderr": handle.stderr_lines[-lines:],
        }

    # ── Subscriptions ────────────────────────────────────────────────

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """Receive every LogEvent from now on. Returns an unsubscribe callable."""
        self._bus.subscribe(handler)
        return lambda: self._bus.unsubscribe(handler)

    def off_event(self, handler: EventHandler) -> None:
        self._bus.unsubscribe(handler)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(
        self,
        config: AgentConfig | dict | str | bytes,
        runtime_candidates: Sequence[str | Path] | None = None,
    ) -> ProcessHandle:
        """Launch a worker run and return as soon as the process exists."""
        run_id = new_id()
        try:
            agent_config = load_agent_config(config)
        except ConfigMalformedError as e:
            await self._emit(LogKind.ERROR, str(e), run_id, error="config_malformed")
            raise
        payload = agent_config.to_payload()

        async with self._start_lock:
            if self._handle is not None:
                await self._emit(
                    LogKind.INFO,
                    "Stopping the running worker before starting a new one",
                    self._handle.run_id,
                )
                await self.stop()
            await self._drain_previous()

            target = await self._resolve(runtime_candidates, run_id)
            handle = ProcessHandle(
                run_id=run_id,
                command=target.command,
                runtime_path=target.path,
                is_stub=target.is_stub,
            )

            await self._lifecycle.transition(LifecycleState.STARTING)
            try:
                proc = await self._spawn(target, payload)
            except OSError as e:
                await self._lifecycle.transition(LifecycleState.FAILED)
                await self._emit(
                    LogKind.ERROR,
                    f"Failed to spawn worker: {e}",
                    run_id,
                    error="spawn_failure",
                    command=" ".join(target.command),
                )
                await self._lifecycle.transition(LifecycleState.IDLE)
                raise SpawnFailureError(f"Failed to spawn {target.command[0]}: {e}") from e

            handle.process = proc
            handle.os_pid = proc.pid
            handle.started_at = time.time()
            await self._lifecycle.transition(LifecycleState.RUNNING)
            handle.run_task = asyncio.create_task(self._run(handle, payload))
            self._handle = handle
            self._last_handle = handle
            return handle

    async def stop(self) -> bool:
        """Stop the running worker. Returns False when there was nothing to stop.

        Concurrent callers share one termination sequence and all return
        once the worker is reaped.
        """
        handle = self._handle
        if handle is None:
            _logger.debug("Nothing to stop")
            return False

        if handle.stop_task is None:
            handle.stop_task = asyncio.create_task(self._terminate(handle))
        if asyncio.current_task() is handle.run_task:
            # Called from a subscriber during delivery; waiting would deadlock.
            return True
        await asyncio.shield(handle.stop_task)
        return True

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the current (or last) run to finish; return its exit code."""
        handle = self._handle or self._last_handle
        if handle is None or handle.run_task is None:
            return None
        await asyncio.wait_for(asyncio.shield(handle.run_task), timeout)
        return handle.exit_code

    async def shutdown(self) -> None:
        """Stop any worker and wait for its events to be delivered."""
        await self.stop()
        await self._drain_previous()

    # ── Internals ────────────────────────────────────────────────────

    async def _resolve(
        self,
        runtime_candidates: Sequence[str | Path] | None,
        run_id: RunId,
    ) -> RuntimeTarget:
        if runtime_candidates is None:
            runtime_candidates = self._settings.runtime_candidates
        resolver = RuntimeResolver(
            candidates=tuple(str(c) for c in runtime_candidates),
            base_dir=self._settings.base_dir,
            stub_enabled=self._settings.stub_enabled,
            interpreters=dict(self._settings.interpreters),
        )
        try:
            target = resolver.resolve()
        except RuntimeNotFoundError as e:
            await self._emit(LogKind.ERROR, str(e), run_id, error="runtime_not_found")
            raise

        if target.is_stub:
            await self._emit(
                LogKind.INFO,
                "No agent runtime found, using the built-in stub worker",
                run_id,
                stub=True,
            )
        else:
            await self._emit(
                LogKind.INFO,
                f"Agent runner starting with runtime: {target.path}",
                run_id,
                runtime=str(target.path),
            )
        return target

    async def _spawn(self, target: RuntimeTarget, payload: bytes) -> asyncio.subprocess.Process:
        env_var = self._settings.config_env_var
        env = {**os.environ, CONFIG_ENV_VAR_HINT: env_var, "PYTHONUNBUFFERED": "1"}
        if self._settings.config_delivery == "env":
            env[env_var] = payload.decode("utf-8")
            stdin = asyncio.subprocess.DEVNULL
        else:
            env.pop(env_var, None)
            stdin = asyncio.subprocess.PIPE

        if target.is_stub:
            # The stub must import even when agentctl is not installed
            package_root = str(Path(agentctl.__file__).resolve().parent.parent)
            existing = env.get("PYTHONPATH")
            env["PYTHONPATH"] = os.pathsep.join(filter(None, [package_root, existing]))

        return await asyncio.create_subprocess_exec(
            *target.command,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

    async def _run(self, handle: ProcessHandle, payload: bytes) -> None:
        """Feed the config, drain both streams concurrently, then reap."""
        proc = handle.process
        failure: Exception | None = None
        try:
            await asyncio.gather(
                self._feed_stdin(proc, payload),
                self._pump(handle, proc.stdout, is_stderr=False),
                self._pump(handle, proc.stderr, is_stderr=True),
            )
        except Exception as e:
            failure = e
            _logger.exception("Lost output of worker run %s", handle.run_id)
            await self._emit(LogKind.ERROR, f"Lost worker output: {e}", handle.run_id)
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
        returncode = await proc.wait()
        await self._finish(handle, returncode, failed=failure is not None)

    async def _feed_stdin(self, proc: asyncio.subprocess.Process, payload: bytes) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(payload)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            _logger.debug("Worker closed stdin before reading its config: %s", e)
        finally:
            proc.stdin.close()

    async def _pump(
        self,
        handle: ProcessHandle,
        stream: asyncio.StreamReader | None,
        is_stderr: bool,
    ) -> None:
        if stream is None:
            return
        if is_stderr:
            decoder, tail, parse = handle.stderr_decoder, handle.stderr_lines, parse_stderr_line
        else:
            decoder, tail, parse = handle.stdout_decoder, handle.stdout_lines, parse_stdout_line

        limit = self._settings.output_tail_lines
        async for line in aiter_lines(stream, self._settings.read_chunk_size, decoder):
            tail.append(line)
            if len(tail) > limit:
                del tail[: len(tail) - limit]
            await self._bus.publish(parse(line, handle.run_id))

    async def _terminate(self, handle: ProcessHandle) -> None:
        """SIGTERM, wait out the grace period, then SIGKILL."""
        handle.stop_requested = True
        if self._handle is handle and self._lifecycle.state == LifecycleState.RUNNING:
            await self._lifecycle.transition(LifecycleState.STOPPING)

        proc = handle.process
        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass

        grace = self._settings.grace_period_s
        if not await self._reaped(proc, grace):
            await self._emit(
                LogKind.WARN,
                f"Worker did not exit within {grace:g}s of SIGTERM, killing it",
                handle.run_id,
                error="stop_timeout",
                grace_period_s=grace,
            )
            handle.killed = True
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await self._reaped(proc, grace)

        # Reaped; the remaining output and the exit event get a bounded window.
        done, _ = await asyncio.wait({handle.run_task}, timeout=grace)
        if not done:
            _logger.warning(
                "Worker run %s reaped but its events are still being delivered", handle.run_id
            )

    @staticmethod
    async def _reaped(proc: asyncio.subprocess.Process, timeout: float) -> bool:
        """Wait up to ``timeout`` for the OS process to exit."""
        if proc.returncode is not None:
            return True
        try:
            await asyncio.wait_for(proc.wait(), timeout)
        except asyncio.TimeoutError:
            return proc.returncode is not None
        return True

    async def _finish(self, handle: ProcessHandle, returncode: int, failed: bool = False) -> None:
        handle.exit_code = returncode
        handle.stopped_at = time.time()

        code: int | str = KILLED_EXIT_CODE if handle.killed else returncode
        data: dict[str, Any] = {
            "code": code,
            "returncode": returncode,
            "uptime_s": round(handle.uptime_s, 3),
            "stop_requested": handle.stop_requested,
        }
        if handle.killed:
            message = "Worker was killed"
        elif handle.stop_requested:
            message = f"Worker stopped with exit code {returncode}"
        else:
            message = f"Worker exited with code {returncode}"
            if returncode != 0:
                data["stderr_tail"] = "\n".join(handle.stderr_lines[-10:])[:500]

        # Release the slot before announcing, so subscribers may start a new run.
        if self._handle is handle:
            self._handle = None
        if failed:
            await self._lifecycle.transition(LifecycleState.FAILED)
        await self._lifecycle.transition(LifecycleState.IDLE)
        await self._emit(LogKind.EXIT, message, handle.run_id, **data)

    async def _drain_previous(self) -> None:
        """Make sure the last run's events are fully delivered."""
        handle = self._last_handle
        if handle is None or handle.run_task is None:
            return
        task = handle.run_task
        if task.done() or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    async def _emit(self, kind: LogKind, message: str, run_id: RunId | None = None, **data: Any) -> LogEvent:
        return await self._bus.publish(
            LogEvent(kind=kind, message=message, data=data, run_id=run_id)
        )

    async def _log_transition(self, old: LifecycleState, new: LifecycleState) -> None:
        _logger.info("Worker lifecycle %s -> %s", old.value, new.value)
