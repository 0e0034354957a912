"""Orchestration Bridge — the controller-facing side of the supervisor.

Controllers call ``run`` / ``stop`` and get an Acknowledgement back right
away; everything else arrives as LogEvents on the push channel. The same
operations are reachable through ``handle_rpc`` as JSON-RPC methods:

    agent/run      {"config": {...}}   start a run
    agent/stop     {}                  stop the current run
    agent/status   {}                  lifecycle state and current run
    agent/history  {"limit": 50}       recent events
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from agentctl.bridge.models import Acknowledgement, JsonRpcRequest, JsonRpcResponse
from agentctl.config import AgentctlSettings, settings as default_settings
from agentctl.events.bus import EventBus, EventHandler, EventStream
from agentctl.exceptions import ConfigMalformedError, RuntimeNotFoundError, SpawnFailureError
from agentctl.processes.supervisor import ProcessSupervisor
from agentctl.types import AgentConfig, LifecycleState

_logger = logging.getLogger(__name__)


class OrchestrationBridge:
    """Request/response plus push notifications over one ProcessSupervisor."""

    def __init__(
        self,
        supervisor: ProcessSupervisor | None = None,
        config: AgentctlSettings | None = None,
    ) -> None:
        self._settings = config or default_settings
        self._supervisor = supervisor or ProcessSupervisor(
            event_bus=EventBus(history_limit=self._settings.history_limit),
            config=self._settings,
        )

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def events(self) -> EventBus:
        return self._supervisor.event_bus

    @property
    def state(self) -> LifecycleState:
        return self._supervisor.state

    # ── Control ─────────────────────────────────────────────────────

    async def run(
        self,
        config: AgentConfig | dict | str | bytes,
        runtime_candidates: Sequence[str | Path] | None = None,
    ) -> Acknowledgement:
        try:
            handle = await self._supervisor.start(config, runtime_candidates)
        except ConfigMalformedError as e:
            return self._refused("config_malformed", e)
        except RuntimeNotFoundError as e:
            return self._refused("runtime_not_found", e)
        except SpawnFailureError as e:
            return self._refused("spawn_failure", e)

        runtime = "stub worker" if handle.is_stub else str(handle.runtime_path)
        return Acknowledgement(
            ok=True,
            message=f"Agent started with {runtime} (pid {handle.os_pid})",
            run_id=handle.run_id,
            state=self.state,
        )

    async def stop(self) -> Acknowledgement:
        run_id = self._supervisor.current_run_id
        stopped = await self._supervisor.stop()
        if not stopped:
            return Acknowledgement(ok=True, message="Nothing to stop", state=self.state)
        return Acknowledgement(ok=True, message="Agent stopped", run_id=run_id, state=self.state)

    def _refused(self, error: str, exc: Exception) -> Acknowledgement:
        _logger.warning("Run refused (%s): %s", error, exc)
        return Acknowledgement(ok=False, message=str(exc), state=self.state, error=error)

    # ── Push channel ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler) -> None:
        self.events.subscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self.events.unsubscribe(handler)

    def stream(self) -> EventStream:
        """Open a queue-backed event stream; close it to detach."""
        return self.events.open_stream()

    async def shutdown(self) -> None:
        await self._supervisor.shutdown()

    # ── JSON-RPC ────────────────────────────────────────────────────

    async def handle_rpc(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Dispatch a JSON-RPC request to the right handler."""
        handlers = {
            "agent/run": self._handle_run,
            "agent/stop": self._handle_stop,
            "agent/status": self._handle_status,
            "agent/history": self._handle_history,
        }

        handler = handlers.get(request.method)
        if not handler:
            return JsonRpcResponse.err(
                request.id, -32601,
                f"Method not found: {request.method}",
            )

        try:
            result = await handler(request.params)
            return JsonRpcResponse.success(request.id, result)
        except Exception as e:
            _logger.exception("Bridge RPC error: %s", e)
            return JsonRpcResponse.err(request.id, -32000, str(e))

    async def _handle_run(self, params: dict) -> dict:
        if "config" not in params:
            raise ValueError("Missing 'config' parameter")
        ack = await self.run(params["config"], params.get("runtime_candidates"))
        return ack.model_dump(mode="json")

    async def _handle_stop(self, params: dict) -> dict:
        ack = await self.stop()
        return ack.model_dump(mode="json")

    async def _handle_status(self, params: dict) -> dict:
        status = self._supervisor.describe()
        status["output"] = self._supervisor.get_output(int(params.get("lines", 20)))
        return status

    async def _handle_history(self, params: dict) -> list[dict[str, Any]]:
        events = self.events.history(
            kind=params.get("kind"),
            run_id=params.get("run_id"),
            limit=int(params.get("limit", 50)),
        )
        return [e.model_dump(mode="json") for e in events]
