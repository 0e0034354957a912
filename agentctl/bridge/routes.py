"""HTTP control surface — JSON-RPC endpoint plus a live event WebSocket.

    POST /rpc         JSON-RPC 2.0 (agent/run, agent/stop, agent/status, agent/history)
    WS   /ws/events   every LogEvent as JSON, in publish order
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from agentctl import __version__
from agentctl.bridge.facade import OrchestrationBridge
from agentctl.bridge.models import JsonRpcRequest, JsonRpcResponse

_logger = logging.getLogger(__name__)

router = APIRouter()

_bridge: OrchestrationBridge | None = None


def set_bridge(bridge: OrchestrationBridge | None) -> None:
    global _bridge
    _bridge = bridge


def create_app(bridge: OrchestrationBridge) -> FastAPI:
    """Standalone app for `agentctl serve`; stops the worker on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await bridge.shutdown()

    set_bridge(bridge)
    app = FastAPI(title="agentctl", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app


@router.post("/rpc")
async def rpc(request: dict[str, Any]) -> JSONResponse:
    """JSON-RPC 2.0 endpoint for the control operations."""
    if _bridge is None:
        return JSONResponse({"error": "Bridge not initialized"}, status_code=503)

    try:
        call = JsonRpcRequest(**request)
    except Exception as e:
        resp = JsonRpcResponse.err(None, -32700, f"Parse error: {e}")
        return JSONResponse(resp.model_dump(mode="json"))

    resp = await _bridge.handle_rpc(call)
    return JSONResponse(resp.model_dump(mode="json"))


@router.websocket("/ws/events")
async def ws_events(websocket: WebSocket) -> None:
    bridge = _bridge
    if bridge is None:
        await websocket.accept()
        await websocket.close(code=1011)
        return

    # Per-connection queue; sends never run on the supervisor's output pump.
    stream = bridge.stream()
    await websocket.accept()

    async def sender() -> None:
        async for event in stream:
            try:
                await websocket.send_json(event.model_dump(mode="json"))
            except Exception as e:
                _logger.debug("Dropping events for closed WebSocket: %s", e)
                stream.close()
                return

    send_task = asyncio.create_task(sender())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        stream.close()
        send_task.cancel()
        try:
            await send_task
        except asyncio.CancelledError:
            pass
