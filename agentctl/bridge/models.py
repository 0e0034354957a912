"""Bridge data models — acknowledgements and JSON-RPC 2.0 wrappers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agentctl.types import LifecycleState, RunId


class Acknowledgement(BaseModel):
    """Reply to a control request. Progress arrives on the event channel."""

    ok: bool
    message: str = ""
    run_id: RunId | None = None
    state: LifecycleState = LifecycleState.IDLE
    error: str | None = None


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: dict[str, Any] | None = None

    @classmethod
    def success(cls, id: int | str | None, result: Any) -> JsonRpcResponse:
        return cls(id=id, result=result)

    @classmethod
    def err(cls, id: int | str | None, code: int, message: str) -> JsonRpcResponse:
        return cls(id=id, error={"code": code, "message": message})
