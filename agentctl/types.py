"""Core types shared across all agentctl subsystems."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, Field, ValidationError

from agentctl.exceptions import ConfigMalformedError

# ── ID Types ──────────────────────────────────────────────────────────────────

RunId: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Lifecycle ─────────────────────────────────────────────────────────────────


class LifecycleState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


# ── Log Events ────────────────────────────────────────────────────────────────


class LogKind(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    AGENT_EVENT = "agent-event"
    STEP = "step"
    START = "start"
    COMPLETE = "complete"
    EXIT = "exit"
    STDOUT_RAW = "stdout-raw"


class EventOrigin(str, Enum):
    WORKER = "worker"
    ORCHESTRATOR = "orchestrator"


class LogEvent(BaseModel):
    """One unit of observability from a worker run."""

    id: str = Field(default_factory=new_id)
    kind: LogKind
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    run_id: RunId | None = None
    origin: EventOrigin = EventOrigin.ORCHESTRATOR


# Sentinel exit code reported when the worker had to be SIGKILLed
KILLED_EXIT_CODE = "killed"


# ── Agent Configuration ──────────────────────────────────────────────────────


class AgentStep(BaseModel):
    name: str | None = None

    model_config = {"extra": "allow"}


class AgentConfig(BaseModel):
    """Caller-supplied agent document. Forwarded to the worker untouched."""

    name: str = ""
    instructions: str = ""
    steps: list[AgentStep] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def to_payload(self) -> bytes:
        return self.model_dump_json(exclude_unset=True).encode("utf-8")


def load_agent_config(raw: AgentConfig | dict | str | bytes) -> AgentConfig:
    """Accept a model, a mapping or a JSON document and return an AgentConfig."""
    if isinstance(raw, AgentConfig):
        return raw
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ConfigMalformedError(
                f"Agent config must be a JSON object, got {type(raw).__name__}"
            )
        return AgentConfig.model_validate(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigMalformedError(f"Failed to parse agent config: {e}") from e
    except ValidationError as e:
        raise ConfigMalformedError(f"Invalid agent config: {e}") from e
