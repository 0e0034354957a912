"""Event stream decoder — raw worker output bytes to typed LogEvents.

Workers write one JSON record per line on stdout:

    {"type": "step", "message": "Step 1/2: fetch", "data": {...}}

Reads arrive in chunks whose boundaries mean nothing, so the decoder keeps
the trailing partial line between chunks and only hands out complete lines.
stderr goes through the same line splitting but is never parsed.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Iterator

from pydantic import BaseModel, Field, ValidationError

from agentctl.types import EventOrigin, LogEvent, LogKind, RunId

_KNOWN_KINDS = {k.value for k in LogKind}


class LineDecoder:
    """Reassembles newline-delimited text lines from arbitrary byte chunks."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Bytes held back waiting for a line feed."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed."""
        if not chunk:
            return []
        self._buffer.extend(chunk)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)
        return [line for line in map(self._decode, complete) if line is not None]

    def flush(self) -> list[str]:
        """End of stream: emit whatever is left, newline or not."""
        rest = bytes(self._buffer)
        self._buffer.clear()
        line = self._decode(rest)
        return [line] if line is not None else []

    def _decode(self, raw: bytes) -> str | None:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        text = raw.decode(self._encoding, errors="replace")
        if not text.strip():
            return None
        return text


def decode_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Lazily turn an iterable of byte chunks into complete lines."""
    decoder = LineDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()


async def aiter_lines(
    stream: asyncio.StreamReader,
    chunk_size: int = 4096,
    decoder: LineDecoder | None = None,
) -> AsyncIterator[str]:
    """Read a stream chunk by chunk and yield complete lines."""
    decoder = decoder or LineDecoder()
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.flush():
        yield line


class WorkerRecord(BaseModel):
    """Wire shape of one worker stdout line. Unknown fields are ignored."""

    type: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None

    model_config = {"extra": "ignore"}


def parse_stdout_line(line: str, run_id: RunId | None = None) -> LogEvent:
    """Parse a worker stdout line, degrading to stdout-raw on any failure."""
    try:
        payload = json.loads(line)
        if not isinstance(payload, dict):
            raise ValueError("record is not a JSON object")
        record = WorkerRecord.model_validate(payload)
    except (ValueError, RecursionError, ValidationError):
        # json.JSONDecodeError is a ValueError; deep nesting raises RecursionError
        return LogEvent(
            kind=LogKind.STDOUT_RAW,
            message=line,
            run_id=run_id,
            origin=EventOrigin.WORKER,
        )

    data = dict(record.data)
    if record.type in _KNOWN_KINDS:
        kind = LogKind(record.type)
    else:
        kind = LogKind.AGENT_EVENT
        data.setdefault("type", record.type)

    event = LogEvent(
        kind=kind,
        message=record.message,
        data=data,
        run_id=run_id,
        origin=EventOrigin.WORKER,
    )
    if record.timestamp is not None:
        event.timestamp = record.timestamp
    return event


def parse_stderr_line(line: str, run_id: RunId | None = None) -> LogEvent:
    """stderr is diagnostic text, never protocol."""
    return LogEvent(
        kind=LogKind.ERROR,
        message=line,
        data={"stream": "stderr"},
        run_id=run_id,
        origin=EventOrigin.WORKER,
    )
