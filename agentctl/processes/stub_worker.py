"""Built-in stub worker, used when no real agent runtime is installed.

Executed as a subprocess by ProcessSupervisor:
    python -m agentctl.processes.stub_worker

Reads the agent config from $AGENT_CONFIG if set, otherwise from stdin
until end-of-stream, then walks the configured steps without doing any
real work.

Output (stdout), one JSON record per line:
    {"type": "start", "message": "Agent 'demo' starting", "data": {...}, "timestamp": "..."}
    {"type": "step", "message": "Step 1/2: fetch", "data": {"index": 1, "total": 2, ...}, ...}
    {"type": "complete", "message": "Agent 'demo' completed 2 step(s)", ...}

Standard library only.
"""

from __future__ import annotations

import json
import os
import signal
import sys
from datetime import datetime, timezone

CONFIG_ENV_VAR = "AGENT_CONFIG"


def _emit(kind: str, message: str, **data) -> None:
    record = {
        "type": kind,
        "message": message,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    sys.stdout.write(json.dumps(record) + "\n")
    sys.stdout.flush()


def _on_signal(signum, frame) -> None:
    name = signal.Signals(signum).name
    _emit("info", f"Stub worker received {name}, shutting down")
    sys.exit(0)


def _read_config() -> dict:
    env_var = os.environ.get("AGENTCTL_CONFIG_ENV_VAR", CONFIG_ENV_VAR)
    raw = os.environ.get(env_var)
    if raw is None:
        raw = sys.stdin.read()
    config = json.loads(raw or "{}")
    if not isinstance(config, dict):
        raise ValueError("config is not a JSON object")
    return config


def run(config: dict) -> None:
    """Emit start, one step per configured step, then complete."""
    name = config.get("name") or "agent"
    steps = config.get("steps") or []
    total = len(steps)

    _emit("start", f"Agent '{name}' starting", name=name, steps=total)
    for index, step in enumerate(steps, start=1):
        step_name = (step.get("name") if isinstance(step, dict) else None) or "Unnamed"
        _emit("step", f"Step {index}/{total}: {step_name}", index=index, total=total, name=step_name)
    _emit("complete", f"Agent '{name}' completed {total} step(s)", steps=total)


def main() -> int:
    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    try:
        config = _read_config()
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        _emit("error", f"Failed to parse agent config: {e}")
        return 1

    run(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())
