"""Global configuration — loaded from environment variables."""

import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


def _default_interpreters() -> dict[str, str]:
    return {
        ".py": sys.executable,
        ".js": "node",
        ".mjs": "node",
        ".cjs": "node",
    }


class AgentctlSettings(BaseSettings):
    # Runtime discovery, probed in order relative to base_dir
    runtime_candidates: list[str] = Field(default_factory=lambda: [
        "./workers/agent/main.py",
        "./packages/agents-core/dist/index.js",
        "./packages/agents-openai/dist/index.js",
        "./node_modules/@openai/agents/dist/index.js",
    ])
    base_dir: Path = Path(".")
    stub_enabled: bool = True  # Fall back to the built-in stub worker
    interpreters: dict[str, str] = Field(default_factory=_default_interpreters)

    # Worker contract
    config_delivery: Literal["stdin", "env"] = "stdin"
    config_env_var: str = "AGENT_CONFIG"

    # Supervision
    grace_period_s: float = 5.0  # SIGTERM -> SIGKILL escalation
    read_chunk_size: int = 4096
    output_tail_lines: int = 200
    history_limit: int = 500

    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8421

    model_config = {"env_prefix": "AGENTCTL_"}


settings = AgentctlSettings()
