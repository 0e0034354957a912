"""Runtime resolver — find the worker entry point among candidate paths."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from agentctl.exceptions import RuntimeNotFoundError

_logger = logging.getLogger(__name__)

STUB_MODULE = "agentctl.processes.stub_worker"


def resolve_runtime(candidates: Sequence[str | Path], base_dir: str | Path = ".") -> Path | None:
    """Return the first candidate that exists, or None.

    Relative candidates are taken relative to ``base_dir``. A candidate
    that cannot be stat'ed is treated as missing.
    """
    base = Path(base_dir)
    for candidate in candidates:
        path = Path(candidate)
        if not path.is_absolute():
            path = base / path
        try:
            os.stat(path)
        except (OSError, ValueError) as e:
            _logger.debug("Runtime candidate %s unavailable: %s", path, e)
            continue
        return path.resolve()
    return None


@dataclass(frozen=True)
class RuntimeTarget:
    """What the supervisor will actually execute."""

    command: tuple[str, ...]
    path: Path | None = None
    is_stub: bool = False


@dataclass(frozen=True)
class RuntimeResolver:
    """Resolves candidates into a RuntimeTarget, falling back to the stub."""

    candidates: tuple[str, ...] = ()
    base_dir: Path = Path(".")
    stub_enabled: bool = True
    interpreters: dict[str, str] = field(default_factory=dict)

    def resolve(self) -> RuntimeTarget:
        path = resolve_runtime(self.candidates, self.base_dir)
        if path is not None:
            return RuntimeTarget(command=self.build_command(path), path=path)

        if not self.stub_enabled:
            raise RuntimeNotFoundError(
                "No runtime found among "
                f"{len(self.candidates)} candidate(s) and the stub worker is disabled"
            )
        return self.stub_target()

    def build_command(self, path: Path) -> tuple[str, ...]:
        interpreter = self.interpreters.get(path.suffix.lower())
        if interpreter:
            return (interpreter, str(path))
        return (str(path),)

    @staticmethod
    def stub_target() -> RuntimeTarget:
        return RuntimeTarget(command=(sys.executable, "-m", STUB_MODULE), is_stub=True)
