"""agentctl — launch, watch and stop a single agent worker process."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("agentctl")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
