"""Custom exception hierarchy for agentctl."""


class AgentctlError(Exception):
    """Base for all agentctl errors."""


class ConfigMalformedError(AgentctlError):
    """The agent configuration document could not be parsed."""


class RuntimeNotFoundError(AgentctlError):
    """No runtime candidate exists and the stub worker is disabled."""


class SpawnFailureError(AgentctlError):
    """The operating system failed to create the worker process."""


class LifecycleStateError(AgentctlError):
    """Invalid orchestrator lifecycle transition."""
