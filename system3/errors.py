"""Exception taxonomy for the agent and its collaborators."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad config file, duplicate tool name, etc.)."""


class TransportError(AgentError):
    """Raised when the model call itself fails (network, auth, quota)."""


class AgentCancelled(AgentError):
    """Raised when a pending model call is cancelled by the caller."""


class TranscriptError(AgentError):
    """Raised when an append would break the tool-call/tool-result pairing."""


class ToolError(Exception):
    """Raised by tool bodies. Becomes an error tool result, never escapes dispatch."""
