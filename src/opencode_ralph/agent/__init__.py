"""opencode CLI invocation utilities."""

from .models import AgentExecutionResult, AgentOptions
from .runner import (
    AgentNotFoundError,
    AgentRunner,
    AgentRunnerError,
    FakeOpencodeRunner,
    OpencodeRunner,
)

__all__ = [
    "AgentExecutionResult",
    "AgentNotFoundError",
    "AgentOptions",
    "AgentRunner",
    "AgentRunnerError",
    "FakeOpencodeRunner",
    "OpencodeRunner",
]
