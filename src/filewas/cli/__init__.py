"""Agent CLI orchestration utilities."""

from .runner import (
    CliExecutionResult,
    CliNotFoundError,
    CliRunner,
    CliRunnerError,
    CliTimeoutError,
    FakeCliRunner,
)
from .stream import StreamSummary, TokenUsage, parse_stream_output
from .utils import build_cli_args

__all__ = [
    "CliRunner",
    "CliExecutionResult",
    "CliRunnerError",
    "CliNotFoundError",
    "CliTimeoutError",
    "FakeCliRunner",
    "StreamSummary",
    "TokenUsage",
    "build_cli_args",
    "parse_stream_output",
]
