"""Parsing of the NDJSON ``stream-json`` output emitted by the agent CLIs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MAX_CONTEXT_TOKENS = 200_000


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    context_percentage: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cacheCreationTokens": self.cache_creation_tokens,
            "cacheReadTokens": self.cache_read_tokens,
            "contextPercentage": self.context_percentage,
        }


@dataclass(slots=True)
class StreamSummary:
    """What the orchestrator needs out of one CLI run."""

    session_id: str | None = None
    result_text: str | None = None
    status: str | None = None
    error: str | None = None
    token_usage: TokenUsage | None = None
    text_blocks: list[str] = field(default_factory=list)
    message_count: int = 0
    skipped_lines: int = 0


def calculate_token_usage(usage: dict[str, Any]) -> TokenUsage:
    """Convert a result message ``usage`` block into :class:`TokenUsage`."""

    input_tokens = int(usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("output_tokens") or 0)
    cache_creation = int(usage.get("cache_creation_input_tokens") or 0)
    cache_read = int(usage.get("cache_read_input_tokens") or 0)
    # cache reads stand in for part of the input, so both count toward the window
    total_context = input_tokens + cache_read
    percentage = round(total_context / MAX_CONTEXT_TOKENS * 100, 2)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=cache_creation,
        cache_read_tokens=cache_read,
        context_percentage=percentage,
    )


def _extract_text(message: dict[str, Any]) -> list[str]:
    body = message.get("message")
    content = body.get("content") if isinstance(body, dict) else message.get("content")
    if isinstance(content, str):
        return [content] if content else []
    texts: list[str] = []
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                texts.append(item["text"])
    return texts


def parse_stream_output(stdout: str) -> StreamSummary:
    """Fold the CLI's NDJSON stream into a :class:`StreamSummary`.

    Lines that are not valid JSON objects are counted and skipped.
    """

    summary = StreamSummary()
    for raw_line in stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            summary.skipped_lines += 1
            continue
        if not isinstance(message, dict):
            summary.skipped_lines += 1
            continue

        summary.message_count += 1
        message_type = message.get("type")
        if message_type == "init" or (message_type == "system" and message.get("subtype") == "init"):
            summary.session_id = message.get("session_id") or summary.session_id
        elif message_type in {"assistant", "message"}:
            summary.text_blocks.extend(_extract_text(message))
        elif message_type == "result":
            summary.session_id = message.get("session_id") or summary.session_id
            result_text = message.get("result")
            if isinstance(result_text, str) and result_text:
                summary.result_text = result_text
            summary.status = message.get("subtype") or message.get("status")
            if message.get("is_error") or message.get("error"):
                summary.error = str(message.get("error") or result_text or "Agent reported an error")
            usage = message.get("usage")
            if isinstance(usage, dict):
                summary.token_usage = calculate_token_usage(usage)

    if summary.skipped_lines:
        logger.debug("Skipped non-JSON stream lines", extra={"skipped": summary.skipped_lines})
    if summary.result_text is None and summary.text_blocks:
        summary.result_text = summary.text_blocks[-1]
    return summary


__all__ = [
    "MAX_CONTEXT_TOKENS",
    "StreamSummary",
    "TokenUsage",
    "calculate_token_usage",
    "parse_stream_output",
]
