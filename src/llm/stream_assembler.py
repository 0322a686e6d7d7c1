# src/llm/stream_assembler.py — v1
"""Incremental assembly of a chat completion from an SSE byte stream.

Bytes arrive in arbitrary chunks: a chunk may end mid-line or even in the
middle of a multi-byte UTF-8 character. The assembler keeps the trailing
incomplete line between feeds and only parses complete lines.

Record format (one per line)::

    data: {"choices":[{"delta":{"content":"ab"}}], "usage": {...}}
    data: [DONE]

Lines without the ``data: `` prefix and records that fail to parse are
skipped; they never abort the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from pydantic import ValidationError

from chatpipe.llm.models import Choice, ChoiceMessage, LLMResponse, Usage

logger = logging.getLogger(__name__)

_DATA_PREFIX = "data: "
_DONE = "[DONE]"


class StreamAssembler:
    """Accumulates content deltas and usage from SSE records."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self._usage = Usage()
        self._id = ""
        self._finish_reason: str | None = None
        self._closed = False

    def feed(self, chunk: bytes) -> list[str]:
        """Consume raw bytes; return the content deltas completed by them, in order."""
        if self._closed:
            raise RuntimeError("feed() after close()")
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def close(self) -> list[str]:
        """End of stream: flush the decoder and parse a final unterminated line."""
        if self._closed:
            return []
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return self._process([tail])

    @property
    def content(self) -> str:
        """Text accumulated so far."""
        return "".join(self._parts)

    @property
    def usage(self) -> Usage:
        return self._usage

    def response(self) -> LLMResponse:
        """Synthesized response: one choice holding the full accumulated text."""
        return LLMResponse(
            id=self._id,
            choices=[
                Choice(
                    message=ChoiceMessage(role="assistant", content=self.content),
                    finish_reason=self._finish_reason or "stop",
                )
            ],
            usage=self._usage,
        )

    def _process(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for line in lines:
            record = _parse_line(line)
            if record is None:
                continue
            delta = self._apply(record)
            if delta:
                self._parts.append(delta)
                deltas.append(delta)
        return deltas

    def _apply(self, record: dict[str, Any]) -> str | None:
        if isinstance(record.get("id"), str) and record["id"]:
            self._id = record["id"]

        usage = record.get("usage")
        if isinstance(usage, dict):
            try:
                self._usage = Usage.model_validate(usage)
            except ValidationError:
                logger.debug("Skipping malformed usage object in stream: %r", usage)

        choices = record.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        first = choices[0]
        if isinstance(first.get("finish_reason"), str):
            self._finish_reason = first["finish_reason"]
        delta = first.get("delta")
        if not isinstance(delta, dict):
            return None
        content = delta.get("content")
        return content if isinstance(content, str) else None


def _parse_line(line: str) -> dict[str, Any] | None:
    """Return the JSON object of a ``data:`` record, or None to skip the line."""
    stripped = line.strip()
    if not stripped.startswith(_DATA_PREFIX):
        return None
    data = stripped[len(_DATA_PREFIX):].strip()
    if data == _DONE:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed SSE record: %.80s", data)
        return None
    return parsed if isinstance(parsed, dict) else None
