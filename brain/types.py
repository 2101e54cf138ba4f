"""
brain/types.py — Agent Service Data Models

Shared types for the outbound call to the external agent service and the
reply shapes it can come back with.

The agent service answers in one of several shapes. They are modelled as
an explicit tagged union (ReplyKind + one class per shape) and parsed by
case analysis in parse_reply(); normalisation to a single string lives on
each shape's .text property.

Precedence when a payload carries more than one field:
    completion  →  output.text  →  text
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from exceptions import UnrecognizedReplyShapeError


# ─────────────────────────────────────────────────────────────────────────────
# Request
# ─────────────────────────────────────────────────────────────────────────────


class AgentRequest(BaseModel):
    """One outbound call: the session handle plus the (enhanced) prompt."""
    session_handle: str = Field(..., min_length=1)
    input_text: str = Field(..., min_length=1)

    def to_payload(self) -> dict[str, Any]:
        return {"inputText": self.input_text}


# ─────────────────────────────────────────────────────────────────────────────
# Reply shapes
# ─────────────────────────────────────────────────────────────────────────────


class ReplyKind(str, Enum):
    COMPLETION = "completion"      # flat string in "completion"
    CHUNKED = "chunked"            # "completion" delivered as a chunk sequence
    NESTED_OUTPUT = "nested"       # {"output": {"text": ...}}
    FLAT_TEXT = "text"             # {"text": ...}


@dataclass(frozen=True)
class CompletionReply:
    completion: str
    raw: Any = None
    kind: ReplyKind = field(default=ReplyKind.COMPLETION, init=False)

    @property
    def text(self) -> str:
        return self.completion


@dataclass(frozen=True)
class ChunkedReply:
    """Incrementally delivered reply. Chunks keep their delivery order."""
    chunks: tuple[str, ...]
    raw: Any = None
    kind: ReplyKind = field(default=ReplyKind.CHUNKED, init=False)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


@dataclass(frozen=True)
class NestedOutputReply:
    output_text: str
    raw: Any = None
    kind: ReplyKind = field(default=ReplyKind.NESTED_OUTPUT, init=False)

    @property
    def text(self) -> str:
        return self.output_text


@dataclass(frozen=True)
class FlatTextReply:
    flat_text: str
    raw: Any = None
    kind: ReplyKind = field(default=ReplyKind.FLAT_TEXT, init=False)

    @property
    def text(self) -> str:
        return self.flat_text


AgentReply = Union[CompletionReply, ChunkedReply, NestedOutputReply, FlatTextReply]


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────


def decode_chunk(chunk: Any) -> str:
    """
    One streamed chunk → text.

    Accepts bytes, str, or an event object wrapping them:
    {"chunk": {"bytes": ...}}, {"bytes": ...}, {"text": ...}.
    Anything else decodes to "".
    """
    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    if isinstance(chunk, str):
        return chunk
    if isinstance(chunk, dict):
        if "chunk" in chunk:
            return decode_chunk(chunk["chunk"])
        for key in ("bytes", "text"):
            if key in chunk:
                return decode_chunk(chunk[key])
    return ""


def parse_reply(payload: Any) -> AgentReply:
    """
    Classify a decoded reply payload into exactly one shape.

    Raises UnrecognizedReplyShapeError when no known field is present.
    """
    if isinstance(payload, dict):
        completion = payload.get("completion")
        if isinstance(completion, str):
            return CompletionReply(completion=completion, raw=payload)
        if isinstance(completion, (list, tuple)):
            return ChunkedReply(
                chunks=tuple(decode_chunk(c) for c in completion), raw=payload
            )

        output = payload.get("output")
        if isinstance(output, dict) and isinstance(output.get("text"), str):
            return NestedOutputReply(output_text=output["text"], raw=payload)

        text = payload.get("text")
        if isinstance(text, str):
            return FlatTextReply(flat_text=text, raw=payload)

        raise UnrecognizedReplyShapeError(keys=sorted(str(k) for k in payload))

    raise UnrecognizedReplyShapeError(keys=[type(payload).__name__])


def normalize_reply(reply: AgentReply) -> str:
    """Single result string for any reply shape."""
    if isinstance(reply, ChunkedReply):
        return "".join(reply.chunks)
    if isinstance(reply, (CompletionReply, NestedOutputReply, FlatTextReply)):
        return reply.text
    raise UnrecognizedReplyShapeError(keys=[type(reply).__name__])


# ─────────────────────────────────────────────────────────────────────────────
# Gateway result
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class GatewayResult:
    """
    What AgentGateway.invoke() hands back. Always has a non-empty result.

    raw is the unnormalised reply payload on success, or an error
    descriptor {"error": ..., "message": ...} when the fallback was used.
    """
    result: str
    raw: Optional[Any] = None
    session_id: Optional[str] = None
    outbound_prompt: str = ""
    used_fallback: bool = False
    reply_kind: Optional[ReplyKind] = None
