"""Payload normalizer — pull text and tool calls out of any output shape.

The agent process wraps assistant output in several envelopes depending on
the CLI version and the delivery path:

* a bare string (legacy plain text),
* a string holding a JSON-encoded CLI envelope,
* a content-block array ``[{type: text, text}, {type: tool_use, name, input}]``,
* a full provider response ``{model, role, content: [...]}``,
* a role wrapper ``{content: {role, content}}``.

Each value is classified into exactly one ``PayloadShape`` and handled by one
branch. Unrecognised shapes contribute nothing; nothing here raises.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from agentstream.schemas.chat import ChatMessage, PersistedMessage, ToolCommand, ToolStatus
from agentstream.schemas.frames import OutputData, OutputKind

logger = logging.getLogger(__name__)


class PayloadShape(StrEnum):
    EMPTY = "empty"
    PLAIN_TEXT = "plain_text"
    ENCODED_JSON = "encoded_json"
    TRUNCATED_JSON = "truncated_json"
    BLOCK_ARRAY = "block_array"
    PROVIDER_RESPONSE = "provider_response"
    ROLE_WRAPPER = "role_wrapper"
    ROLE_MESSAGE = "role_message"
    CONTENT_ENVELOPE = "content_envelope"
    TEXT_BLOCK = "text_block"
    TOOL_USE_BLOCK = "tool_use_block"
    UNKNOWN = "unknown"


# Shapes a nested text block may decode into and still count as an envelope
_ENVELOPE_SHAPES = frozenset({
    PayloadShape.PROVIDER_RESPONSE,
    PayloadShape.ROLE_WRAPPER,
    PayloadShape.ROLE_MESSAGE,
    PayloadShape.CONTENT_ENVELOPE,
})


@dataclass
class NormalizedPayload:
    text: str = ""
    tools: list[ToolCommand] = field(default_factory=list)

    def extend(self, other: NormalizedPayload) -> None:
        self.text += other.text
        self.tools.extend(other.tools)

    def __bool__(self) -> bool:
        return bool(self.text or self.tools)


def _looks_like_json(text: str) -> bool:
    return text.startswith(("{", "["))


def classify_payload(value: Any) -> PayloadShape:
    """Return the shape of *value* without extracting anything from it."""
    if value is None or value == "":
        return PayloadShape.EMPTY

    if isinstance(value, str):
        if not _looks_like_json(value):
            return PayloadShape.PLAIN_TEXT
        try:
            json.loads(value)
        except (ValueError, RecursionError):
            return PayloadShape.TRUNCATED_JSON
        return PayloadShape.ENCODED_JSON

    if isinstance(value, list):
        return PayloadShape.BLOCK_ARRAY

    if not isinstance(value, dict):
        return PayloadShape.UNKNOWN

    content = value.get("content")
    block_type = value.get("type")
    if value.get("model") and "role" in value and isinstance(content, (list, str)):
        return PayloadShape.PROVIDER_RESPONSE
    if isinstance(content, dict) and "role" in content:
        return PayloadShape.ROLE_WRAPPER
    if block_type == "text":
        return PayloadShape.TEXT_BLOCK
    if block_type == "tool_use":
        return PayloadShape.TOOL_USE_BLOCK
    if "role" in value and isinstance(content, (list, str)):
        return PayloadShape.ROLE_MESSAGE
    if isinstance(content, list):
        return PayloadShape.CONTENT_ENVELOPE
    return PayloadShape.UNKNOWN


def _tool_command(block: dict[str, Any]) -> ToolCommand | None:
    # API format carries name/input on the block, socket format nests them under "tool"
    source = block.get("tool") if isinstance(block.get("tool"), dict) else block
    name = source.get("name")
    if not isinstance(name, str) or not name:
        return None
    tool_input = source.get("input")
    return ToolCommand(
        name=name,
        status=ToolStatus.SUCCESS,
        input=tool_input if isinstance(tool_input, dict) else {},
    )


def _text_block(block: dict[str, Any], *, may_decode: bool) -> NormalizedPayload:
    text = block.get("text")
    if not isinstance(text, str):
        text = block.get("content")
    if not isinstance(text, str) or not text:
        return NormalizedPayload()

    # A text block may itself hold a JSON-encoded envelope. Anything else
    # that merely starts with a brace is genuine assistant text.
    if may_decode and text.startswith("{"):
        try:
            decoded = json.loads(text)
        except (ValueError, RecursionError):
            decoded = None
        if decoded is not None and classify_payload(decoded) in _ENVELOPE_SHAPES:
            return _normalize(decoded, may_decode=False)
    return NormalizedPayload(text=text)


def _blocks(blocks: list[Any], *, may_decode: bool) -> NormalizedPayload:
    result = NormalizedPayload()
    for block in blocks:
        if isinstance(block, dict):
            result.extend(_normalize(block, may_decode=may_decode))
    return result


def _role_content(role: Any, content: Any, *, may_decode: bool) -> NormalizedPayload:
    # User turns reach the transcript through history, never through output frames
    if role != "assistant":
        return NormalizedPayload()
    if isinstance(content, str):
        return NormalizedPayload(text=content)
    if isinstance(content, list):
        return _blocks(content, may_decode=may_decode)
    return NormalizedPayload()


def _normalize(value: Any, *, may_decode: bool) -> NormalizedPayload:
    match classify_payload(value):
        case PayloadShape.PLAIN_TEXT:
            return NormalizedPayload(text=value)
        case PayloadShape.ENCODED_JSON:
            if not may_decode:
                return NormalizedPayload(text=value)
            return _normalize(json.loads(value), may_decode=False)
        case PayloadShape.TRUNCATED_JSON:
            # Partial JSON mid-stream; showing it would flash raw braces
            return NormalizedPayload()
        case PayloadShape.BLOCK_ARRAY:
            return _blocks(value, may_decode=may_decode)
        case PayloadShape.PROVIDER_RESPONSE | PayloadShape.ROLE_MESSAGE:
            return _role_content(value.get("role"), value.get("content"), may_decode=may_decode)
        case PayloadShape.ROLE_WRAPPER:
            return _normalize(value["content"], may_decode=may_decode)
        case PayloadShape.CONTENT_ENVELOPE:
            return _blocks(value["content"], may_decode=may_decode)
        case PayloadShape.TEXT_BLOCK:
            return _text_block(value, may_decode=may_decode)
        case PayloadShape.TOOL_USE_BLOCK:
            tool = _tool_command(value)
            return NormalizedPayload(tools=[tool] if tool else [])
        case PayloadShape.UNKNOWN:
            logger.debug("No text in unrecognised payload: %.120r", value)
            return NormalizedPayload()
        case PayloadShape.EMPTY:
            return NormalizedPayload()


def normalize_content(value: Any, *, decode_nested: bool = True) -> NormalizedPayload:
    """Extract concatenated text and tool commands from any payload shape.

    JSON-encoded strings are decoded at most one level deep. Payloads nested
    too deeply to walk yield nothing.
    """
    try:
        return _normalize(value, may_decode=decode_nested)
    except RecursionError:
        logger.warning("Dropping payload nested too deeply to normalize")
        return NormalizedPayload()


def _stream_event_text(content: Any) -> str:
    if not isinstance(content, dict):
        return ""
    event = content.get("event")
    if not isinstance(event, dict) or event.get("type") != "content_block_delta":
        return ""
    delta = event.get("delta")
    if isinstance(delta, dict) and delta.get("type") == "text_delta":
        text = delta.get("text")
        return text if isinstance(text, str) else ""
    return ""


def normalize_output(data: OutputData | list[Any]) -> NormalizedPayload:
    """Normalize the payload of an ``output`` frame carrying an increment.

    Handles the ``text``, ``message``, ``tool_use`` and ``stream_event``
    sub-kinds; other sub-kinds carry no transcript text.
    """
    if isinstance(data, list):
        return normalize_content(data)

    match data.type:
        case OutputKind.TEXT:
            content = data.content if data.content is not None else data.text
            return normalize_content(content)
        case OutputKind.MESSAGE:
            if data.role:
                # Full provider response or role message at the data level
                return normalize_content(
                    {"model": data.model, "role": data.role, "content": data.content}
                )
            return normalize_content(data.content)
        case OutputKind.TOOL_USE:
            if data.tool:
                tool = _tool_command(data.tool)
                return NormalizedPayload(tools=[tool] if tool else [])
            return normalize_content(data.content)
        case OutputKind.STREAM_EVENT:
            return NormalizedPayload(text=_stream_event_text(data.content))
        case _:
            return NormalizedPayload()


def persisted_to_chat(msg: PersistedMessage) -> ChatMessage:
    """Convert a history message (block list) into a transcript entry."""
    normalized = normalize_content(msg.blocks, decode_nested=msg.role == "assistant")
    commands = list(normalized.tools)

    if msg.tool_name and not any(c.name == msg.tool_name for c in commands):
        commands.append(ToolCommand(
            name=msg.tool_name,
            input=msg.tool_input if isinstance(msg.tool_input, dict) else None,
        ))

    return ChatMessage(
        id=msg.id,
        role="assistant" if msg.role == "system" else msg.role,
        content=normalized.text or msg.tool_result or "",
        timestamp=msg.timestamp,
        commands=commands or None,
    )
