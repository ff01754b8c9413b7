"""Frame decoder — raw socket text to typed server frames.

Never raises: malformed JSON and frames that fail validation are logged and
dropped, unknown frame kinds are dropped quietly so newer servers can add
kinds without breaking older clients.
"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from agentstream.schemas.frames import SERVER_FRAME_TYPES, ServerFrame

logger = logging.getLogger(__name__)

_frame_adapter: TypeAdapter[ServerFrame] = TypeAdapter(ServerFrame)


def decode_frame(raw: str | bytes) -> ServerFrame | None:
    """Parse one socket message into a ``ServerFrame``, or ``None`` to discard it."""
    try:
        msg = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        logger.warning("Dropping undecodable frame: %s", exc)
        return None

    if not isinstance(msg, dict):
        logger.warning("Dropping non-object frame: %r", type(msg).__name__)
        return None

    frame_type = msg.get("type")
    if not isinstance(frame_type, str) or frame_type not in SERVER_FRAME_TYPES:
        logger.debug("Ignoring unknown frame type %r", frame_type)
        return None

    try:
        return _frame_adapter.validate_python(msg)
    except ValidationError as exc:
        logger.warning(
            "Dropping malformed %s frame (%d errors): %s",
            frame_type, exc.error_count(), exc.errors(include_url=False)[:3],
        )
        return None
