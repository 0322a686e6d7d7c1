# src/llm/message_builder.py — v1
"""Convert a system prompt and conversation history into a bounded wire message list.

Rules:
  - The system message is always first, even when it alone exceeds the budget.
  - Only the most recent user turn keeps its photos; earlier photos are dropped.
  - Newest messages are admitted first; the first message that does not fit
    ends admission, so every older message is dropped with it.
  - Accepted messages keep their chronological order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from chatpipe.llm.models import (
    ConversationMessage,
    ContentPart,
    ImagePart,
    ImageURL,
    TextPart,
    WireMessage,
)
from chatpipe.llm.token_estimator import TokenEstimator, estimate_message_tokens

logger = logging.getLogger(__name__)

# Model context is 200K; the remainder is headroom for the completion.
DEFAULT_MAX_CONTEXT_TOKENS = 190_000


def build_messages(
    system_prompt: str,
    history: Sequence[ConversationMessage],
    max_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
    estimator: TokenEstimator | None = None,
) -> list[WireMessage]:
    """Build the wire message list for one request.

    Args:
        system_prompt: System prompt, emitted unconditionally.
        history: Conversation turns, oldest first.
        max_tokens: Token budget for system prompt plus history.
        estimator: Token estimator; defaults to the character-ratio one.

    Returns:
        ``[system, *accepted_history]`` in chronological order.
    """
    system_message = WireMessage(role="system", content=system_prompt)
    remaining = max_tokens - estimate_message_tokens(system_message, estimator)

    last_user_index = _last_user_index(history)

    accepted: list[WireMessage] = []
    for index in range(len(history) - 1, -1, -1):
        wire = to_wire_message(history[index], include_photos=index == last_user_index)
        cost = estimate_message_tokens(wire, estimator)
        if cost > remaining:
            break
        accepted.append(wire)
        remaining -= cost

    dropped = len(history) - len(accepted)
    if dropped:
        logger.debug(
            "Context budget %d tokens: dropped %d of %d history messages",
            max_tokens, dropped, len(history),
        )

    accepted.reverse()
    return [system_message, *accepted]


def to_wire_message(message: ConversationMessage, include_photos: bool) -> WireMessage:
    """Render one stored turn; photos become image parts after the text part."""
    if message.role == "user" and include_photos and message.photos:
        parts: list[ContentPart] = [TextPart(text=message.content)]
        parts.extend(ImagePart(image_url=ImageURL(url=url)) for url in message.photos)
        return WireMessage(role="user", content=parts)
    return WireMessage(role=message.role, content=message.content)


def _last_user_index(history: Sequence[ConversationMessage]) -> int:
    for index in range(len(history) - 1, -1, -1):
        if history[index].role == "user":
            return index
    return -1
