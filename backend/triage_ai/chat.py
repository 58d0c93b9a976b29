from __future__ import annotations

import logging
from typing import Any

from storage.chat_store import ChatSessionStore

from .errors import EmptyModelResponse, ServerFault, ValidationError
from .models import ROLES, make_turn, turn_text
from .parser import parse_chat_reply
from .prompts import chat_system_instruction
from .providers import ModelProvider

LOGGER = logging.getLogger(__name__)


def sanitize_history(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return a copy that starts with user, alternates, and ends with model.

    Only trims: blank or unknown-role turns are dropped, leading model turns are
    dropped, a run of same-role turns keeps its latest member, and a trailing
    user turn is dropped so the next user message keeps the alternation.
    """
    cleaned = [
        make_turn(turn["role"], turn_text(turn))
        for turn in history
        if isinstance(turn, dict) and turn.get("role") in ROLES and turn_text(turn).strip()
    ]

    while cleaned and cleaned[0]["role"] != "user":
        cleaned.pop(0)

    alternating: list[dict[str, Any]] = []
    for turn in cleaned:
        if alternating and alternating[-1]["role"] == turn["role"]:
            alternating[-1] = turn
        else:
            alternating.append(turn)

    if alternating and alternating[-1]["role"] == "user":
        alternating.pop()
    return alternating


class ChatService:
    def __init__(self, provider: ModelProvider | None, store: ChatSessionStore) -> None:
        self.provider = provider
        self.store = store

    def send(self, *, user_id: str, message: str, language: str) -> dict[str, Any]:
        if not message or not message.strip():
            raise ValidationError("Message is required.")
        if not language or not language.strip():
            raise ValidationError("Language is required.")
        if self.provider is None:
            raise ServerFault("AI provider is not configured.")

        session = self.store.load_for_language(user_id, language)
        raw_history = session["history"]
        history = sanitize_history(raw_history)
        if len(history) != len(raw_history):
            LOGGER.warning(
                "Sanitized chat history for %s from %d to %d turns", user_id, len(raw_history), len(history)
            )

        self.store.append_turn(user_id, "user", message)
        try:
            reply_text = self.provider.chat(
                system_instruction=chat_system_instruction(language),
                history=history,
                message=message,
            )
            if not reply_text or not reply_text.strip():
                raise EmptyModelResponse("Chat service returned an empty response.")
        except Exception:
            self.store.pop_last_turn(user_id, role="user")
            raise

        self.store.append_turn(user_id, "model", reply_text)
        return parse_chat_reply(reply_text)
