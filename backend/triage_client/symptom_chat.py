from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from triage_ai.errors import TriageError
from triage_ai.models import TriageResult
from triage_ai.prompts import CHAT_OPENING_MESSAGE

from .api import TriageApiClient

LOGGER = logging.getLogger(__name__)

GENERIC_CHAT_ERROR = "Sorry, something went wrong. Please try again."


class ChatState(str, Enum):
    INIT = "init"
    AWAITING_USER = "awaiting_user"
    AWAITING_MODEL = "awaiting_model"
    TERMINAL = "terminal"


class ChatClosed(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatMessage:
    sender: str
    text: str


class SymptomChat:
    """Client side of the symptom conversation.

    Errors become assistant messages so the transcript stays usable; the
    server has already rolled back the failed user turn.
    """

    def __init__(
        self,
        api: TriageApiClient,
        language: str = "en",
        *,
        on_result: Callable[[TriageResult], None] | None = None,
    ) -> None:
        self.api = api
        self.language = language
        self.on_result = on_result
        self.state = ChatState.INIT
        self.messages: list[ChatMessage] = []
        self.suggestions: list[str] = []
        self.result: TriageResult | None = None

    def start(self) -> None:
        if self.state is not ChatState.INIT:
            raise ChatClosed("Conversation already started.")
        self._exchange(CHAT_OPENING_MESSAGE)

    def send(self, text: str) -> bool:
        """Send one user message. Returns False when the input is ignored."""
        if self.state is ChatState.TERMINAL:
            raise ChatClosed("This conversation has finished with a triage result.")
        if self.state is ChatState.INIT:
            raise ChatClosed("Call start() before sending messages.")
        if not text or not text.strip() or self.state is ChatState.AWAITING_MODEL:
            return False
        self.messages.append(ChatMessage(sender="user", text=text))
        self._exchange(text)
        return True

    def choose_suggestion(self, suggestion: str) -> bool:
        return self.send(suggestion)

    def _exchange(self, message: str) -> None:
        self.state = ChatState.AWAITING_MODEL
        self.suggestions = []
        try:
            reply = self.api.send_chat(message, self.language)
            self._apply_reply(reply)
        except TriageError as exc:
            LOGGER.error("Chat error: %s", exc)
            self.messages.append(ChatMessage(sender="ai", text=exc.message or GENERIC_CHAT_ERROR))
            self.state = ChatState.AWAITING_USER

    def _apply_reply(self, reply: dict[str, Any]) -> None:
        raw_result = reply.get("triageResult")
        if raw_result:
            try:
                self.result = TriageResult.model_validate(raw_result)
            except PydanticValidationError:
                LOGGER.error("Discarding malformed triage result in chat reply")
            else:
                self.state = ChatState.TERMINAL
                if self.on_result is not None:
                    self.on_result(self.result)
                return

        text = reply.get("text")
        if isinstance(text, str) and text:
            self.messages.append(ChatMessage(sender="ai", text=text))
        suggestions = reply.get("suggestions")
        if isinstance(suggestions, list):
            self.suggestions = [str(item) for item in suggestions if str(item).strip()]
        self.state = ChatState.AWAITING_USER
