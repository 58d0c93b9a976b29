from __future__ import annotations

import pytest

from triage_ai import Conclusion, RateLimited
from triage_ai.prompts import CHAT_OPENING_MESSAGE
from triage_client import ChatClosed, ChatMessage, ChatState, SymptomChat, TriageApiClient

GREETING = '{"text": "Hi, what symptoms are you having?", "suggestions": ["Rash", "Headache"]}'
FINAL = (
    '{"triageResult": {"conclusion": "MILD", "explanation": "Sounds like a tension headache.",'
    ' "selfCareTips": ["Rest", "Hydrate"], "doctorSuggestion": "NONE"}}'
)


@pytest.fixture
def chat_api(client) -> TriageApiClient:
    return TriageApiClient(http=client, token="user-a")


def test_start_sends_the_opening_message(chat_api, use_provider):
    provider = use_provider(GREETING)
    chat = SymptomChat(chat_api, "en")

    chat.start()

    assert provider.calls[0]["message"] == CHAT_OPENING_MESSAGE
    assert chat.state is ChatState.AWAITING_USER
    assert chat.messages == [ChatMessage(sender="ai", text="Hi, what symptoms are you having?")]
    assert chat.suggestions == ["Rash", "Headache"]


def test_conversation_reaches_a_terminal_result(chat_api, use_provider):
    use_provider(GREETING, '{"text": "How long?", "suggestions": ["Today"]}', FINAL)
    results = []
    chat = SymptomChat(chat_api, "en", on_result=results.append)
    chat.start()

    assert chat.choose_suggestion("Headache") is True
    assert chat.messages[-2:] == [
        ChatMessage(sender="user", text="Headache"),
        ChatMessage(sender="ai", text="How long?"),
    ]
    assert chat.send("Since this morning") is True

    assert chat.state is ChatState.TERMINAL
    assert chat.result.conclusion is Conclusion.MILD
    assert chat.result.doctor_suggestion is None
    assert results == [chat.result]
    with pytest.raises(ChatClosed):
        chat.send("one more thing")


def test_errors_are_shown_inline_and_history_is_kept(chat_api, backend_module, use_provider):
    provider = use_provider(GREETING, RateLimited(), '{"text": "Where is the rash?", "suggestions": []}')
    chat = SymptomChat(chat_api, "en")
    chat.start()

    chat.send("I have a rash")
    assert chat.messages[-1].sender == "ai"
    assert chat.messages[-1].text.startswith("AI Service Busy")
    assert chat.state is ChatState.AWAITING_USER
    assert chat.suggestions == []
    assert len(backend_module.container.chat_store.get("user-a")["history"]) == 2

    chat.send("I have a rash")
    assert chat.messages[-1] == ChatMessage(sender="ai", text="Where is the rash?")
    assert [turn["role"] for turn in provider.calls[2]["history"]] == ["user", "model"]


def test_blank_input_is_ignored(chat_api, use_provider):
    provider = use_provider(GREETING)
    chat = SymptomChat(chat_api, "en")
    chat.start()

    assert chat.send("   ") is False
    assert len(provider.calls) == 1


def test_send_before_start_is_rejected(chat_api):
    chat = SymptomChat(chat_api, "en")
    with pytest.raises(ChatClosed):
        chat.send("hello")
