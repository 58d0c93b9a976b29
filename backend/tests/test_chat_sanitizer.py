from __future__ import annotations

import itertools

import pytest

from triage_ai import sanitize_history
from triage_ai.models import make_turn, turn_text


def _roles(history):
    return [turn["role"] for turn in history]


def _texts(history):
    return [turn_text(turn) for turn in history]


def _assert_well_formed(history):
    roles = _roles(history)
    if not roles:
        return
    assert roles[0] == "user"
    assert roles[-1] == "model"
    assert all(left != right for left, right in zip(roles, roles[1:]))


def test_clean_history_is_unchanged():
    history = [make_turn("user", "hi"), make_turn("model", "hello"), make_turn("user", "rash"), make_turn("model", "where?")]
    assert sanitize_history(history) == history


def test_input_is_not_mutated():
    history = [make_turn("model", "stray"), make_turn("user", "hi"), make_turn("model", "hello")]
    snapshot = [dict(turn) for turn in history]
    sanitize_history(history)
    assert history == snapshot


def test_leading_model_turns_are_dropped():
    history = [make_turn("model", "a"), make_turn("model", "b"), make_turn("user", "hi"), make_turn("model", "ok")]
    assert _texts(sanitize_history(history)) == ["hi", "ok"]


def test_consecutive_turns_keep_the_latest():
    history = [
        make_turn("user", "first"),
        make_turn("user", "second"),
        make_turn("model", "reply one"),
        make_turn("model", "reply two"),
    ]
    assert _texts(sanitize_history(history)) == ["second", "reply two"]


def test_trailing_user_turn_is_dropped():
    history = [make_turn("user", "hi"), make_turn("model", "hello"), make_turn("user", "unanswered")]
    assert _texts(sanitize_history(history)) == ["hi", "hello"]


@pytest.mark.parametrize(
    "turn",
    [
        {"role": "user", "parts": [{"text": "   "}]},
        {"role": "user", "parts": []},
        {"role": "user"},
        {"role": "system", "parts": [{"text": "ignored"}]},
        "not a turn",
    ],
)
def test_empty_or_foreign_turns_are_dropped(turn):
    history = [make_turn("user", "hi"), turn, make_turn("model", "hello")]
    assert _texts(sanitize_history(history)) == ["hi", "hello"]


def test_every_role_sequence_sanitises_to_alternation():
    for length in range(0, 7):
        for roles in itertools.product(("user", "model", "blank"), repeat=length):
            history = [
                make_turn("user", "") if role == "blank" else make_turn(role, f"{role}-{idx}")
                for idx, role in enumerate(roles)
            ]
            cleaned = sanitize_history(history)
            _assert_well_formed(cleaned)
            assert set(_texts(cleaned)) <= set(_texts(history))
