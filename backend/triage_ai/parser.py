"""Parsing of model replies into typed triage results."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import UnparsableResponse
from .models import Conclusion, TriageResult

LOGGER = logging.getLogger(__name__)

_CONCLUSION = "CONCLUSION:"
_EXPLANATION = "EXPLANATION:"
_SELF_CARE_TIPS = "SELF_CARE_TIPS:"
_DOCTOR_SUGGESTION = "DOCTOR_SUGGESTION:"
_NONE = "NONE"
_TIP_BULLET = "* "
_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


def _split_tips(raw: str) -> list[str]:
    return [tip.strip() for tip in raw.split(_TIP_BULLET) if tip.strip()]


def _optional_text(raw: str) -> str | None:
    value = raw.strip()
    if not value or value.upper() == _NONE:
        return None
    return value


def parse_triage_reply(text: str) -> TriageResult:
    """Parse the four-line labelled reply.

    Labels are matched by line prefix. ``SELF_CARE_TIPS`` may continue on the
    following ``* `` lines. ``NONE`` or an empty value maps to an absent field.
    """
    conclusion: Conclusion | None = None
    explanation: str | None = None
    tips: list[str] = []
    tips_open = False
    doctor: str | None = None

    for raw_line in (text or "").strip().splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(_CONCLUSION):
            tips_open = False
            value = line[len(_CONCLUSION):].strip().upper()
            if value in Conclusion.__members__:
                conclusion = Conclusion(value)
        elif line.startswith(_EXPLANATION):
            tips_open = False
            explanation = line[len(_EXPLANATION):].strip() or None
        elif line.startswith(_SELF_CARE_TIPS):
            raw_tips = line[len(_SELF_CARE_TIPS):].strip()
            tips_open = raw_tips.upper() != _NONE
            if tips_open:
                tips.extend(_split_tips(raw_tips))
        elif line.startswith(_DOCTOR_SUGGESTION):
            tips_open = False
            doctor = _optional_text(line[len(_DOCTOR_SUGGESTION):])
        elif tips_open and line.startswith("*"):
            tips.extend(_split_tips(_TIP_BULLET + line[1:].lstrip()))

    if conclusion is None or not explanation:
        LOGGER.warning("Unparsable triage reply: %r", (text or "")[:500])
        raise UnparsableResponse()

    return TriageResult(
        conclusion=conclusion,
        explanation=explanation,
        self_care_tips=tuple(tips) or None,
        doctor_suggestion=doctor,
    )


def extract_json_object(raw_text: str) -> dict[str, Any] | None:
    text = _FENCE_RE.sub("", raw_text or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
        if isinstance(payload, dict):
            return payload
    except json.JSONDecodeError:
        pass

    for start_idx in [idx for idx, char in enumerate(text) if char == "{"]:
        depth = 0
        for end_idx in range(start_idx, len(text)):
            char = text[end_idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
            if depth == 0:
                candidate = text[start_idx : end_idx + 1]
                try:
                    payload = json.loads(candidate)
                    if isinstance(payload, dict):
                        return payload
                except json.JSONDecodeError:
                    break
    return None


def parse_chat_reply(raw_text: str) -> dict[str, Any]:
    """Normalise a chat reply to ``{text, suggestions}`` or ``{triageResult}``."""
    payload = extract_json_object(raw_text)
    if payload is None:
        LOGGER.warning("Chat reply was not JSON; returning it as plain text.")
        return {"text": _FENCE_RE.sub("", raw_text or "").strip(), "suggestions": []}

    triage = payload.get("triageResult")
    if isinstance(triage, dict):
        try:
            result = TriageResult.model_validate(
                {**triage, "conclusion": str(triage.get("conclusion") or "").strip().upper()}
            )
        except PydanticValidationError:
            LOGGER.warning("Chat reply carried an invalid triageResult: %r", triage)
        else:
            return {"triageResult": result.to_wire()}

    text = payload.get("text")
    suggestions = payload.get("suggestions")
    return {
        "text": text.strip() if isinstance(text, str) else "",
        "suggestions": [str(item) for item in suggestions if str(item).strip()]
        if isinstance(suggestions, list)
        else [],
    }
