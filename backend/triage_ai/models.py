from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Conclusion(str, Enum):
    MILD = "MILD"
    SERIOUS = "SERIOUS"


class TriageResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    conclusion: Conclusion
    explanation: str
    self_care_tips: tuple[str, ...] | None = Field(default=None, alias="selfCareTips")
    doctor_suggestion: str | None = Field(default=None, alias="doctorSuggestion")

    @field_validator("self_care_tips", mode="before")
    @classmethod
    def _empty_tips_are_absent(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split("* ")
        elif not isinstance(value, (list, tuple)):
            raise ValueError("selfCareTips must be a list of strings")
        tips = [str(tip).strip() for tip in value if str(tip).strip()]
        return tuple(tips) or None

    @field_validator("doctor_suggestion", mode="before")
    @classmethod
    def _blank_suggestion_is_absent(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        if not text or text.upper() == "NONE":
            return None
        return text

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class AnalysisSession:
    id: str
    description: str
    expires_at: float


ROLES = ("user", "model")


def make_turn(role: str, text: str) -> dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


def turn_text(turn: dict[str, Any]) -> str:
    parts = turn.get("parts") if isinstance(turn, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [str(part.get("text") or "") for part in parts if isinstance(part, dict)]
    return "\n".join(text for text in texts if text.strip())
