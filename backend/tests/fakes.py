from __future__ import annotations

from typing import Any

from PIL import Image

from triage_ai.providers import ModelProvider
from triage_client.capture import CameraCapabilities


MILD_REPLY = (
    "CONCLUSION: MILD\n"
    "EXPLANATION: The description points to mild irritation.\n"
    "SELF_CARE_TIPS: * Rest\n"
    "* Hydrate\n"
    "DOCTOR_SUGGESTION: NONE"
)


class ScriptedProvider(ModelProvider):
    """Returns queued replies in order; queued exceptions are raised instead."""

    name = "scripted"

    def __init__(self, *replies: Any) -> None:
        super().__init__(api_key="test-key", model="scripted-model", base_url="http://provider.test")
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    def _next(self) -> str:
        if not self.replies:
            raise AssertionError("Unexpected provider call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def generate_text(self, prompt: str, *, image: tuple[bytes, str] | None = None) -> str:
        self.calls.append({"kind": "generate", "prompt": prompt, "image": image})
        return self._next()

    def chat(self, *, system_instruction: str, history: list[dict[str, Any]], message: str) -> str:
        self.calls.append(
            {
                "kind": "chat",
                "system_instruction": system_instruction,
                "history": [dict(turn) for turn in history],
                "message": message,
            }
        )
        return self._next()


class FakeCamera:
    def __init__(
        self,
        *,
        capabilities: CameraCapabilities | None = None,
        open_error: Exception | None = None,
        apply_error: Exception | None = None,
        frame_error: Exception | None = None,
    ) -> None:
        self._capabilities = capabilities or CameraCapabilities()
        self.open_error = open_error
        self.apply_error = apply_error
        self.frame_error = frame_error
        self.events: list[str] = []
        self.applied: list[dict[str, Any]] = []
        self.is_open = False

    def open(self, facing: str) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.events.append(f"open:{facing}")
        self.is_open = True

    def capabilities(self) -> CameraCapabilities:
        return self._capabilities

    def apply(self, *, torch: bool | None = None, zoom: float | None = None) -> None:
        if self.apply_error is not None:
            raise self.apply_error
        self.applied.append({"torch": torch, "zoom": zoom})

    def read_frame(self) -> Image.Image:
        if self.frame_error is not None:
            raise self.frame_error
        return Image.new("RGB", (32, 24), color=(200, 90, 80))

    def release(self) -> None:
        self.events.append("release")
        self.is_open = False
