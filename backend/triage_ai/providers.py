"""Generative model providers reached over plain HTTP with httpx."""

from __future__ import annotations

import base64
import logging
import os
from typing import Any

import httpx

from .errors import NetworkUnreachable, RateLimited, ServerFault
from .models import turn_text

LOGGER = logging.getLogger(__name__)

_GEMINI_API_BASE = os.getenv("GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
_OPENAI_API_BASE = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1").rstrip("/")
_QUOTA_MARKERS = ("429", "quota", "resource_exhausted", "rate limit")


def _provider_error_message(response: httpx.Response) -> str:
    message = response.text.strip()
    try:
        payload = response.json()
    except Exception:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                return msg.strip()
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return message or f"HTTP {response.status_code}"


def _is_quota_error(response: httpx.Response, message: str) -> bool:
    if response.status_code == 429:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


class ModelProvider:
    name = "base"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _post(self, url: str, *, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                transport=self._transport,
            ) as client:
                response = client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            LOGGER.warning("%s provider timed out: %s", self.name, exc)
            raise NetworkUnreachable("AI provider timed out.") from exc
        except httpx.HTTPError as exc:
            LOGGER.warning("%s provider unreachable: %s", self.name, exc)
            raise NetworkUnreachable("Failed to reach the AI provider.") from exc

        if response.status_code >= 400:
            message = _provider_error_message(response)
            LOGGER.error("%s provider error %s: %s", self.name, response.status_code, message)
            if _is_quota_error(response, message):
                raise RateLimited()
            if response.status_code in (401, 403):
                raise ServerFault("AI provider rejected the configured API key.")
            raise ServerFault(f"AI request failed: {message}")

        try:
            payload_json = response.json()
        except ValueError as exc:
            raise ServerFault("AI provider returned invalid JSON.") from exc
        if not isinstance(payload_json, dict):
            raise ServerFault("AI provider returned an unexpected payload.")
        return payload_json

    def generate_text(self, prompt: str, *, image: tuple[bytes, str] | None = None) -> str:
        raise NotImplementedError

    def chat(self, *, system_instruction: str, history: list[dict[str, Any]], message: str) -> str:
        raise NotImplementedError


class GeminiProvider(ModelProvider):
    name = "gemini"

    def _generate(self, body: dict[str, Any]) -> str:
        payload = self._post(
            f"{self.base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            payload=body,
        )
        feedback = payload.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            LOGGER.warning("Gemini blocked the prompt: %s", feedback.get("blockReason"))
        return _coerce_gemini_text(payload)

    def generate_text(self, prompt: str, *, image: tuple[bytes, str] | None = None) -> str:
        parts: list[dict[str, Any]] = []
        if image is not None:
            data, mime_type = image
            parts.append({"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}})
        parts.append({"text": prompt})
        return self._generate({"contents": [{"role": "user", "parts": parts}]})

    def chat(self, *, system_instruction: str, history: list[dict[str, Any]], message: str) -> str:
        contents = [
            {"role": turn["role"], "parts": [{"text": turn_text(turn)}]}
            for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})
        return self._generate(
            {
                "systemInstruction": {"parts": [{"text": system_instruction}]},
                "contents": contents,
                "generationConfig": {"responseMimeType": "application/json"},
            }
        )


def _coerce_gemini_text(response_json: dict[str, Any]) -> str:
    candidates = response_json.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [item["text"] for item in parts if isinstance(item, dict) and isinstance(item.get("text"), str)]
    return "".join(texts).strip()


class OpenAICompatibleProvider(ModelProvider):
    name = "openai"

    def _complete(self, messages: list[dict[str, Any]], *, json_mode: bool = False) -> str:
        body: dict[str, Any] = {"model": self.model, "temperature": 0.2, "messages": messages}
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        payload = self._post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            payload=body,
        )
        return _coerce_completion_text(payload).strip()

    def generate_text(self, prompt: str, *, image: tuple[bytes, str] | None = None) -> str:
        if image is None:
            return self._complete([{"role": "user", "content": prompt}])
        data, mime_type = image
        image_data_url = f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
        content = [
            {"type": "image_url", "image_url": {"url": image_data_url}},
            {"type": "text", "text": prompt},
        ]
        return self._complete([{"role": "user", "content": content}])

    def chat(self, *, system_instruction: str, history: list[dict[str, Any]], message: str) -> str:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        for turn in history:
            role = "assistant" if turn["role"] == "model" else "user"
            messages.append({"role": role, "content": turn_text(turn)})
        messages.append({"role": "user", "content": message})
        return self._complete(messages, json_mode=True)


def _coerce_completion_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message", {})
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    parts.append(text_value)
        return "\n".join(parts)
    return ""


def provider_candidates(transport: httpx.BaseTransport | None = None) -> list[ModelProvider]:
    preference = (os.getenv("TRIAGE_AI_PROVIDER") or "auto").strip().lower()
    timeout_seconds = float(os.getenv("TRIAGE_AI_TIMEOUT_SECONDS", "60"))
    candidates: list[ModelProvider] = []

    gemini_key = (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()
    if gemini_key:
        candidates.append(
            GeminiProvider(
                api_key=gemini_key,
                model=(os.getenv("TRIAGE_GEMINI_MODEL") or "gemini-2.5-flash").strip(),
                base_url=_GEMINI_API_BASE,
                timeout_seconds=timeout_seconds,
                transport=transport,
            )
        )

    openai_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if openai_key:
        candidates.append(
            OpenAICompatibleProvider(
                api_key=openai_key,
                model=(os.getenv("TRIAGE_OPENAI_MODEL") or "gpt-4o-mini").strip(),
                base_url=_OPENAI_API_BASE,
                timeout_seconds=timeout_seconds,
                transport=transport,
            )
        )

    if preference in {"", "auto"}:
        return candidates
    aliases = {"gemini": "gemini", "google": "gemini", "openai": "openai"}
    canonical = aliases.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.name == canonical]
    others = [candidate for candidate in candidates if candidate.name != canonical]
    return preferred + others


def provider_from_env(transport: httpx.BaseTransport | None = None) -> ModelProvider | None:
    candidates = provider_candidates(transport)
    return candidates[0] if candidates else None
