from __future__ import annotations

import logging
from typing import Mapping

from .errors import EmptyModelResponse, ServerFault, SessionNotFound, ValidationError
from .models import TriageResult
from .parser import parse_triage_reply
from .prompts import DESCRIBE_PROMPT, conclusion_prompt
from .providers import ModelProvider
from .session_cache import AnalysisSessionCache

LOGGER = logging.getLogger(__name__)


class TwoPhaseInference:
    """Describe an image, then conclude from the description plus the user's answers.

    The description phase never asks for a judgment. Its output is parked in
    the session cache so the conclude call only needs the analysis id.
    """

    def __init__(self, provider: ModelProvider | None, sessions: AnalysisSessionCache) -> None:
        self.provider = provider
        self.sessions = sessions

    def _require_provider(self) -> ModelProvider:
        if self.provider is None:
            raise ServerFault("AI provider is not configured.")
        return self.provider

    def _describe_text(self, image_bytes: bytes, mime_type: str) -> str:
        if not image_bytes or not mime_type:
            raise ValidationError("Invalid image data provided.")
        text = self._require_provider().generate_text(DESCRIBE_PROMPT, image=(image_bytes, mime_type))
        if not text or not text.strip():
            raise EmptyModelResponse("The AI could not analyze the provided image.")
        return text.strip()

    def _conclude_text(self, description: str, mcq_answers: Mapping[str, str] | None, language: str) -> TriageResult:
        prompt = conclusion_prompt(description, mcq_answers, language)
        text = self._require_provider().generate_text(prompt)
        if not text or not text.strip():
            raise EmptyModelResponse("AI model returned an empty response during the final analysis.")
        return parse_triage_reply(text)

    def describe(self, image_bytes: bytes, mime_type: str) -> str:
        description = self._describe_text(image_bytes, mime_type)
        analysis_id = self.sessions.create(description)
        LOGGER.info("Created analysis session %s", analysis_id)
        return analysis_id

    def conclude(self, analysis_id: str, mcq_answers: Mapping[str, str] | None, language: str) -> TriageResult:
        session = self.sessions.take(analysis_id)
        if session is None:
            raise SessionNotFound()
        try:
            return self._conclude_text(session.description, mcq_answers, language)
        except Exception:
            # Only a successful conclusion uses up the session.
            if self.sessions.restore(session):
                LOGGER.info("Restored analysis session %s after a failed conclusion", analysis_id)
            raise

    def analyze(
        self,
        image_bytes: bytes,
        mime_type: str,
        mcq_answers: Mapping[str, str] | None,
        language: str,
    ) -> TriageResult:
        description = self._describe_text(image_bytes, mime_type)
        return self._conclude_text(description, mcq_answers, language)
