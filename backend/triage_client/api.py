"""HTTP client for the triage API, mapping failures onto the shared error taxonomy."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

import httpx
from pydantic import ValidationError as PydanticValidationError

from triage_ai.errors import NetworkUnreachable, ServerFault, UnparsableResponse, error_from_response
from triage_ai.models import TriageResult

LOGGER = logging.getLogger(__name__)

TokenSource = Callable[[], "str | None"]


class TriageApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:3005",
        *,
        token: str | TokenSource | None = None,
        http: httpx.Client | None = None,
        timeout_seconds: float = 90.0,
    ) -> None:
        self._http = http or httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout_seconds, connect=10.0))
        self._owns_http = http is None
        self._token = token

    @property
    def token(self) -> str | None:
        return self._token() if callable(self._token) else self._token

    @token.setter
    def token(self, value: str | None) -> None:
        self._token = value

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "TriageApiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, endpoint: str, payload: Mapping[str, Any] | None = None) -> Any:
        headers = {"Content-Type": "application/json"}
        token = self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._http.request(method, endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.error("Network error calling %s: %s", endpoint, exc)
            raise NetworkUnreachable() from exc

        if response.status_code >= 400:
            code: str | None = None
            message = f"The server responded with an error (Status: {response.status_code})."
            try:
                body = response.json()
            except ValueError:
                LOGGER.error("Could not parse error response from %s", endpoint)
                body = None
            if isinstance(body, dict):
                code = body.get("code") if isinstance(body.get("code"), str) else None
                detail = body.get("detail") or body.get("message")
                if isinstance(detail, str) and detail.strip():
                    message = detail.strip()
            raise error_from_response(response.status_code, code, message)

        try:
            return response.json()
        except ValueError as exc:
            LOGGER.error("Failed to parse successful response from %s", endpoint)
            raise ServerFault("Received an invalid response from the server.") from exc

    def _triage_result(self, body: Any) -> TriageResult:
        try:
            return TriageResult.model_validate(body)
        except PydanticValidationError as exc:
            raise UnparsableResponse("Received an invalid triage result from the server.") from exc

    def login_guest(self) -> dict[str, Any]:
        body = self._request("POST", "/api/auth/guest")
        self._token = body["token"]
        return body

    def start_skin_analysis(self, image_data: str, mime_type: str) -> str:
        body = self._request(
            "POST",
            "/api/ai/describe-skin-image",
            {"base64ImageData": image_data, "mimeType": mime_type},
        )
        analysis_id = body.get("analysisId") if isinstance(body, dict) else None
        if not analysis_id:
            raise ServerFault("Received an invalid response from the server.")
        return str(analysis_id)

    def get_skin_analysis_conclusion(
        self,
        analysis_id: str,
        mcq_answers: Mapping[str, str] | None,
        language: str,
    ) -> TriageResult:
        body = self._request(
            "POST",
            "/api/ai/get-skin-conclusion",
            {"analysisId": analysis_id, "mcqAnswers": dict(mcq_answers or {}), "language": language},
        )
        return self._triage_result(body)

    def analyze_skin(self, payload: Mapping[str, Any]) -> TriageResult:
        """Single-call analysis used when replaying queued submissions."""
        return self._triage_result(self._request("POST", "/api/ai/analyze-skin", payload))

    def send_chat(self, message: str, language: str) -> dict[str, Any]:
        body = self._request("POST", "/api/ai/chat", {"message": message, "language": language})
        if not isinstance(body, dict):
            raise ServerFault("Received an invalid response from the server.")
        return body
