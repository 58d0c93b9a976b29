"""Error taxonomy shared by the API server and the client pipeline."""

from __future__ import annotations


class TriageError(Exception):
    code = "server_fault"
    status_code = 500
    default_message = "Failed to process AI request."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def as_payload(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code}


class NetworkUnreachable(TriageError):
    code = "network_unreachable"
    status_code = 503
    default_message = "Unable to connect to the server. Please check your internet connection and try again."


class Unauthorized(TriageError):
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class RateLimited(TriageError):
    code = "rate_limited"
    status_code = 429
    default_message = "AI Service Busy: Rate limit reached. Please wait a moment and try again."


class SessionNotFound(TriageError):
    code = "session_not_found"
    status_code = 404
    default_message = "Analysis session not found or expired. Please start over."


class UnparsableResponse(TriageError):
    code = "unparsable_response"
    status_code = 502
    default_message = "Received an unparsable response from the AI."


class EmptyModelResponse(TriageError):
    code = "empty_model_response"
    status_code = 502
    default_message = "AI model returned an empty response."


class ValidationError(TriageError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid request."


class ServerFault(TriageError):
    code = "server_fault"
    status_code = 500


ERRORS_BY_CODE: dict[str, type[TriageError]] = {
    cls.code: cls
    for cls in (
        NetworkUnreachable,
        Unauthorized,
        RateLimited,
        SessionNotFound,
        UnparsableResponse,
        EmptyModelResponse,
        ValidationError,
        ServerFault,
    )
}

_ERRORS_BY_STATUS: dict[int, type[TriageError]] = {
    401: Unauthorized,
    404: SessionNotFound,
    429: RateLimited,
    400: ValidationError,
    422: ValidationError,
}


def error_from_response(status_code: int, code: str | None, message: str | None) -> TriageError:
    """Rebuild a typed error from an HTTP error response."""
    cls = ERRORS_BY_CODE.get(code or "") or _ERRORS_BY_STATUS.get(status_code) or ServerFault
    return cls(message or None)
