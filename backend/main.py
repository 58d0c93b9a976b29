from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import logging
import os
import re
import uuid
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from storage import ChatSessionStore, SQLiteTriageDB
from triage_ai import (
    AnalysisSessionCache,
    ChatService,
    ModelProvider,
    SQLiteSessionBackend,
    ServerFault,
    TriageError,
    TwoPhaseInference,
    Unauthorized,
    ValidationError,
    provider_from_env,
)

load_dotenv(Path(__file__).resolve().parents[1] / ".env")
load_dotenv(Path(__file__).resolve().parent / ".env")

logging.basicConfig(
    level=os.getenv("TRIAGE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger("triage.api")

_MAX_IMAGE_BYTES = int(os.getenv("TRIAGE_MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))
_SESSION_TTL_SECONDS = float(os.getenv("TRIAGE_SESSION_TTL_SECONDS", str(15 * 60)))
_SESSION_SWEEP_SECONDS = float(os.getenv("TRIAGE_SESSION_SWEEP_SECONDS", "60"))
_ALLOWED_IMAGE_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
}
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,", re.IGNORECASE)


class DescribeImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_data: str = Field(default="", alias="base64ImageData")
    mime_type: str = Field(default="", alias="mimeType")


class ConclusionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis_id: str = Field(default="", alias="analysisId")
    mcq_answers: dict[str, str] | None = Field(default=None, alias="mcqAnswers")
    language: str = "en"


class AnalyzeSkinRequest(DescribeImageRequest):
    mcq_answers: dict[str, str] | None = Field(default=None, alias="mcqAnswers")
    language: str = "en"


class ChatRequest(BaseModel):
    message: str = ""
    language: str = "en"


class TriageApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "TRIAGE_DB_PATH",
            str((Path(__file__).resolve().parent / "triage.sqlite")),
        )
        self.db = SQLiteTriageDB(db_path)
        self.sessions = AnalysisSessionCache(SQLiteSessionBackend(self.db), ttl_seconds=_SESSION_TTL_SECONDS)
        self.chat_store = ChatSessionStore(self.db)
        provider = provider_from_env()
        self.inference = TwoPhaseInference(provider, self.sessions)
        self.chat = ChatService(provider, self.chat_store)

    @property
    def provider(self) -> ModelProvider | None:
        return self.inference.provider

    def use_provider(self, provider: ModelProvider | None) -> None:
        self.inference.provider = provider
        self.chat.provider = provider


container = TriageApp()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if container.provider is None:
        LOGGER.warning("No AI provider key found in environment; AI endpoints will fail until configured.")
    else:
        LOGGER.info("AI provider: %s (%s)", container.provider.name, container.provider.model)
    container.sessions.sweep_expired()
    sweeper = asyncio.create_task(container.sessions.run_sweeper(_SESSION_SWEEP_SECONDS))
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="Triage Backend", lifespan=lifespan)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TriageError)
async def triage_error_handler(request: Request, exc: TriageError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.as_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(status_code=500, content=ServerFault().as_payload())


def get_user_id(auth_header: str | None) -> str:
    if not auth_header:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise Unauthorized()
    if not auth_header.startswith("Bearer "):
        raise Unauthorized()
    raw = auth_header[len("Bearer "):].strip()
    if not raw:
        raise Unauthorized("Invalid token")
    # Bearer tokens are opaque identities here; issuance and verification live upstream.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def _decode_image(image_data: str, mime_type: str) -> tuple[bytes, str]:
    raw = (image_data or "").strip()
    mime = (mime_type or "").lower().strip()
    match = _DATA_URL_RE.match(raw)
    if match:
        mime = mime or match.group("mime").lower()
        raw = raw[match.end():]
    if not raw or not mime:
        raise ValidationError("Invalid image data provided.")
    if mime not in _ALLOWED_IMAGE_MIME_TYPES:
        raise ValidationError(f"Unsupported image type: {mime}")
    if len(raw) > (_MAX_IMAGE_BYTES * 4) // 3 + 4:
        raise ValidationError(f"Image exceeds {_MAX_IMAGE_BYTES // (1024 * 1024)}MB limit.")
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Image data is not valid base64.") from exc
    if not data:
        raise ValidationError("Invalid image data provided.")
    if len(data) > _MAX_IMAGE_BYTES:
        raise ValidationError(f"Image exceeds {_MAX_IMAGE_BYTES // (1024 * 1024)}MB limit.")
    return data, mime


@app.get("/")
def root():
    return {"message": "Triage backend is running"}


@app.get("/api/health")
def health():
    provider = container.provider
    return {"ok": True, "ai_provider": provider.name if provider else None}


@app.post("/api/auth/guest")
def auth_guest():
    guest_id = f"guest_{uuid.uuid4().hex[:20]}"
    return {"token": guest_id, "user": {"name": "Guest", "phone": "", "isGuest": True}}


@app.post("/api/ai/describe-skin-image")
def describe_skin_image(payload: DescribeImageRequest, authorization: str | None = Header(default=None)):
    get_user_id(authorization)
    image_bytes, mime_type = _decode_image(payload.image_data, payload.mime_type)
    analysis_id = container.inference.describe(image_bytes, mime_type)
    return {"analysisId": analysis_id}


@app.post("/api/ai/get-skin-conclusion")
def get_skin_conclusion(payload: ConclusionRequest, authorization: str | None = Header(default=None)):
    get_user_id(authorization)
    if not payload.analysis_id.strip():
        raise ValidationError("analysisId is required.")
    result = container.inference.conclude(payload.analysis_id.strip(), payload.mcq_answers, payload.language)
    return result.to_wire()


@app.post("/api/ai/analyze-skin")
def analyze_skin(payload: AnalyzeSkinRequest, authorization: str | None = Header(default=None)):
    get_user_id(authorization)
    image_bytes, mime_type = _decode_image(payload.image_data, payload.mime_type)
    result = container.inference.analyze(image_bytes, mime_type, payload.mcq_answers, payload.language)
    return result.to_wire()


@app.post("/api/ai/chat")
def chat(payload: ChatRequest, authorization: str | None = Header(default=None)) -> dict[str, Any]:
    user_id = get_user_id(authorization)
    return container.chat.send(user_id=user_id, message=payload.message, language=payload.language)

