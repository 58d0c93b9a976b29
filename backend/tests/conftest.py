from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fakes import ScriptedProvider  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "triage-test.sqlite"
    monkeypatch.setenv("TRIAGE_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")
    # Provider tests opt in explicitly; nothing here may reach a real model.
    for key in ("GEMINI_API_KEY", "API_KEY", "OPENAI_API_KEY", "TRIAGE_AI_PROVIDER"):
        monkeypatch.delenv(key, raising=False)

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make


@pytest.fixture
def use_provider(backend_module) -> Callable[..., ScriptedProvider]:
    def _install(*replies) -> ScriptedProvider:
        provider = ScriptedProvider(*replies)
        backend_module.container.use_provider(provider)
        return provider

    return _install
