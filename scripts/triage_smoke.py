#!/usr/bin/env python3
from __future__ import annotations

import importlib
import io
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient
from PIL import Image, ImageDraw


@dataclass
class Scenario:
  name: str
  run: Callable[[Any], dict[str, Any]]


def sample_lesion_jpeg() -> bytes:
  image = Image.new("RGB", (256, 256), color=(224, 186, 160))
  draw = ImageDraw.Draw(image)
  draw.ellipse((88, 96, 176, 168), fill=(196, 92, 84))
  out = io.BytesIO()
  image.save(out, format="JPEG", quality=90)
  return out.getvalue()


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  os.environ.setdefault("TRIAGE_DB_PATH", str(Path(tempfile.mkdtemp()) / "triage-smoke.sqlite"))

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)
  if backend_module.container.provider is None:
    print("No AI provider configured; set GEMINI_API_KEY or OPENAI_API_KEY.")
    return 2

  from triage_client import CapturedImage, ConnectivityMonitor, LocalStorage, SkinAnalysisFlow, TriageApiClient
  from triage_client import SymptomChat, build_offline_queue

  image = CapturedImage(data=sample_lesion_jpeg(), mime_type="image/jpeg")
  answers = {"Does it itch?": "A little", "How long have you had it?": "Three days"}
  storage = LocalStorage(str(Path(tempfile.mkdtemp()) / "device.sqlite"))

  def two_phase(api) -> dict[str, Any]:
    flow = SkinAnalysisFlow(api, build_offline_queue(api, storage), ConnectivityMonitor(online=True))
    stages: list[str] = []
    outcome = flow.submit(image, answers, "en", on_stage=lambda stage: stages.append(stage.value))
    return {"stages": stages, "result": outcome.result.to_wire() if outcome.result else None}

  def offline_replay(api) -> dict[str, Any]:
    connectivity = ConnectivityMonitor(online=False)
    queue = build_offline_queue(api, storage)
    queue.clear()
    queue.attach(connectivity)
    outcome = SkinAnalysisFlow(api, queue, connectivity).submit(image, answers, "en")
    queued = queue.pending_count()
    connectivity.set_online(True)
    result = queue.results.pop_oldest()
    return {
      "request_id": outcome.request_id,
      "queued_before_reconnect": queued,
      "pending_after_reconnect": queue.pending_count(),
      "result": result.to_wire() if result else None,
    }

  def symptom_chat(api) -> dict[str, Any]:
    chat = SymptomChat(api, "en")
    chat.start()
    if chat.suggestions:
      chat.choose_suggestion(chat.suggestions[0])
    return {
      "state": chat.state.value,
      "messages": [{"sender": item.sender, "text": item.text} for item in chat.messages],
      "suggestions": chat.suggestions,
    }

  scenarios = [
    Scenario(name="Two-Phase Skin Analysis", run=two_phase),
    Scenario(name="Offline Queue Replay", run=offline_replay),
    Scenario(name="Symptom Chat Opening", run=symptom_chat),
  ]

  results: list[dict[str, Any]] = []
  with TestClient(backend_module.app) as client:
    api = TriageApiClient(http=client)
    api.login_guest()
    for scenario in scenarios:
      scenario_result: dict[str, Any] = {"name": scenario.name}
      try:
        scenario_result["body"] = scenario.run(api)
      except Exception as exc:
        scenario_result["pass"] = False
        scenario_result["error"] = f"{type(exc).__name__}: {exc}"
        results.append(scenario_result)
        continue

      body = scenario_result["body"]
      if "result" in body:
        scenario_result["pass"] = isinstance(body["result"], dict) and body["result"].get("conclusion") in {"MILD", "SERIOUS"}
      else:
        scenario_result["pass"] = bool(body.get("messages")) and body["messages"][0]["sender"] == "ai"
      if not scenario_result["pass"]:
        scenario_result["error"] = "Scenario finished without the expected payload."
      results.append(scenario_result)

  passed = sum(1 for item in results if item.get("pass"))
  failed = len(results) - passed
  timestamp = datetime.now(timezone.utc).isoformat()
  provider = backend_module.container.provider

  report_lines = [
    "# Triage Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- AI provider: `{provider.name}` (`{provider.model}`)",
    f"- Total scenarios: `{len(results)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Scenario Results",
    "",
  ]
  for item in results:
    status = "PASS" if item.get("pass") else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    if item.get("error"):
      report_lines.append(f"- Error: `{item['error']}`")
    report_lines.append("```json")
    report_lines.append(json.dumps(item.get("body"), indent=2, ensure_ascii=False))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "TRIAGE_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
