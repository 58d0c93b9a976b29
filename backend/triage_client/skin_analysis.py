from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from triage_ai.errors import ValidationError
from triage_ai.models import TriageResult

from .api import TriageApiClient
from .capture import CapturedImage, encode_base64
from .connectivity import ConnectivityMonitor
from .local_storage import LocalStorage
from .offline_queue import LocalQueueStore, OfflineAnalysisQueue, ResultStore, analysis_payload

LOGGER = logging.getLogger(__name__)


class AnalysisStage(str, Enum):
    UPLOADING = "uploading"
    PREPARING = "preparing"
    EXAMINING = "examining"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class AnalysisOutcome:
    status: str
    result: TriageResult | None = None
    request_id: str | None = None

    @property
    def queued(self) -> bool:
        return self.status == "queued"


def build_offline_queue(api: TriageApiClient, storage: LocalStorage) -> OfflineAnalysisQueue:
    return OfflineAnalysisQueue(LocalQueueStore(storage), ResultStore(storage), api.analyze_skin)


class SkinAnalysisFlow:
    """Runs describe then conclude when online, or parks the submission in the queue."""

    def __init__(
        self,
        api: TriageApiClient,
        queue: OfflineAnalysisQueue,
        connectivity: ConnectivityMonitor,
    ) -> None:
        self.api = api
        self.queue = queue
        self.connectivity = connectivity

    def submit(
        self,
        image: CapturedImage | None,
        mcq_answers: Mapping[str, str] | None,
        language: str,
        on_stage: Callable[[AnalysisStage], None] | None = None,
    ) -> AnalysisOutcome:
        if image is None or not image.data:
            raise ValidationError("Please select an image first.")

        def stage(value: AnalysisStage) -> None:
            if on_stage is not None:
                on_stage(value)

        stage(AnalysisStage.UPLOADING)
        image_data = encode_base64(image)

        if not self.connectivity.is_online:
            LOGGER.info("Offline mode detected. Queuing analysis.")
            request = self.queue.enqueue(analysis_payload(image_data, image.mime_type, language, mcq_answers))
            return AnalysisOutcome(status="queued", request_id=request.id)

        stage(AnalysisStage.PREPARING)
        analysis_id = self.api.start_skin_analysis(image_data, image.mime_type)
        stage(AnalysisStage.EXAMINING)
        result = self.api.get_skin_analysis_conclusion(analysis_id, mcq_answers, language)
        stage(AnalysisStage.FINALIZING)
        return AnalysisOutcome(status="completed", result=result)
