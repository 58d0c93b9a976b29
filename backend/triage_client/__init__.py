from .api import TriageApiClient
from .capture import (
    CameraCapabilities,
    CameraDevice,
    CameraError,
    CameraNotSupported,
    CameraPermissionDenied,
    CaptureAdapter,
    CaptureError,
    CapturedImage,
    ZoomRange,
    encode_base64,
    load_image_file,
)
from .connectivity import ConnectivityMonitor, http_probe
from .local_storage import LocalStorage
from .offline_queue import (
    ANALYSIS_QUEUE_KEY,
    ANALYSIS_RESULTS_KEY,
    LocalQueueStore,
    OfflineAnalysisQueue,
    QueuedAnalysisRequest,
    ReplaySummary,
    ResultStore,
    analysis_payload,
)
from .skin_analysis import AnalysisOutcome, AnalysisStage, SkinAnalysisFlow, build_offline_queue
from .symptom_chat import ChatClosed, ChatMessage, ChatState, SymptomChat

__all__ = [
    "ANALYSIS_QUEUE_KEY",
    "ANALYSIS_RESULTS_KEY",
    "AnalysisOutcome",
    "AnalysisStage",
    "CameraCapabilities",
    "CameraDevice",
    "CameraError",
    "CameraNotSupported",
    "CameraPermissionDenied",
    "CaptureAdapter",
    "CaptureError",
    "CapturedImage",
    "ChatClosed",
    "ChatMessage",
    "ChatState",
    "ConnectivityMonitor",
    "LocalQueueStore",
    "LocalStorage",
    "OfflineAnalysisQueue",
    "QueuedAnalysisRequest",
    "ReplaySummary",
    "ResultStore",
    "SkinAnalysisFlow",
    "SymptomChat",
    "TriageApiClient",
    "ZoomRange",
    "analysis_payload",
    "build_offline_queue",
    "encode_base64",
    "http_probe",
    "load_image_file",
]
