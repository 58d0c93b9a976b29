from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import cv2
from PIL import Image

from .capture import CameraCapabilities, CameraError, CameraNotSupported, CameraPermissionDenied, ZoomRange

LOGGER = logging.getLogger(__name__)


class OpenCVCamera:
    """CameraDevice backed by cv2.VideoCapture.

    OpenCV has no facing or torch controls, so ``facing`` is ignored and torch
    is never reported. Zoom is reported only when ``zoom_range`` is given and
    the driver exposes CAP_PROP_ZOOM.
    """

    def __init__(
        self,
        index: int = 0,
        *,
        zoom_range: ZoomRange | None = None,
        device_node: Path | None = None,
    ) -> None:
        self.index = index
        self.zoom_range = zoom_range
        if device_node is None and sys.platform.startswith("linux"):
            device_node = Path(f"/dev/video{index}")
        self.device_node = device_node
        self._capture: cv2.VideoCapture | None = None

    def open(self, facing: str) -> None:
        self.release()
        if self.device_node is not None:
            if not self.device_node.exists():
                raise CameraNotSupported()
            if not os.access(self.device_node, os.R_OK | os.W_OK):
                raise CameraPermissionDenied()

        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraError(f"Could not open camera {self.index}.")
        self._capture = capture
        LOGGER.info("Opened camera %d", self.index)

    def capabilities(self) -> CameraCapabilities:
        zoom = None
        if self._capture is not None and self.zoom_range is not None:
            if self._capture.get(cv2.CAP_PROP_ZOOM) > 0:
                zoom = self.zoom_range
        return CameraCapabilities(torch=False, zoom=zoom)

    def apply(self, *, torch: bool | None = None, zoom: float | None = None) -> None:
        if self._capture is None:
            raise CameraError("The camera is not open.")
        if zoom is not None and not self._capture.set(cv2.CAP_PROP_ZOOM, zoom):
            raise CameraError(f"Camera rejected zoom {zoom}.")

    def read_frame(self) -> Image.Image:
        if self._capture is None:
            raise CameraError("The camera is not open.")
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraError("Could not read a frame from the camera.")
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

    def release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
