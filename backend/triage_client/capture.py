"""Image capture from a file selection or a live camera stream."""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from PIL import Image, UnidentifiedImageError

LOGGER = logging.getLogger(__name__)

MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}
JPEG_QUALITY = 90


class CaptureError(Exception):
    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class CameraNotSupported(CaptureError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__("camera_not_supported", message or "No camera is available on this device.")


class CameraPermissionDenied(CaptureError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__("camera_permission_denied", message or "Camera permission was denied.")


class CameraError(CaptureError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__("camera_error", message or "The camera could not be started.")


@dataclass(frozen=True)
class CapturedImage:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class ZoomRange:
    min: float
    max: float
    step: float = 0.0

    def snap(self, value: float) -> float:
        clamped = min(max(value, self.min), self.max)
        if self.step <= 0:
            return clamped
        steps = round((clamped - self.min) / self.step)
        return min(self.min + steps * self.step, self.max)


@dataclass(frozen=True)
class CameraCapabilities:
    torch: bool = False
    zoom: ZoomRange | None = None


class CameraDevice(Protocol):
    def open(self, facing: str) -> None:
        """Acquire the stream. Raises CameraNotSupported, CameraPermissionDenied or CameraError."""
        ...

    def capabilities(self) -> CameraCapabilities: ...

    def apply(self, *, torch: bool | None = None, zoom: float | None = None) -> None: ...

    def read_frame(self) -> Image.Image: ...

    def release(self) -> None: ...


def encode_base64(image: CapturedImage) -> str:
    return base64.b64encode(image.data).decode("ascii")


def encode_jpeg(frame: Image.Image, quality: int = JPEG_QUALITY) -> bytes:
    out = io.BytesIO()
    frame.convert("RGB").save(out, format="JPEG", quality=quality)
    return out.getvalue()


def load_image_file(source: str | Path | BinaryIO) -> CapturedImage:
    """Read an image selection, deriving the MIME type from its decoded format."""
    try:
        if isinstance(source, (str, Path)):
            data = Path(source).read_bytes()
        else:
            data = source.read()
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (OSError, UnidentifiedImageError) as exc:
        raise CaptureError("read_failed", "The selected file could not be read as an image.") from exc

    mime_type = MIME_BY_FORMAT.get(image_format or "")
    if mime_type is None:
        raise CaptureError("read_failed", f"Unsupported image format: {image_format}")
    return CapturedImage(data=data, mime_type=mime_type)


class CaptureAdapter:
    """Holds at most one open camera stream and the image selected for analysis."""

    def __init__(self, device: CameraDevice | None = None) -> None:
        self.device = device
        self.capabilities = CameraCapabilities()
        self.torch_on = False
        self.zoom: float = 1.0
        self.still: CapturedImage | None = None
        self.selected: CapturedImage | None = None
        self._stream_open = False

    @property
    def is_streaming(self) -> bool:
        return self._stream_open

    def __enter__(self) -> "CaptureAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def from_file(self, source: str | Path | BinaryIO) -> CapturedImage:
        self.selected = load_image_file(source)
        return self.selected

    def open_camera(self) -> CameraCapabilities:
        if self.device is None:
            raise CameraNotSupported()
        self._release_stream()
        self.still = None
        try:
            self.device.open("environment")
        except CaptureError:
            raise
        except Exception as exc:
            LOGGER.error("Camera access error: %s", exc)
            raise CameraError() from exc
        self._stream_open = True

        self.capabilities = self.device.capabilities()
        self.torch_on = False
        self.zoom = self.capabilities.zoom.min if self.capabilities.zoom else 1.0
        return self.capabilities

    def set_torch(self, on: bool) -> None:
        if not self._stream_open or not self.capabilities.torch:
            return
        try:
            self.device.apply(torch=on)
        except Exception as exc:
            LOGGER.error("Error applying torch constraint: %s", exc)
            return
        self.torch_on = on

    def set_zoom(self, value: float) -> None:
        zoom_range = self.capabilities.zoom
        if not self._stream_open or zoom_range is None:
            return
        target = zoom_range.snap(value)
        try:
            self.device.apply(zoom=target)
        except Exception as exc:
            LOGGER.error("Error applying zoom constraint: %s", exc)
            return
        self.zoom = target

    def capture(self) -> CapturedImage:
        if not self._stream_open:
            raise CameraError("The camera is not open.")
        try:
            frame = self.device.read_frame()
            self.still = CapturedImage(data=encode_jpeg(frame), mime_type="image/jpeg")
        except CaptureError:
            self._release_stream()
            raise
        except Exception as exc:
            self._release_stream()
            raise CameraError("Could not capture a frame from the camera.") from exc
        self._release_stream()
        return self.still

    def retake(self) -> CameraCapabilities:
        self.still = None
        return self.open_camera()

    def confirm(self) -> CapturedImage:
        if self.still is None:
            raise CaptureError("no_capture", "Take a photo before confirming it.")
        self.selected = self.still
        self.still = None
        self._release_stream()
        return self.selected

    def close(self) -> None:
        self._release_stream()
        self.still = None

    def _release_stream(self) -> None:
        if not self._stream_open:
            return
        self._stream_open = False
        try:
            self.device.release()
        except Exception:
            LOGGER.exception("Failed to release camera stream")
