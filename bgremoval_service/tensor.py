"""
Pixel buffers and model-input tensors.

`PixelTensor` holds a decoded image as a height x width x 4 (RGBA) uint8
array. Everything the pipeline does to pixels goes through it: decoding,
resizing to and from the working resolution, conversion into the planar
float layout the model consumes, and the in-place alpha write.
"""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import Image
import requests

from . import config
from .errors import DecodeError, InvalidDimensionsError

logger = logging.getLogger(__name__)

_INTERPOLATION = {
    "bilinear": cv2.INTER_LINEAR,
    "nearest": cv2.INTER_NEAREST,
}

ImageSource = Union["PixelTensor", Image.Image, np.ndarray, bytes, bytearray, memoryview, str, Path]


def _check_dims(width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise InvalidDimensionsError(f"Image dimensions must be positive, got {width}x{height}")


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def _fetch_url(url: str) -> bytes:
    settings = config.get_settings()
    try:
        resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise DecodeError(f"Could not fetch image from {url}") from exc
    return resp.content


def _decode_bytes(data: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise DecodeError("Invalid image data") from exc
    return image


def _array_to_rgba(array: np.ndarray) -> np.ndarray:
    """Expand grayscale / RGB uint8 arrays to interleaved RGBA."""
    if array.dtype != np.uint8:
        raise DecodeError(f"Pixel arrays must be uint8, got {array.dtype}")
    if array.ndim == 2:
        _check_dims(array.shape[1], array.shape[0])
        return cv2.cvtColor(np.ascontiguousarray(array), cv2.COLOR_GRAY2RGBA)
    if array.ndim == 3 and array.shape[2] in (3, 4):
        _check_dims(array.shape[1], array.shape[0])
        if array.shape[2] == 3:
            return cv2.cvtColor(np.ascontiguousarray(array), cv2.COLOR_RGB2RGBA)
        return array.copy()
    raise DecodeError(f"Unsupported pixel array shape {array.shape}")


class PixelTensor:
    """Row-major RGBA image buffer (R, G, B, A interleaved per pixel)."""

    channels = 4

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] != self.channels:
            raise ValueError(f"PixelTensor expects an (H, W, 4) array, got {pixels.shape}")
        _check_dims(pixels.shape[1], pixels.shape[0])
        self.pixels = np.ascontiguousarray(pixels, dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def dims(self) -> Tuple[int, int, int]:
        """(height, width, channels), matching the array shape."""
        return self.height, self.width, self.channels

    @property
    def data(self) -> np.ndarray:
        """Flat view of the buffer; length is always width * height * 4."""
        return self.pixels.reshape(-1)

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    def copy(self) -> "PixelTensor":
        return PixelTensor(self.pixels.copy())

    @classmethod
    def from_source(cls, source: ImageSource) -> "PixelTensor":
        """
        Decode an image source into RGBA pixels.

        Accepts another PixelTensor, a PIL image, a uint8 numpy array
        (HxW, HxWx3 or HxWx4), encoded image bytes, a filesystem path, or an
        http(s) URL.

        Raises:
            DecodeError: the source cannot be interpreted as an image.
            InvalidDimensionsError: the decoded image has zero area.
        """
        if isinstance(source, PixelTensor):
            return source.copy()
        if isinstance(source, np.ndarray):
            return cls(_array_to_rgba(source))
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls.from_image(_decode_bytes(bytes(source)))
        if isinstance(source, str) and _is_url(source):
            return cls.from_image(_decode_bytes(_fetch_url(source)))
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.is_file():
                raise DecodeError(f"Image file not found: {path}")
            return cls.from_image(_decode_bytes(path.read_bytes()))
        if isinstance(source, Image.Image):
            return cls.from_image(source)
        raise DecodeError(f"Unsupported image source type: {type(source).__name__}")

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelTensor":
        width, height = image.size
        _check_dims(width, height)
        try:
            rgba = image.convert("RGBA")
        except Exception as exc:  # noqa: BLE001
            raise DecodeError("Could not convert image to RGBA") from exc
        return cls(np.array(rgba, dtype=np.uint8))

    def resize(self, width: int, height: int, method: Optional[str] = None) -> "PixelTensor":
        """
        Return a new tensor resampled to (width, height).

        `method` is "bilinear" or "nearest"; defaults to the configured
        RESIZE_METHOD. The receiver is never mutated. When the target equals
        the current size the pixels are copied, not resampled.
        """
        _check_dims(width, height)
        if (width, height) == (self.width, self.height):
            return self.copy()

        method = (method or config.get_settings().resize_method).lower()
        try:
            interpolation = _INTERPOLATION[method]
        except KeyError:
            raise ValueError(f"Unknown resize method '{method}'") from None

        logger.debug("resize %dx%d -> %dx%d (%s)", self.width, self.height, width, height, method)
        resized = cv2.resize(self.pixels, (width, height), interpolation=interpolation)
        return PixelTensor(resized)

    def to_model_tensor(
        self,
        mean: Optional[Sequence[float]] = None,
        std: Optional[Sequence[float]] = None,
    ) -> np.ndarray:
        """
        Build the (1, 3, H, W) float32 model input.

        Alpha is dropped and the interleaved RGB bytes become planar
        channels, each value mapped to (v / 255 - mean) / std. With the
        default settings this is exactly v / 255.0.
        """
        settings = config.get_settings()
        mean_arr = np.asarray(settings.normalize_mean if mean is None else mean, dtype=np.float32)
        std_arr = np.asarray(settings.normalize_std if std is None else std, dtype=np.float32)

        rgb = self.pixels[..., :3].astype(np.float32) / 255.0
        rgb = (rgb - mean_arr) / std_arr
        chw = np.transpose(rgb, (2, 0, 1))  # HWC -> CHW
        return np.ascontiguousarray(chw[np.newaxis], dtype=np.float32)

    def write_alpha(self, index, value) -> None:
        """
        Set the alpha byte of pixel `index` in place.

        `index` may be a single pixel index, a slice or an index array;
        `value` is a byte or an array of bytes broadcastable to it. Values
        are rounded and clamped to [0, 255].
        """
        values = np.clip(np.rint(np.asarray(value, dtype=np.float64)), 0, 255).astype(np.uint8)
        self.pixels.reshape(-1, self.channels)[index, 3] = values

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def to_encoded_image(self, format: str = "PNG") -> bytes:
        buf = BytesIO()
        self.to_image().save(buf, format=format)
        return buf.getvalue()

    def __repr__(self) -> str:
        return f"PixelTensor(width={self.width}, height={self.height})"
