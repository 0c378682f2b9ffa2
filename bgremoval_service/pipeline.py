"""
High-level background-removal pipeline.

`remove_background` is the main entry point used by the HTTP API, the
batch worker and the local CLI. It keeps orchestration simple:
image in -> square working resolution -> model -> alpha write -> original
size -> RGBA PNG bytes out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from . import config
from .assets import AssetResolver, ModelReference, resolve_model_source
from .errors import InferenceError
from .session import InferenceOutput, InferenceSession, load_session
from .tensor import ImageSource, PixelTensor

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., InferenceSession]


@dataclass
class RemoveBackgroundOptions:
    model: ModelReference = None
    resolution: Optional[int] = None  # None / 0 -> image width
    output: Optional[str] = None  # foreground | mask | background
    resize_method: Optional[str] = None  # bilinear | nearest
    debug: bool = False
    engine_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.output is not None and self.output not in config.OUTPUT_MODES:
            raise ValueError("output must be one of foreground | mask | background")
        if self.resize_method is not None and self.resize_method not in config.RESIZE_METHODS:
            raise ValueError("resize_method must be one of bilinear | nearest")
        if self.resolution is not None and (
            isinstance(self.resolution, bool) or not isinstance(self.resolution, int)
        ):
            raise ValueError("resolution must be an integer")


def composite_alpha(tensor: PixelTensor, result: InferenceOutput, output: str = "foreground") -> None:
    """
    Write the model's probability map into `tensor`'s alpha channel in place.

    `background` stores 1 - p; `foreground` and `mask` both store p, leaving
    RGB untouched. Probabilities are clamped to [0, 1] and rounded to bytes.
    """
    stride = tensor.width * tensor.height
    probs = np.asarray(result.data, dtype=np.float32).reshape(-1)
    if probs.size != stride:
        raise InferenceError(
            f"Model output has {probs.size} values, expected {stride} "
            f"for a {tensor.width}x{tensor.height} working image"
        )

    alpha = np.clip(np.nan_to_num(probs, nan=0.0), 0.0, 1.0)
    if output == "background":
        alpha = 1.0 - alpha
    tensor.write_alpha(slice(0, stride), alpha * 255.0)


def remove_background(
    image_source: ImageSource,
    options: Optional[RemoveBackgroundOptions] = None,
    resolver: Optional[AssetResolver] = None,
    session_factory: SessionFactory = load_session,
) -> bytes:
    """
    Full pipeline from an image source to RGBA PNG bytes.

    The working resolution is square and keyed off the image width: the
    image is resized to (resolution, resolution) only when the resolution
    differs from its width, and resized back to the original size after the
    alpha write. Each call loads and releases its own session.

    Raises:
        DecodeError, InvalidDimensionsError: invalid image input.
        AssetResolutionError: the default or remote model cannot be fetched.
        ModelLoadError: the model cannot be loaded.
        InferenceError: the forward pass fails or returns the wrong shape.
    """
    options = options or RemoveBackgroundOptions()
    settings = config.get_settings()
    debug = options.debug or settings.debug
    log = logger.info if debug else logger.debug
    output = options.output or settings.default_output

    image = PixelTensor.from_source(image_source)

    target_resolution = options.resolution or image.width
    resized_input = target_resolution != image.width
    if resized_input:
        working = image.resize(target_resolution, target_resolution, method=options.resize_method)
    else:
        working = image

    model_source = resolve_model_source(options.model, resolver)

    log("Loading model...")
    engine_options = dict(options.engine_options)
    engine_options.setdefault("debug", debug)
    session = session_factory(model_source, **engine_options)

    log("Processing %dx%d at resolution %d...", image.width, image.height, target_resolution)
    try:
        result = session.run([working.to_model_tensor()])
    except Exception:
        try:
            session.release()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to release inference session after inference error")
        raise
    session.release()
    log("Completion: %d alpha values", len(result.data))

    composite_alpha(working, result, output)

    if resized_input:
        working = working.resize(image.width, image.height, method=options.resize_method)

    return working.to_encoded_image()
