"""
Background removal microservice package.

Exposes reusable primitives for decoding images into pixel tensors, loading
segmentation models, running the removal pipeline, and serving the FastAPI
application.
"""

from .errors import (
    AssetResolutionError,
    BackgroundRemovalError,
    DecodeError,
    InferenceError,
    InvalidDimensionsError,
    ModelLoadError,
)
from .pipeline import RemoveBackgroundOptions, remove_background
from .tensor import PixelTensor

__all__ = [
    "AssetResolutionError",
    "BackgroundRemovalError",
    "DecodeError",
    "InferenceError",
    "InvalidDimensionsError",
    "ModelLoadError",
    "PixelTensor",
    "RemoveBackgroundOptions",
    "remove_background",
]
