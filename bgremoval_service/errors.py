"""Error taxonomy for the background-removal pipeline.

Input problems subclass ``ValueError`` so callers (and the HTTP layer) can
keep treating them as bad requests; everything else is a ``RuntimeError``.
"""

from __future__ import annotations


class BackgroundRemovalError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(BackgroundRemovalError, ValueError):
    """The image source could not be interpreted as an image."""


class InvalidDimensionsError(BackgroundRemovalError, ValueError):
    """An image or resize target has a zero or negative dimension."""


class ModelLoadError(BackgroundRemovalError, RuntimeError):
    """Model bytes or reference are malformed or unsupported."""


class InferenceError(BackgroundRemovalError, RuntimeError):
    """The forward pass failed or returned an output of the wrong shape."""


class AssetResolutionError(BackgroundRemovalError, RuntimeError):
    """A model asset could not be fetched or cached."""
