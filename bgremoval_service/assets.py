"""
Model asset resolution.

`AssetResolver` turns a model name or URL into a local file, downloading it
into the cache directory on first use. Resolved paths are memoised
process-wide behind a lock, so concurrent first requests share one fetch.
Files are written to a temporary name and moved into place, so no caller
ever sees a partially written model.
"""

from __future__ import annotations

from functools import lru_cache
import hashlib
import logging
import os
from pathlib import Path
import tempfile
from threading import Lock
from typing import Dict, Optional, Tuple, Union
from urllib.parse import urljoin, urlparse

import requests

from . import config
from .errors import AssetResolutionError, ModelLoadError
from .session import ModelSource

logger = logging.getLogger(__name__)

_RESOLVED: Dict[Tuple[str, str], Path] = {}
_LOCK = Lock()

ModelReference = Union[bytes, bytearray, memoryview, str, Path, None]


def clear_cache() -> None:
    """Forget memoised paths (files on disk are kept)."""
    with _LOCK:
        _RESOLVED.clear()


class AssetResolver:
    """Resolve model assets into local files under `cache_dir`."""

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        settings = config.get_settings()
        self.cache_dir = Path(cache_dir or settings.model_cache_dir).expanduser()
        self.base_url = base_url or settings.default_model_base_url
        self.timeout = timeout or settings.asset_timeout_seconds

    def resolve(self, name: Optional[str] = None) -> Path:
        """Return the local path of asset `name` (default: DEFAULT_MODEL_NAME)."""
        name = name or config.get_settings().default_model_name
        url = urljoin(self.base_url.rstrip("/") + "/", name)
        return self._resolve(url, name)

    def resolve_url(self, url: str) -> Path:
        """Return the local path of an arbitrary model URL."""
        filename = Path(urlparse(url).path).name or "model"
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        return self._resolve(url, f"{digest}-{filename}")

    def _resolve(self, url: str, filename: str) -> Path:
        key = (str(self.cache_dir), url)
        cached = _RESOLVED.get(key)
        if cached is not None and cached.is_file():
            return cached

        with _LOCK:
            cached = _RESOLVED.get(key)
            if cached is not None and cached.is_file():
                return cached
            target = self.cache_dir / filename
            if target.is_file():
                logger.debug("Model asset cache hit: %s", target)
            else:
                self._download(url, target)
            _RESOLVED[key] = target
            return target

    def _download(self, url: str, target: Path) -> None:
        logger.info("Downloading model asset %s -> %s", url, target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AssetResolutionError(f"Cannot create model cache dir {target.parent}") from exc

        try:
            resp = requests.get(url, stream=True, timeout=(5, self.timeout))
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise AssetResolutionError(f"Could not download model asset from {url}") from exc

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=1 << 20):
                    if chunk:
                        fh.write(chunk)
            os.replace(tmp_name, target)
        except (OSError, requests.RequestException) as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise AssetResolutionError(f"Failed to write model asset to {target}") from exc
        finally:
            resp.close()


@lru_cache()
def get_default_resolver() -> AssetResolver:
    return AssetResolver()


def resolve_model_source(model: ModelReference, resolver: Optional[AssetResolver] = None) -> ModelSource:
    """
    Normalise a caller-supplied model reference into bytes or a local path.

    `None` resolves the default asset; URLs are downloaded once into the
    cache; paths must exist.

    Raises:
        AssetResolutionError: a remote asset cannot be fetched.
        ModelLoadError: a local reference does not point at a file.
    """
    if isinstance(model, (bytes, bytearray, memoryview)):
        return bytes(model)

    resolver = resolver or get_default_resolver()
    if model is None:
        return resolver.resolve()
    if isinstance(model, str) and model.startswith(("http://", "https://")):
        return resolver.resolve_url(model)
    if isinstance(model, (str, Path)):
        path = Path(model).expanduser()
        if not path.is_file():
            raise ModelLoadError(f"Model file not found at {path}")
        return path
    raise ModelLoadError(f"Unsupported model reference type: {type(model).__name__}")
