"""
Test configuration and fixtures for the background-removal service.
"""

import io

import pytest
from PIL import Image, ImageDraw

from bgremoval_service import assets, config


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the model cache at a temp dir and reset cached singletons."""
    monkeypatch.setenv("MODEL_CACHE_DIR", str(tmp_path / "models"))
    config.get_settings.cache_clear()
    assets.get_default_resolver.cache_clear()
    assets.clear_cache()
    yield
    config.get_settings.cache_clear()
    assets.get_default_resolver.cache_clear()
    assets.clear_cache()


@pytest.fixture
def red_image():
    """256x256 opaque red image."""
    return Image.new("RGB", (256, 256), color=(255, 0, 0))


@pytest.fixture
def red_image_bytes(red_image):
    buf = io.BytesIO()
    red_image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_image():
    """64x48 white image with a red circle."""
    img = Image.new("RGB", (64, 48), color=(255, 255, 255))
    draw = ImageDraw.Draw(img)
    draw.ellipse([16, 8, 48, 40], fill=(255, 0, 0))
    return img


@pytest.fixture
def sample_image_bytes(sample_image):
    buf = io.BytesIO()
    sample_image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def model_bytes():
    """Opaque stand-in for model data; only stub factories ever see it."""
    return b"stub-model"
