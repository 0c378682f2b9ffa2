"""
Configuration loader for the background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RESIZE_METHODS = ("bilinear", "nearest")
OUTPUT_MODES = ("foreground", "mask", "background")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, protected_namespaces=())

    # Default model asset
    default_model_name: str = "u2netp.onnx"
    default_model_base_url: str = "https://github.com/danielgatis/rembg/releases/download/v0.0.0/"
    model_cache_dir: Path = Path.home() / ".cache" / "bgremoval"
    asset_timeout_seconds: int = 60

    # Pre/post-processing
    resize_method: str = "bilinear"
    default_output: str = "foreground"
    # ModelTensor values are (v / 255 - mean) / std; the defaults give v / 255.0
    normalize_mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    normalize_std: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    # Inference engines
    onnx_providers: Optional[List[str]] = None
    torch_device: Optional[str] = None

    # Cloudflare R2 / S3-compatible storage
    r2_endpoint: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: Optional[str] = None
    r2_public_base_url: Optional[str] = None

    # API
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    # Debugging
    debug: bool = False

    @field_validator("resize_method")
    @classmethod
    def validate_resize_method(cls, v: str) -> str:
        v = v.lower()
        if v not in RESIZE_METHODS:
            raise ValueError("RESIZE_METHOD must be one of bilinear|nearest")
        return v

    @field_validator("default_output")
    @classmethod
    def validate_default_output(cls, v: str) -> str:
        v = v.lower()
        if v not in OUTPUT_MODES:
            raise ValueError("DEFAULT_OUTPUT must be one of foreground|mask|background")
        return v

    @field_validator("normalize_std")
    @classmethod
    def validate_normalize_std(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        if any(s == 0 for s in v):
            raise ValueError("NORMALIZE_STD entries must be non-zero")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
