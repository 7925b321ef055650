"""Environment-based configuration for SnapLabel."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SNAPLABEL_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SNAPLABEL_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device; CPU keeps the broadest compatibility
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    model: str = "mobilenetv2"
    models_dir: str = "models"
    allow_download: bool = False
    top_k: int = Field(default=5, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
