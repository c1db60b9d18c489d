"""
Configuration loader for the U2-Net background-removal library.

Environment variables are centralized here to keep the pipeline focused on
image work and to make backend/model selection explicit.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GRAPHICS_BACKENDS = {"pillow", "opencv"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Model + inference
    u2net_model_path: Optional[Path] = Field(None)
    u2net_input_size: int = Field(320, gt=0)
    inference_device: Optional[str] = Field(None)

    # Graphics
    graphics_backend: str = Field("pillow")
    # None lets the pipeline decide from the backend's buffer handling.
    orientation_correction: Optional[bool] = Field(None)

    log_level: str = Field("INFO")

    # Debugging
    debug: bool = Field(False)
    debug_output_dir: Path = Field(Path("/tmp/u2net_cutout_debug"))

    @field_validator("graphics_backend")
    @classmethod
    def validate_graphics_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in GRAPHICS_BACKENDS:
            raise ValueError("GRAPHICS_BACKEND must be one of pillow|opencv")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
