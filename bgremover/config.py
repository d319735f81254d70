"""
Configuration loader for the on-device background-removal service.

Environment variables are centralized here so the orchestration code only
deals with model lifecycle and job sequencing.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

from .catalog import MODELS, ModelTier

DEFAULT_SAMPLE_IMAGE_URLS = [
    "https://images.unsplash.com/photo-1601233749202-95d04d5b3c00?q=80&w=2938&auto=format&fit=crop&ixlib=rb-4.0.3",
    "https://images.unsplash.com/photo-1513013156887-d2bf241c8c82?q=80&w=2970&auto=format&fit=crop&ixlib=rb-4.0.3",
    "https://images.unsplash.com/photo-1643490745745-e8ca9a3a1c90?q=80&w=2874&auto=format&fit=crop&ixlib=rb-4.0.3",
    "https://images.unsplash.com/photo-1574158622682-e40e69881006?q=80&w=2333&auto=format&fit=crop&ixlib=rb-4.0.3",
]


class Settings(BaseSettings):
    # Models
    models_dir: Path = Field(Path("models"), env="MODELS_DIR")
    default_model_id: str = Field("briaai/RMBG-1.4", env="DEFAULT_MODEL_ID")
    force_cpu: bool = Field(False, env="FORCE_CPU")

    # Device detection
    client_user_agent: Optional[str] = Field(None, env="CLIENT_USER_AGENT")
    redirect_url: str = Field("https://bg-mobile.addy.ie", env="REDIRECT_URL")

    # Sample images
    sample_image_urls: List[str] = Field(DEFAULT_SAMPLE_IMAGE_URLS, env="SAMPLE_IMAGE_URLS")
    request_timeout_seconds: int = Field(30, env="REQUEST_TIMEOUT_SECONDS")

    # Error handling
    legacy_fallback_matching: bool = Field(False, env="LEGACY_FALLBACK_MATCHING")

    log_level: str = Field("INFO", env="LOG_LEVEL")

    # Post-processing tunables
    edge_band_low: float = Field(0.08, env="EDGE_BAND_LOW")
    edge_band_high: float = Field(0.92, env="EDGE_BAND_HIGH")
    edge_smooth_blend: float = Field(0.55, env="EDGE_SMOOTH_BLEND")
    bilateral_sigma_color: float = Field(28.0, env="BILATERAL_SIGMA_COLOR")
    alpha_high_clip: float = Field(0.995, env="ALPHA_HIGH_CLIP")
    cc_keep_threshold: float = Field(0.05, env="CC_KEEP_THRESHOLD")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("default_model_id")
    def validate_default_model(cls, v: str) -> str:  # noqa: B902
        spec = MODELS.get(v)
        if spec is None or spec.tier is not ModelTier.COMPATIBLE:
            raise ValueError("DEFAULT_MODEL_ID must name a broadly compatible model")
        return v

    @validator("edge_band_high")
    def validate_edge_band(cls, v: float, values) -> float:  # noqa: B902
        low = values.get("edge_band_low", 0.0)
        if not 0.0 <= v <= 1.0 or v <= low:
            raise ValueError("EDGE_BAND_HIGH must be in [0, 1] and above EDGE_BAND_LOW")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
