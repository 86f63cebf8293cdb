"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. Processing constants are
hardcoded for consistency, and the hand-tuned face heuristics live in
HeuristicConfig so they can be tuned and tested independently.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


# ============================================================
# FACE HEURISTICS
# ============================================================

@dataclass(frozen=True)
class SkinToneBand:
    """
    One rule-based skin tone band.

    Every populated field is a conjunctive condition. Channel minimums and
    gaps are strict (value > bound); `green_at_least_blue` is the only
    non-strict ordering.
    """

    name: str
    min_red: int
    min_green: int
    min_blue: int
    min_channel_spread: Optional[int] = None  # max(r,g,b) - min(r,g,b) > n
    min_red_green_gap: Optional[int] = None   # |r - g| > n
    min_red_blue_gap: Optional[int] = None    # r - b > n
    min_green_blue_gap: Optional[int] = None  # g - b > n
    red_over_green: bool = False
    red_over_blue: bool = False
    green_over_blue: bool = False
    green_at_least_blue: bool = False


# Four independent bands covering disjoint skin tone ranges. Do not merge.
SKIN_TONE_BANDS: tuple[SkinToneBand, ...] = (
    SkinToneBand(
        name="light",
        min_red=95, min_green=40, min_blue=20,
        min_channel_spread=15,
        min_red_green_gap=15,
        red_over_green=True,
        red_over_blue=True,
    ),
    SkinToneBand(
        name="medium",
        min_red=80, min_green=50, min_blue=30,
        min_red_green_gap=10,
        red_over_green=True,
        green_over_blue=True,
    ),
    SkinToneBand(
        name="dark",
        min_red=50, min_green=30, min_blue=15,
        min_red_blue_gap=15,
        red_over_green=True,
        green_at_least_blue=True,
    ),
    SkinToneBand(
        name="medium_dark",
        min_red=60, min_green=40, min_blue=20,
        min_red_blue_gap=10,
        min_green_blue_gap=5,
        red_over_blue=True,
        green_over_blue=True,
    ),
)


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the multi-scale region scorer (sum to 1.0)."""

    skin_density: float = 0.40
    vertical_position: float = 0.25
    color_variation: float = 0.15
    size: float = 0.10
    aspect_ratio: float = 0.10


@dataclass(frozen=True)
class HeuristicConfig:
    """Tunable parameters of the heuristic face detector."""

    skin_tone_bands: tuple[SkinToneBand, ...] = SKIN_TONE_BANDS
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)

    # Candidate regions as (x, y, width, height) fractions of the frame
    skin_regions: tuple[tuple[float, float, float, float], ...] = (
        (0.10, 0.10, 0.40, 0.40),  # Top-left
        (0.50, 0.10, 0.40, 0.40),  # Top-right
        (0.20, 0.15, 0.60, 0.60),  # Center-large
        (0.25, 0.20, 0.50, 0.50),  # Center-medium
        (0.30, 0.25, 0.40, 0.40),  # Center-small
    )
    min_skin_ratio: float = 0.12

    # Motion tracking around the last accepted box
    motion_search_radius: int = 25
    motion_search_step: int = 8
    min_motion_density: float = 0.10

    # Multi-scale region scan
    scan_scales: tuple[float, ...] = (0.3, 0.4, 0.5, 0.6, 0.7)
    min_scan_size: int = 35
    max_scan_size: int = 80
    min_scan_step: int = 8
    scan_step_ratio: float = 0.2
    min_region_score: float = 0.15

    # Region scorer shape preferences
    preferred_center_y_ratio: float = 0.35
    preferred_face_size: int = 50
    preferred_aspect_ratio: float = 0.8
    variation_normalizer: float = 40.0

    # Center fallback covers this fraction of each frame dimension
    center_fallback_ratio: float = 0.5


DEFAULT_HEURISTICS = HeuristicConfig()


# ============================================================
# SETTINGS
# ============================================================

class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All processing settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "facefilter-studio"
    debug: bool = False
    log_level: str = "INFO"

    # Frame geometry
    frame_width: int = 160
    frame_height: int = 120

    # Valid face size bounds (pixels, both dimensions)
    min_face_size: int = 30
    max_face_size: int = 100

    # External ML face detector (optional)
    face_detector_backend: Literal["none", "mediapipe", "http"] = "none"
    face_detector_url: Optional[str] = None
    ml_detector_timeout_seconds: float = 5.0
    ml_confidence_threshold: float = 0.5

    # Camera
    camera_enabled: bool = False
    camera_index: int = 0

    # Security - API authentication for the studio control endpoints
    facefilter_api_key: Optional[str] = None

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def history_length(self) -> int:
        return 5

    @property
    def tracking_interval_seconds(self) -> float:
        return 3.0

    @property
    def default_threshold(self) -> int:
        return 128

    @property
    def pixelate_block_size(self) -> int:
        return 12

    @property
    def default_blur_radius(self) -> int:
        return 8

    @property
    def face_blur_radius(self) -> int:
        return 25  # Heavier than the generic default, face region only

    @property
    def brightness_factor(self) -> float:
        return 1.2

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
