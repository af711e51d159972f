from pydantic_settings import BaseSettings
from dataclasses import dataclass
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Output resolution. Widths above PHYSICAL_WIDTH_THRESHOLD are physical pixels.
    target_width: int = 750
    target_height: int = 1624
    base_width: float = 375
    dpr: float = 0  # 0 = derive from target/base width

    root_selector: str = "auto"
    output_dir: str = "output"
    debug: bool = False
    headless: bool = True
    bake_rotation: bool = True
    id_mode: str = "uuid"  # "uuid" or "stable"

    # Timeouts
    navigation_timeout_ms: int = 30000  # milliseconds
    load_settle_timeout_ms: int = 5000
    font_ready_timeout_ms: int = 3000
    settle_delay_ms: int = 50
    disable_load_fallback: bool = False

    class Config:
        # Look for .env in the repo root (two levels up from backend/htmlbake/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        env_prefix = "BAKE_"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

PHYSICAL_WIDTH_THRESHOLD = 500
DEFAULT_LOGICAL_DPR = 2.0


@dataclass(frozen=True)
class Resolution:
    """Viewport and canvas geometry derived from Settings."""
    mode: str                  # "physical" or "logical"
    target_width: int
    target_height: int
    dpr: float
    logical_width: int         # viewport, integer css px
    logical_height: int
    logical_width_exact: float
    logical_height_exact: float

    @property
    def canvas_width(self) -> int:
        return max(1, round(self.logical_width * self.dpr))

    @property
    def canvas_height(self) -> int:
        return max(1, round(self.logical_height * self.dpr))

    def viewport(self) -> dict:
        return {"width": self.logical_width, "height": self.logical_height}


def _positive(value, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if parsed != parsed or parsed <= 0:
        return fallback
    return parsed


def build_resolution(settings: Settings) -> Resolution:
    """
    Derive viewport + pixel ratio.
    750x1624 target with base 375 → physical mode, dpr 2.0, viewport 375x812.
    A target narrower than 500px is taken as logical size with the explicit dpr (default 2.0).
    """
    target_width = round(_positive(settings.target_width, 750))
    target_height = round(_positive(settings.target_height, 1624))
    base_width = _positive(settings.base_width, 375)

    if target_width > PHYSICAL_WIDTH_THRESHOLD:
        mode = "physical"
        dpr = round(target_width / base_width, 2)
        logical_width = base_width
        logical_height = target_height / dpr
    else:
        mode = "logical"
        dpr = round(_positive(settings.dpr, DEFAULT_LOGICAL_DPR), 2)
        logical_width = target_width
        logical_height = target_height

    return Resolution(
        mode=mode,
        target_width=target_width,
        target_height=target_height,
        dpr=dpr,
        logical_width=max(1, round(logical_width)),
        logical_height=max(1, round(logical_height)),
        logical_width_exact=round(logical_width, 2),
        logical_height_exact=round(logical_height, 2),
    )
