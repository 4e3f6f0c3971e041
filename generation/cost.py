"""
Cost model: generation settings → credits and USD.

    total_credits = ceil(base × resolution × duration × quality × upscaling)
    usd_cost      = total_credits × credit unit price

upscaling is 1.0, or 1 + UPSCALING_SURCHARGE (1.5) when enable_upscaling
is on. The multiplier tables live in config/settings.py so pricing can be
changed without a deploy.

compute_cost() is pure: the UI may call it on every settings change.
Only admission (GenerationOrchestrator.submit) records credit usage.
"""

import math
from dataclasses import dataclass
from typing import Optional

from config.settings import settings as app_settings
from generation.job import VideoSettings


@dataclass(frozen=True)
class GenerationCost:
    base_credits: int
    resolution_multiplier: float
    duration_multiplier: float
    quality_multiplier: float
    upscaling_multiplier: float
    total_credits: int
    usd_cost: float


@dataclass(frozen=True)
class PricingTable:
    base_credits: int
    resolution: dict[str, float]
    duration: dict[int, float]
    quality: dict[str, float]
    upscaling_surcharge: float
    credit_unit_price: float

    @classmethod
    def from_settings(cls, config=app_settings) -> "PricingTable":
        return cls(
            base_credits=config.BASE_CREDITS,
            resolution=dict(config.RESOLUTION_MULTIPLIERS),
            duration={int(k): v for k, v in config.DURATION_MULTIPLIERS.items()},
            quality=dict(config.QUALITY_MULTIPLIERS),
            upscaling_surcharge=config.UPSCALING_SURCHARGE,
            credit_unit_price=config.CREDIT_UNIT_PRICE,
        )


def compute_cost(video_settings: VideoSettings, pricing: Optional[PricingTable] = None) -> GenerationCost:
    """
    Price a generation. Raises ValueError for settings outside the tables;
    callers validate first (generation.validation.validate_request).
    """
    pricing = pricing or PricingTable.from_settings()

    resolution = video_settings.resolution.value if video_settings.resolution else None
    quality = video_settings.quality.value if video_settings.quality else None
    try:
        resolution_multiplier = pricing.resolution[resolution]
        duration_multiplier = pricing.duration[video_settings.duration]
        quality_multiplier = pricing.quality[quality]
    except KeyError as e:
        raise ValueError(f"No price for setting {e.args[0]!r}") from e

    upscaling_multiplier = 1.0 + pricing.upscaling_surcharge if video_settings.enable_upscaling else 1.0

    raw = (
        pricing.base_credits
        * resolution_multiplier
        * duration_multiplier
        * quality_multiplier
        * upscaling_multiplier
    )
    # round() first so float noise (10.000000000000002) doesn't cost an extra credit
    total_credits = math.ceil(round(raw, 6))

    return GenerationCost(
        base_credits=pricing.base_credits,
        resolution_multiplier=resolution_multiplier,
        duration_multiplier=duration_multiplier,
        quality_multiplier=quality_multiplier,
        upscaling_multiplier=upscaling_multiplier,
        total_credits=total_credits,
        usd_cost=round(total_credits * pricing.credit_unit_price, 4),
    )


_ESTIMATE_QUALITY = {"fast": 1.0, "balanced": 1.5, "high": 2.5}
_ESTIMATE_RESOLUTION = {"480p": 1.0, "720p": 1.3, "1080p": 2.0}


def estimate_generation_seconds(video_settings: VideoSettings) -> int:
    """Initial ETA reported right after dispatch, before the service gives one."""
    base_time = 60
    duration_factor = video_settings.duration / 10
    quality_factor = _ESTIMATE_QUALITY.get(video_settings.quality.value, 1.0)
    resolution_factor = _ESTIMATE_RESOLUTION.get(video_settings.resolution.value, 1.0)
    return math.ceil(round(base_time * duration_factor * quality_factor * resolution_factor, 6))
