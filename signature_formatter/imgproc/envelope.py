"""Pixel and byte-size window a formatted signature must fit into."""

from __future__ import annotations

import math
from dataclasses import dataclass

from signature_formatter.config.settings import Settings

MIN_QUALITY = 1
MAX_QUALITY = 100


def cm_to_pixels(cm: float, pixels_per_cm: float) -> int:
    """Convert a physical length to whole pixels, rounding halves up."""

    return int(math.floor(cm * pixels_per_cm + 0.5))


@dataclass(frozen=True, slots=True)
class TargetEnvelope:
    """Immutable acceptance window for the encoder."""

    pixel_width: int
    pixel_height: int
    min_bytes: int
    max_bytes: int
    initial_quality: int = 85
    quality_step: int = 5
    quality_bounds: tuple[int, int] = (MIN_QUALITY, MAX_QUALITY)
    initial_scale_factor: float = 1.1
    scale_step: float = 0.1
    max_scale_factor: float = 4.0

    def __post_init__(self) -> None:
        if self.pixel_width < 1 or self.pixel_height < 1:
            raise ValueError("Target pixel dimensions must be positive.")
        if self.min_bytes >= self.max_bytes:
            raise ValueError(
                f"min_bytes ({self.min_bytes}) must be lower than max_bytes ({self.max_bytes})."
            )
        low, high = self.quality_bounds
        if not low <= self.initial_quality <= high:
            raise ValueError(f"initial_quality must lie within {self.quality_bounds}.")
        if self.quality_step < 1:
            raise ValueError("quality_step must be at least 1.")
        if self.initial_scale_factor < 1.0 or self.scale_step <= 0:
            raise ValueError("Upscaling must start at 1.0 or above and grow each pass.")
        if self.max_scale_factor < self.initial_scale_factor:
            raise ValueError("max_scale_factor must not be lower than initial_scale_factor.")

    @classmethod
    def from_physical(
        cls,
        width_cm: float,
        height_cm: float,
        pixels_per_cm: float,
        **kwargs: object,
    ) -> TargetEnvelope:
        """Build an envelope whose pixel size derives from a print area."""

        return cls(
            pixel_width=cm_to_pixels(width_cm, pixels_per_cm),
            pixel_height=cm_to_pixels(height_cm, pixels_per_cm),
            **kwargs,  # type: ignore[arg-type]
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> TargetEnvelope:
        return cls.from_physical(
            settings.signature_width_cm,
            settings.signature_height_cm,
            settings.pixels_per_cm,
            min_bytes=settings.min_bytes,
            max_bytes=settings.max_bytes,
            initial_quality=settings.initial_quality,
            quality_step=settings.quality_step,
            max_scale_factor=settings.max_scale_factor,
        )

    @property
    def size(self) -> tuple[int, int]:
        return self.pixel_width, self.pixel_height

    def contains(self, byte_size: int) -> bool:
        """Return True when ``byte_size`` lies inside ``[min_bytes, max_bytes]``."""

        return self.min_bytes <= byte_size <= self.max_bytes

    def scaled_size(self, scale_factor: float) -> tuple[int, int]:
        """Canvas size for the upscale-to-envelope mode."""

        return (
            int(math.floor(self.pixel_width * scale_factor + 0.5)),
            int(math.floor(self.pixel_height * scale_factor + 0.5)),
        )

    def scale_factor_for(self, step_index: int) -> float:
        """Scale factor of the ``step_index``-th upscale pass (0-based)."""

        return round(self.initial_scale_factor + step_index * self.scale_step, 4)
