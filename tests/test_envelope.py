"""Tests for the target envelope."""

from __future__ import annotations

import pytest

from signature_formatter.config.settings import Settings
from signature_formatter.imgproc.envelope import TargetEnvelope, cm_to_pixels


def test_cm_to_pixels_rounds_halves_up() -> None:
    assert cm_to_pixels(4, 37.7952755906) == 151
    assert cm_to_pixels(2, 37.7952755906) == 76
    assert cm_to_pixels(1, 2.5) == 3


def test_from_settings_uses_print_area() -> None:
    envelope = TargetEnvelope.from_settings(Settings())

    assert envelope.size == (151, 76)
    assert envelope.min_bytes == 10 * 1024
    assert envelope.max_bytes == 20 * 1024
    assert envelope.quality_bounds == (1, 100)


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_bytes": 20, "max_bytes": 20},
        {"min_bytes": 30, "max_bytes": 20},
        {"pixel_width": 0},
        {"initial_quality": 101},
        {"quality_step": 0},
        {"max_scale_factor": 1.05},
    ],
)
def test_invalid_envelopes_are_rejected(overrides: dict) -> None:
    params = {"pixel_width": 10, "pixel_height": 5, "min_bytes": 10, "max_bytes": 20}
    params.update(overrides)

    with pytest.raises(ValueError):
        TargetEnvelope(**params)


def test_scale_factors_progress_by_tenths() -> None:
    envelope = TargetEnvelope(pixel_width=151, pixel_height=76, min_bytes=1, max_bytes=2)

    assert [envelope.scale_factor_for(i) for i in range(4)] == [1.1, 1.2, 1.3, 1.4]
    assert envelope.scale_factor_for(9) == 2.0
    assert envelope.scaled_size(1.1) == (166, 84)


def test_contains_is_inclusive() -> None:
    envelope = TargetEnvelope(pixel_width=1, pixel_height=1, min_bytes=10, max_bytes=20)

    assert envelope.contains(10)
    assert envelope.contains(20)
    assert not envelope.contains(9)
    assert not envelope.contains(21)
