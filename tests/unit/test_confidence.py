"""Unit tests for confidence scoring helpers."""

from __future__ import annotations

import math

import pytest

from artist_resolver.utils.confidence import (
    ConfidenceLevel,
    clamp_confidence,
    confidence_to_level,
    weighted_confidence,
)


class TestClampConfidence:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(-0.5, 0.0), (0.0, 0.0), (0.42, 0.42), (1.0, 1.0), (3.0, 1.0)],
    )
    def test_clamps_to_unit_range(self, value: float, expected: float) -> None:
        assert clamp_confidence(value) == expected

    def test_nan_becomes_zero(self) -> None:
        assert clamp_confidence(math.nan) == 0.0


class TestWeightedConfidence:
    def test_multiplies_similarity_by_weight(self) -> None:
        assert weighted_confidence(0.9, 0.8) == pytest.approx(0.72)

    def test_out_of_range_inputs_are_clamped(self) -> None:
        assert weighted_confidence(1.5, 1.2) == 1.0
        assert weighted_confidence(-1.0, 0.9) == 0.0


class TestConfidenceToLevel:
    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (0.1, ConfidenceLevel.VERY_LOW),
            (0.2, ConfidenceLevel.LOW),
            (0.5, ConfidenceLevel.MEDIUM),
            (0.7, ConfidenceLevel.HIGH),
            (0.8, ConfidenceLevel.VERY_HIGH),
            (1.0, ConfidenceLevel.VERY_HIGH),
        ],
    )
    def test_boundaries(self, score: float, level: ConfidenceLevel) -> None:
        assert confidence_to_level(score) is level
