"""
Tests for the hydraulic resistance models.
"""

import math

import pytest

from dropnet.core.resistance_models import (
    RectangularResistanceModel,
    VolumeResistanceModel,
    create_resistance_model,
    shape_factor,
)
from dropnet.models import Channel, ConfigurationError

from conftest import WIDTH, HEIGHT, LENGTH


def make_channel(width=WIDTH, height=HEIGHT, length=LENGTH):
    return Channel(channel_id=0, node0=0, node1=1, width=width, height=height, length=length)


class TestShapeFactor:
    """Test the rectangular-duct correction factor."""

    def test_reference_cross_section(self):
        expected = 12.0 / (1.0 - 192.0 * 30e-6 * math.tanh(math.pi * 100e-6 / 60e-6) / (math.pi ** 5 * 100e-6))
        assert shape_factor(WIDTH, HEIGHT) == pytest.approx(expected)
        assert shape_factor(WIDTH, HEIGHT) == pytest.approx(14.782, rel=1e-3)

    def test_wide_shallow_duct_tends_to_twelve(self):
        assert shape_factor(1.0, 1e-6) == pytest.approx(12.0, rel=1e-4)

    def test_square_duct_is_finite(self):
        a = shape_factor(1.0, 1.0)
        assert math.isfinite(a)
        assert a > 12.0


class TestRectangularModel:
    """Test R = a mu L / (w h^3) and the droplet term."""

    def test_channel_resistance(self):
        model = RectangularResistanceModel(1e-3)
        assert model.channel_resistance(make_channel()) == pytest.approx(5.4749e12, rel=1e-4)

    def test_resistance_scales_with_length_and_viscosity(self):
        base = RectangularResistanceModel(1e-3).channel_resistance(make_channel())
        longer = RectangularResistanceModel(1e-3).channel_resistance(make_channel(length=2 * LENGTH))
        thicker = RectangularResistanceModel(2e-3).channel_resistance(make_channel())
        assert longer == pytest.approx(2 * base)
        assert thicker == pytest.approx(2 * base)

    def test_droplet_resistance(self):
        model = RectangularResistanceModel(1e-3)
        channel = make_channel()
        volume = 1.5 * WIDTH * WIDTH * HEIGHT
        per_length = model.channel_resistance(channel) / LENGTH
        expected = 3.0 * (volume / (WIDTH * HEIGHT)) * per_length
        assert model.droplet_resistance(channel, volume) == pytest.approx(expected)

    def test_rejects_non_positive_viscosity(self):
        with pytest.raises(ConfigurationError):
            RectangularResistanceModel(0.0)


class TestVolumeModel:
    """Test the geometry-only model."""

    def test_channel_resistance_is_volume(self):
        model = VolumeResistanceModel()
        channel = make_channel(width=1.0, height=1.0, length=5.0)
        assert model.channel_resistance(channel) == pytest.approx(5.0)

    def test_droplet_resistance(self):
        model = VolumeResistanceModel()
        channel = make_channel(width=2.0, height=1.0, length=5.0)
        assert model.droplet_resistance(channel, 0.5) == pytest.approx(3.0 * 2.0 * 0.5)


class TestFactory:
    """Test selector dispatch."""

    def test_selectors(self):
        assert isinstance(create_resistance_model(0, 1e-3), RectangularResistanceModel)
        assert isinstance(create_resistance_model(1), VolumeResistanceModel)

    def test_rectangular_needs_viscosity(self):
        with pytest.raises(ConfigurationError):
            create_resistance_model(0)

    def test_unknown_selector(self):
        with pytest.raises(ConfigurationError):
            create_resistance_model(5, 1e-3)
