"""
Rectangular-duct Hagen-Poiseuille resistance.

Physics:
    a = 12 / (1 - 192 h tanh(pi w / 2h) / (pi^5 w))
    R_channel = a mu L / (w h^3)
    R_droplet = 3 (V / (w h)) a mu / (w h^3)

The correction factor ``a`` tends to 12 for wide shallow ducts. Its
denominator stays above 1 - 96/pi^4 > 0 for every positive aspect ratio,
so the resistance is finite and strictly positive.
"""

import math

from .base import ResistanceModel
from ...models.chip import Channel
from ...models.exceptions import ConfigurationError

DROPLET_RESISTANCE_FACTOR = 3.0


def shape_factor(width: float, height: float) -> float:
    """Series correction ``a`` for a w x h rectangular cross-section."""
    ratio = 192.0 * height * math.tanh(math.pi * width / (2.0 * height)) / (math.pi ** 5 * width)
    return 12.0 / (1.0 - ratio)


class RectangularResistanceModel(ResistanceModel):
    """1D rectangular-duct model driven by the continuous-phase viscosity."""

    selector = 0

    def __init__(self, continuous_viscosity: float):
        if not continuous_viscosity > 0:
            raise ConfigurationError(
                f"Continuous phase viscosity must be > 0 (got {continuous_viscosity})")
        self.continuous_viscosity = continuous_viscosity

    def _per_length(self, channel: Channel) -> float:
        a = shape_factor(channel.width, channel.height)
        return a * self.continuous_viscosity / (channel.width * channel.height ** 3)

    def channel_resistance(self, channel: Channel) -> float:
        return channel.length * self._per_length(channel)

    def droplet_resistance(self, channel: Channel, droplet_volume: float) -> float:
        droplet_length = droplet_volume / channel.area
        return DROPLET_RESISTANCE_FACTOR * droplet_length * self._per_length(channel)
