"""
Geometry-only resistance (selector 1), handy for checking the solver with easy numbers.

    R_channel = w h L
    R_droplet = 3 w h V
"""

from .base import ResistanceModel
from ...models.chip import Channel


class VolumeResistanceModel(ResistanceModel):
    selector = 1

    def channel_resistance(self, channel: Channel) -> float:
        return channel.volume

    def droplet_resistance(self, channel: Channel, droplet_volume: float) -> float:
        return 3.0 * channel.area * droplet_volume
