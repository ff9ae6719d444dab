"""
Resistance model interface.

A resistance model maps channel geometry to a hydraulic resistance and
gives the extra resistance a droplet adds to the channel it sits in.

Units:
    - Resistance: Pa*s/m^3
    - Volume: m^3
"""

from ...models.chip import Channel


class ResistanceModel:
    """Base class; subclasses implement both resistance terms."""

    #: numeric selector stored in simulation results
    selector = None

    def channel_resistance(self, channel: Channel) -> float:
        raise NotImplementedError()

    def droplet_resistance(self, channel: Channel, droplet_volume: float) -> float:
        """
        Resistance added by ``droplet_volume`` of droplet fluid inside ``channel``.
        """
        raise NotImplementedError()
