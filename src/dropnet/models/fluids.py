"""
Fluid, droplet and injection records.

Fluids are immutable: mixing two fluids creates a third one that remembers
every fluid id it has absorbed. Droplets are mutable because merges grow
their volume and merged-id history during a run.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, List

from .chip import ChannelPosition
from .exceptions import ConfigurationError, GeometryError


@dataclass(frozen=True)
class Fluid:
    """
    Attributes:
        fluid_id: Unique fluid identifier.
        viscosity: Dynamic viscosity [Pa*s].
        density: Density [kg/m^3].
        concentration: Dissolved species concentration (arbitrary units).
        mixed_fluid_ids: Ids of all fluids this one was mixed from.
    """
    fluid_id: int
    viscosity: float
    density: float
    concentration: float = 0.0
    name: str = ""
    mixed_fluid_ids: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if not self.viscosity > 0:
            raise ConfigurationError(f"Fluid {self.fluid_id}: viscosity must be > 0 (got {self.viscosity})")
        if not self.density > 0:
            raise ConfigurationError(f"Fluid {self.fluid_id}: density must be > 0 (got {self.density})")
        if self.concentration < 0:
            raise ConfigurationError(
                f"Fluid {self.fluid_id}: concentration must be >= 0 (got {self.concentration})"
            )


@dataclass
class Droplet:
    """
    Droplet of a dispersed fluid.

    ``merged_droplet_ids`` only ever grows.
    """
    droplet_id: int
    volume: float
    fluid_id: int
    name: str = ""
    merged_droplet_ids: List[int] = field(default_factory=list)

    def __post_init__(self):
        if not self.volume > 0:
            raise GeometryError(f"Droplet {self.droplet_id}: volume must be > 0 (got {self.volume})")

    def absorb(self, other: "Droplet", fluid_id: int) -> None:
        """Take over the volume and history of a droplet merging into this one."""
        self.volume += other.volume
        self.fluid_id = fluid_id
        for droplet_id in [other.droplet_id] + other.merged_droplet_ids:
            if droplet_id not in self.merged_droplet_ids:
                self.merged_droplet_ids.append(droplet_id)


@dataclass(frozen=True)
class Injection:
    """Scheduled materialization of a droplet at a channel position."""
    injection_id: int
    droplet_id: int
    time: float
    position: ChannelPosition

    def __post_init__(self):
        if self.time < 0:
            raise ConfigurationError(f"Injection {self.injection_id}: time must be >= 0 (got {self.time})")
