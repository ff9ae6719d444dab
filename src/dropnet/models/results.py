"""
Simulation output records.

States are frozen snapshots; maps are exposed read-only through
``types.MappingProxyType`` so a recorded state cannot be edited afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .chip import Chip, ChannelPosition
from .fluids import Fluid, Droplet, Injection


class DropletState(Enum):
    INJECTION = 0
    NETWORK = 1
    TRAPPED = 2
    SINK = 3


class BoundaryState(Enum):
    NORMAL = 0
    WAIT_INFLOW = 1
    WAIT_OUTFLOW = 2


@dataclass(frozen=True)
class BoundarySnapshot:
    """
    Recorded droplet boundary.

    Attributes:
        channel_id: Channel holding the boundary.
        position: Relative position in the channel.
        volume_towards_0: True when the droplet body lies towards node0.
        flow_rate: Boundary flow rate [m^3/s]; > 0 moves away from the
            droplet body, < 0 towards it.
        state: Boundary wait state.
    """
    channel_id: int
    position: float
    volume_towards_0: bool
    flow_rate: float
    state: BoundaryState

    @property
    def channel_position(self) -> ChannelPosition:
        return ChannelPosition(self.channel_id, self.position)


@dataclass(frozen=True)
class DropletPosition:
    """Topology of one droplet at one instant."""
    droplet_id: int
    state: DropletState
    boundaries: Tuple[BoundarySnapshot, ...] = ()
    channel_ids: Tuple[int, ...] = ()  # fully occupied channels

    def occupied_channel_ids(self) -> Tuple[int, ...]:
        ids = {b.channel_id for b in self.boundaries} | set(self.channel_ids)
        return tuple(sorted(ids))


@dataclass(frozen=True)
class State:
    """
    Immutable system snapshot.

    Attributes:
        state_id: Sequential id over the whole run.
        time: Simulated time [s].
        pressures: node id -> pressure [Pa].
        flow_rates: channel or pump id -> flow rate [m^3/s].
        droplet_positions: droplet id -> DropletPosition.
    """
    state_id: int
    time: float
    pressures: Mapping[int, float]
    flow_rates: Mapping[int, float]
    droplet_positions: Mapping[int, DropletPosition]

    def __post_init__(self):
        object.__setattr__(self, 'pressures', MappingProxyType(dict(self.pressures)))
        object.__setattr__(self, 'flow_rates', MappingProxyType(dict(self.flow_rates)))
        object.__setattr__(self, 'droplet_positions', MappingProxyType(dict(self.droplet_positions)))

    def pressure(self, node_id: int) -> float:
        return self.pressures[node_id]

    def pressure_drop(self, node0: int, node1: int) -> float:
        return self.pressures[node0] - self.pressures[node1]

    def flow_rate(self, element_id: int) -> float:
        return self.flow_rates[element_id]

    def droplet_position(self, droplet_id: int) -> DropletPosition:
        return self.droplet_positions[droplet_id]


@dataclass(frozen=True)
class PathStep:
    """One entry of a droplet path: where the droplet was from ``time`` on."""
    time: float
    positions: Tuple[ChannelPosition, ...]
    channel_ids: Tuple[int, ...]


@dataclass
class SimulationResult:
    """
    Complete output of one simulate call.

    The first eight fields form the interchange record. ``termination_reason``
    and ``failure`` describe how the run ended; a run that failed still
    carries every state recorded before the failure.
    """
    continuous_phase_id: Optional[int]
    maximal_adaptive_time_step: float
    resistance_model: int
    chip: Chip
    fluids: Dict[int, Fluid]
    droplets: Dict[int, Droplet]
    injections: Dict[int, Injection]
    states: List[State] = field(default_factory=list)
    termination_reason: Optional[str] = None
    failure: Optional[Exception] = None

    @property
    def completed(self) -> bool:
        return self.failure is None

    def pressures(self) -> Mapping[int, float]:
        """Pressures of the first recorded state."""
        return self.states[0].pressures

    def flow_rates(self) -> Mapping[int, float]:
        """Flow rates of the first recorded state."""
        return self.states[0].flow_rates

    def droplet_path(self, droplet_id: int) -> List[PathStep]:
        """
        Positions of a droplet over time while it is inside the network.

        Consecutive states with the same set of occupied channels collapse
        into one step.
        """
        path: List[PathStep] = []
        for state in self.states:
            position = state.droplet_positions.get(droplet_id)
            if position is None or position.state != DropletState.NETWORK:
                continue
            channel_ids = position.occupied_channel_ids()
            if path and path[-1].channel_ids == channel_ids:
                continue
            path.append(PathStep(
                time=state.time,
                positions=tuple(b.channel_position for b in position.boundaries),
                channel_ids=channel_ids,
            ))
        return path
