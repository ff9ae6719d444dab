"""
Chip data models.

Channels and pumps are frozen dataclasses created during chip construction
and never mutated afterwards. Node ids are plain integers; a node exists as
soon as a channel, pump, sink or ground references it. Negative ids such as
-1 are ordinary ids and are conventionally used for the outside world.

Geometry uses SI units:
    - width, height, length: m
    - flow rate: m^3/s
    - pressure: Pa
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Set, List

from .exceptions import GeometryError, TopologyError


class ChannelType(Enum):
    """Role of a channel in droplet routing."""
    NORMAL = 0
    BYPASS = 1
    CLOGGABLE = 2


@dataclass(frozen=True)
class ChannelPosition:
    """
    Point inside a channel.

    Attributes:
        channel_id: Channel the point lies in.
        position: Relative coordinate, 0.0 at node0 and 1.0 at node1.
    """
    channel_id: int
    position: float

    def __post_init__(self):
        if not (0.0 <= self.position <= 1.0):
            raise GeometryError(
                f"Channel position must be in [0, 1] (got {self.position} in channel {self.channel_id})"
            )


@dataclass(frozen=True)
class Channel:
    """
    Rectangular channel between node0 and node1.

    Positive flow runs from node0 to node1.
    """
    channel_id: int
    node0: int
    node1: int
    width: float
    height: float
    length: float
    channel_type: ChannelType = ChannelType.NORMAL
    name: str = ""

    def __post_init__(self):
        """Validate physical constraints."""
        for label, value in (("width", self.width), ("height", self.height), ("length", self.length)):
            if not value > 0:
                raise GeometryError(f"Channel {self.channel_id}: {label} must be > 0 (got {value})")
        if self.node0 == self.node1:
            raise TopologyError(f"Channel {self.channel_id}: both ends connect to node {self.node0}")

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def volume(self) -> float:
        return self.width * self.height * self.length

    def other_node(self, node_id: int) -> int:
        if node_id == self.node0:
            return self.node1
        if node_id == self.node1:
            return self.node0
        raise TopologyError(f"Node {node_id} is not an end of channel {self.channel_id}")

    def end_position(self, node_id: int) -> float:
        """Relative position of the given end node (0.0 for node0, 1.0 for node1)."""
        if node_id == self.node0:
            return 0.0
        if node_id == self.node1:
            return 1.0
        raise TopologyError(f"Node {node_id} is not an end of channel {self.channel_id}")


@dataclass(frozen=True)
class FlowRatePump:
    """Fixed flow rate pushed from node0 into node1 [m^3/s]."""
    pump_id: int
    node0: int
    node1: int
    flow_rate: float
    name: str = ""

    def __post_init__(self):
        if self.node0 == self.node1:
            raise TopologyError(f"Flow rate pump {self.pump_id}: both ends connect to node {self.node0}")


@dataclass(frozen=True)
class PressurePump:
    """Fixed pressure rise from node0 to node1: p(node1) - p(node0) = pressure [Pa]."""
    pump_id: int
    node0: int
    node1: int
    pressure: float
    name: str = ""

    def __post_init__(self):
        if self.node0 == self.node1:
            raise TopologyError(f"Pressure pump {self.pump_id}: both ends connect to node {self.node0}")


@dataclass
class Chip:
    """
    Aggregate of channels, pumps, sinks and grounds.

    Owned by the construction phase; the engine only reads it.
    """
    name: str = ""
    channels: Dict[int, Channel] = field(default_factory=dict)
    flow_rate_pumps: Dict[int, FlowRatePump] = field(default_factory=dict)
    pressure_pumps: Dict[int, PressurePump] = field(default_factory=dict)
    sinks: Set[int] = field(default_factory=set)
    grounds: Set[int] = field(default_factory=set)

    def next_element_id(self) -> int:
        """Channels and pumps share one id sequence."""
        return len(self.channels) + len(self.flow_rate_pumps) + len(self.pressure_pumps)

    def nodes(self) -> List[int]:
        node_ids = set(self.sinks) | set(self.grounds)
        for element in self.elements():
            node_ids.add(element.node0)
            node_ids.add(element.node1)
        return sorted(node_ids)

    def elements(self):
        """All channels and pumps, ordered by id."""
        merged = {}
        merged.update(self.channels)
        merged.update(self.flow_rate_pumps)
        merged.update(self.pressure_pumps)
        return [merged[key] for key in sorted(merged)]
