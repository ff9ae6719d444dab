"""
Structural view of a chip: adjacency queries and the validity report.

Connectivity checks use BFS over an undirected adjacency list, the same way
the network solver decomposes a network into components.
"""

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ...utils.logger import Logger
from ...models.chip import Chip, Channel, ChannelType
from ...models.exceptions import (
    ChannelNotFoundError,
    ConfigurationError,
    GeometryError,
    TopologyError,
)


@dataclass(frozen=True)
class Violation:
    """One problem found by the validity check."""
    kind: str
    message: str
    element_id: Optional[int] = None


_ERROR_KINDS = {
    "TopologyError": TopologyError,
    "GeometryError": GeometryError,
    "ConfigurationError": ConfigurationError,
}


@dataclass(frozen=True)
class ValidityReport:
    violations: Tuple[Violation, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def kinds(self) -> Set[str]:
        return {v.kind for v in self.violations}

    def messages(self) -> List[str]:
        return [v.message for v in self.violations]

    def first_error(self) -> Optional[Exception]:
        """Exception instance for the first violation, None if the chip is valid."""
        if not self.violations:
            return None
        first = self.violations[0]
        return _ERROR_KINDS[first.kind](first.message)


class ChipGraph:
    """Read-only structural queries over a chip."""

    def __init__(self, chip: Chip):
        self.chip = chip
        self._channels_at_node: Dict[int, List[int]] = defaultdict(list)
        for channel_id in sorted(chip.channels):
            channel = chip.channels[channel_id]
            self._channels_at_node[channel.node0].append(channel_id)
            self._channels_at_node[channel.node1].append(channel_id)

    # -------------------------------------------------------------------------
    # Structural queries
    # -------------------------------------------------------------------------

    def nodes(self) -> List[int]:
        return self.chip.nodes()

    def channel(self, channel_id: int) -> Channel:
        try:
            return self.chip.channels[channel_id]
        except KeyError:
            raise ChannelNotFoundError(f"Channel {channel_id} not found in chip.")

    def channels(self) -> List[Channel]:
        return [self.chip.channels[cid] for cid in sorted(self.chip.channels)]

    def channels_at_node(self, node_id: int) -> List[Channel]:
        """Channels touching a node, ordered by channel id."""
        return [self.chip.channels[cid] for cid in self._channels_at_node.get(node_id, [])]

    def is_sink(self, node_id: int) -> bool:
        return node_id in self.chip.sinks

    def is_ground(self, node_id: int) -> bool:
        return node_id in self.chip.grounds

    def ground_nodes(self) -> List[int]:
        return sorted(self.chip.grounds)

    def reachable_nodes(self, start: Iterable[int], include_cloggable: bool = False,
                        normal_only: bool = False, through_pressure_pumps: bool = False) -> Set[int]:
        """BFS over channels (and optionally pressure pumps) from the start nodes."""
        adjacency = defaultdict(set)
        for channel in self.chip.channels.values():
            if normal_only and channel.channel_type != ChannelType.NORMAL:
                continue
            if not include_cloggable and channel.channel_type == ChannelType.CLOGGABLE:
                continue
            adjacency[channel.node0].add(channel.node1)
            adjacency[channel.node1].add(channel.node0)
        if through_pressure_pumps:
            for pump in self.chip.pressure_pumps.values():
                adjacency[pump.node0].add(pump.node1)
                adjacency[pump.node1].add(pump.node0)

        visited = set(start)
        queue = deque(sorted(visited))
        while queue:
            current = queue.popleft()
            for neighbor in sorted(adjacency[current]):
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)
        return visited

    # -------------------------------------------------------------------------
    # Validity
    # -------------------------------------------------------------------------

    def check_validity(self, fluids=None, droplets=None, injections=None,
                       continuous_phase_id=None) -> ValidityReport:
        """
        Collect every structural problem of the chip and its droplet set.

        Does not mutate anything; calling it twice returns equal reports.
        """
        Logger.log("start check_validity()")
        violations: List[Violation] = []
        fluids = fluids or {}
        droplets = droplets or {}
        injections = injections or {}

        nodes = self.nodes()
        if not nodes:
            violations.append(Violation("TopologyError", "Chip has no nodes."))

        for channel in self.channels():
            for label, value in (("width", channel.width), ("height", channel.height),
                                 ("length", channel.length)):
                if not value > 0:
                    violations.append(Violation(
                        "GeometryError", f"Channel {channel.channel_id} has non-positive {label}.",
                        channel.channel_id))

        if nodes and not self.chip.grounds:
            violations.append(Violation("TopologyError", "Ground node not defined."))
        elif nodes:
            connected = self.reachable_nodes(self.chip.grounds, through_pressure_pumps=True)
            for node_id in nodes:
                if node_id not in connected:
                    violations.append(Violation(
                        "TopologyError", f"Node {node_id} not connected to ground.", node_id))
            for channel in self.channels():
                if channel.node0 not in connected or channel.node1 not in connected:
                    violations.append(Violation(
                        "TopologyError", f"Channel {channel.channel_id} not connected to ground.",
                        channel.channel_id))

        violations.extend(self._pump_conflicts())

        if injections and not self.chip.sinks:
            violations.append(Violation("TopologyError", "Droplets are injected but no sink is defined."))

        for injection_id in sorted(injections):
            injection = injections[injection_id]
            channel = self.chip.channels.get(injection.position.channel_id)
            if channel is None:
                violations.append(Violation(
                    "TopologyError",
                    f"Injection {injection_id} references unknown channel {injection.position.channel_id}.",
                    injection_id))
                continue
            if channel.channel_type != ChannelType.NORMAL:
                violations.append(Violation(
                    "TopologyError",
                    f"Injection {injection_id} targets non-NORMAL channel {channel.channel_id}.",
                    injection_id))
            elif self.chip.sinks:
                reachable = self.reachable_nodes([channel.node0, channel.node1], normal_only=True)
                if not reachable & self.chip.sinks:
                    violations.append(Violation(
                        "TopologyError",
                        f"No sink reachable from injection channel {channel.channel_id}.",
                        injection_id))

        if continuous_phase_id is None:
            if droplets:
                violations.append(Violation("ConfigurationError", "Continuous phase not defined."))
        elif continuous_phase_id not in fluids:
            violations.append(Violation(
                "ConfigurationError", f"Continuous phase fluid {continuous_phase_id} not found."))

        for droplet_id in sorted(droplets):
            fluid_id = droplets[droplet_id].fluid_id
            if fluid_id not in fluids:
                violations.append(Violation(
                    "ConfigurationError", f"Droplet {droplet_id} uses unknown fluid {fluid_id}.",
                    droplet_id))

        report = ValidityReport(tuple(violations))
        for violation in report.violations:
            Logger.log(f"{violation.kind}: {violation.message}", Logger.LogPriority.WARNING)
        Logger.log(f"end check_validity() -> valid={report.is_valid}")
        return report

    def _pump_conflicts(self) -> List[Violation]:
        """Pressure pumps that make the nodal system singular by construction."""
        violations = []
        by_pair = defaultdict(list)
        for pump in self.chip.pressure_pumps.values():
            by_pair[frozenset((pump.node0, pump.node1))].append(pump.pump_id)
            if pump.node0 in self.chip.grounds and pump.node1 in self.chip.grounds:
                violations.append(Violation(
                    "TopologyError",
                    f"Pressure pump {pump.pump_id} connects two ground nodes.", pump.pump_id))
        for pair, pump_ids in sorted(by_pair.items(), key=lambda item: min(item[1])):
            if len(pump_ids) > 1:
                violations.append(Violation(
                    "TopologyError",
                    f"Pressure pumps {sorted(pump_ids)} drive the same node pair {sorted(pair)}.",
                    min(pump_ids)))
        return violations
