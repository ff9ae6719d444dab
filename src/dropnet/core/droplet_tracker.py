"""
Droplet topology and boundary kinematics.

A droplet inside the network is described by:
    - boundaries: moving interfaces, each inside one channel
    - fully occupied channels: channels the droplet fills end to end
    - exits: sink nodes the droplet is currently draining through

Boundary kinematics (per droplet, with slip factor s):
    q_in   = total carrier flow pushing into the droplet
    q_out  = total carrier flow pulling out of the droplet
    q_avg  = (q_in + q_out) / 2
    q_b    = s * q_avg * q_channel / q_side

so the volume entering through inflow boundaries always equals the volume
leaving through outflow boundaries and exits.

Positions are channel-relative. A boundary's body side is given by
``volume_towards_0``; the node on that side is its reference node, the
other end of the channel its opposite node.
"""

import copy
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..utils.logger import Logger
from ..managers.network.chip_graph import ChipGraph
from ..models.chip import Channel, ChannelType
from ..models.exceptions import ConservationViolation, DropletNotFoundError, GeometryError
from ..models.fluids import Droplet, Fluid, Injection
from ..models.results import BoundarySnapshot, BoundaryState, DropletPosition, DropletState
from .flow_solver import FlowSolution
from .resistance_models import ResistanceModel

# positions closer than this to a channel end count as being at the node
POSITION_TOLERANCE = 1e-6


# =============================================================================
# Runtime records
# =============================================================================

@dataclass
class Boundary:
    """
    Mutable droplet boundary.

    ``flow_rate`` > 0 moves the boundary away from the droplet body,
    ``flow_rate`` < 0 moves it into the body.
    """
    boundary_id: int
    channel_id: int
    position: float
    volume_towards_0: bool
    flow_rate: float = 0.0
    state: BoundaryState = BoundaryState.NORMAL

    def reference_node(self, channel: Channel) -> int:
        return channel.node0 if self.volume_towards_0 else channel.node1

    def opposite_node(self, channel: Channel) -> int:
        return channel.node1 if self.volume_towards_0 else channel.node0

    def volume(self, channel: Channel) -> float:
        """Volume between the boundary and its reference node."""
        if self.volume_towards_0:
            return self.position * channel.volume
        return (1.0 - self.position) * channel.volume

    def oriented_flow(self, channel_flow: float) -> float:
        """Channel flow seen by the boundary, positive when pulling it outwards."""
        return channel_flow if self.volume_towards_0 else -channel_flow

    def remaining_volume(self, channel: Channel) -> float:
        """Volume the boundary has to travel before reaching a node."""
        if self.flow_rate < 0:
            return self.volume(channel)
        return channel.volume - self.volume(channel)

    def time_to_node(self, channel: Channel) -> float:
        if self.flow_rate == 0.0:
            return math.inf
        return self.remaining_volume(channel) / abs(self.flow_rate)

    def snapshot(self) -> BoundarySnapshot:
        return BoundarySnapshot(
            channel_id=self.channel_id,
            position=self.position,
            volume_towards_0=self.volume_towards_0,
            flow_rate=self.flow_rate,
            state=self.state,
        )


@dataclass
class Exit:
    """Droplet body draining into a sink node through a channel."""
    channel_id: int
    node_id: int
    flow_rate: float = 0.0
    drained_volume: float = 0.0


@dataclass
class DropletRecord:
    droplet: Droplet
    state: DropletState = DropletState.INJECTION
    boundaries: List[Boundary] = field(default_factory=list)
    channel_ids: List[int] = field(default_factory=list)
    exits: List[Exit] = field(default_factory=list)
    drained_volume: float = 0.0  # from exits already closed
    stalled_since: Optional[float] = None

    @property
    def droplet_id(self) -> int:
        return self.droplet.droplet_id

    def boundary(self, boundary_id: int) -> Optional[Boundary]:
        for b in self.boundaries:
            if b.boundary_id == boundary_id:
                return b
        return None

    def boundaries_in(self, channel_id: int) -> List[Boundary]:
        """
        Boundaries inside one channel, ordered from node0 to node1.

        At equal positions the boundary with its body towards node1 comes
        first, so a head and tail that coincide enclose no volume.
        """
        return sorted((b for b in self.boundaries if b.channel_id == channel_id),
                      key=lambda b: (b.position, b.volume_towards_0, b.boundary_id))

    def total_drained(self) -> float:
        return self.drained_volume + sum(e.drained_volume for e in self.exits)

    def is_stalled(self) -> bool:
        return (all(b.flow_rate == 0.0 for b in self.boundaries)
                and all(e.flow_rate == 0.0 for e in self.exits))

    def retire(self, state: DropletState = DropletState.SINK):
        self.state = state
        self.boundaries = []
        self.channel_ids = []
        self.drained_volume = self.total_drained()
        self.exits = []
        self.stalled_since = None

    def position(self) -> DropletPosition:
        return DropletPosition(
            droplet_id=self.droplet_id,
            state=self.state,
            boundaries=tuple(b.snapshot() for b in self.boundaries),
            channel_ids=tuple(self.channel_ids),
        )


# =============================================================================
# Tracker
# =============================================================================

class DropletTracker:
    """
    Owns every droplet of a run and mutates their topology.

    Droplets, fluids and injections are copied on construction so a chip
    builder can be simulated repeatedly with identical results.
    """

    def __init__(self, graph: ChipGraph, fluids: Dict[int, Fluid], droplets: Dict[int, Droplet],
                 injections: Dict[int, Injection], slip_factor: float = 1.28,
                 enable_merging: bool = True, volume_tolerance: float = 1e-6):
        self.graph = graph
        self.slip_factor = slip_factor
        self.enable_merging = enable_merging
        # breakup pieces at or below this fraction of the droplet volume are dropped
        self.volume_tolerance = volume_tolerance
        self.fluids: Dict[int, Fluid] = dict(fluids)
        self.injections: Dict[int, Injection] = dict(injections)
        self.records: Dict[int, DropletRecord] = {
            did: DropletRecord(droplet=copy.deepcopy(droplets[did])) for did in sorted(droplets)
        }
        self.pending_injections = {inj.droplet_id: inj for inj in self.injections.values()}
        self._next_boundary_id = 0

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def droplets(self) -> Dict[int, Droplet]:
        return {did: rec.droplet for did, rec in self.records.items()}

    def record(self, droplet_id: int) -> DropletRecord:
        try:
            return self.records[droplet_id]
        except KeyError:
            raise DropletNotFoundError(f"Droplet {droplet_id} not found.")

    def records_in_state(self, *states: DropletState) -> List[DropletRecord]:
        return [self.records[did] for did in sorted(self.records) if self.records[did].state in states]

    def has_active_droplets(self) -> bool:
        return bool(self.records_in_state(DropletState.INJECTION, DropletState.NETWORK))

    def positions(self) -> Dict[int, DropletPosition]:
        return {did: rec.position() for did, rec in self.records.items()}

    def _channel(self, channel_id: int) -> Channel:
        return self.graph.channel(channel_id)

    def _new_boundary(self, channel: Channel, position: float, volume_towards_0: bool) -> Boundary:
        boundary = Boundary(self._next_boundary_id, channel.channel_id,
                            min(1.0, max(0.0, position)), volume_towards_0)
        self._next_boundary_id += 1
        return boundary

    def volume_in_channel(self, record: DropletRecord, channel: Channel) -> float:
        """Droplet volume inside one channel, walking the boundaries from node0 to node1."""
        if channel.channel_id in record.channel_ids:
            return channel.volume
        boundaries = record.boundaries_in(channel.channel_id)
        if not boundaries:
            return 0.0
        inside = boundaries[0].volume_towards_0
        occupied, last = 0.0, 0.0
        for b in boundaries:
            if inside:
                occupied += b.position - last
            last = b.position
            inside = not inside
        if inside:
            occupied += 1.0 - last
        return occupied * channel.volume

    def channel_volumes(self, record: DropletRecord) -> Dict[int, float]:
        channel_ids = sorted({b.channel_id for b in record.boundaries} | set(record.channel_ids))
        return {cid: self.volume_in_channel(record, self._channel(cid)) for cid in channel_ids}

    def occupied_volume(self, record: DropletRecord) -> float:
        return sum(self.channel_volumes(record).values())

    def occupies_end(self, record: DropletRecord, channel: Channel, node_id: int) -> bool:
        """True when the droplet body fills the ``node_id`` end of ``channel``."""
        if channel.channel_id in record.channel_ids:
            return True
        boundaries = record.boundaries_in(channel.channel_id)
        if not boundaries:
            return False
        if node_id == channel.node0:
            return boundaries[0].volume_towards_0
        return not boundaries[-1].volume_towards_0

    def _touching_boundary(self, record: DropletRecord, node_id: int) -> Optional[Boundary]:
        """Boundary of ``record`` sitting on ``node_id`` with its body pointing away from it."""
        for b in record.boundaries:
            channel = self._channel(b.channel_id)
            if (b.opposite_node(channel) == node_id
                    and abs(b.position - channel.end_position(node_id)) <= POSITION_TOLERANCE):
                return b
        return None

    def droplet_at_node(self, node_id: int, exclude_id: int) -> Tuple[Optional[DropletRecord], Optional[Boundary]]:
        """
        Lowest-id droplet in the network whose body reaches ``node_id``.

        Returns the record and, for point contact, the boundary touching the node.
        """
        for record in self.records_in_state(DropletState.NETWORK, DropletState.TRAPPED):
            if record.droplet_id == exclude_id:
                continue
            for channel in self.graph.channels_at_node(node_id):
                if self.occupies_end(record, channel, node_id):
                    return record, None
            touching = self._touching_boundary(record, node_id)
            if touching is not None:
                return record, touching
        return None, None

    def droplet_resistances(self, model: ResistanceModel) -> Dict[int, float]:
        """Extra resistance per channel from droplets inside the network."""
        extra: Dict[int, float] = {}
        for record in self.records_in_state(DropletState.NETWORK, DropletState.TRAPPED):
            for channel_id, volume in self.channel_volumes(record).items():
                if volume <= 0.0:
                    continue
                channel = self._channel(channel_id)
                extra[channel_id] = extra.get(channel_id, 0.0) + model.droplet_resistance(channel, volume)
        return extra

    # -------------------------------------------------------------------------
    # Injection
    # -------------------------------------------------------------------------

    @staticmethod
    def injection_extent(channel: Channel, volume: float, position: float) -> Tuple[float, float]:
        """
        Tail and head positions of a droplet centred at ``position``.

        Raises:
            GeometryError: If the droplet does not fit inside the channel.
        """
        relative_length = volume / channel.volume
        if relative_length >= 1.0:
            raise GeometryError(
                f"Droplet volume {volume} does not fit into channel {channel.channel_id} "
                f"(channel volume {channel.volume})")
        tail = position - relative_length / 2.0
        head = position + relative_length / 2.0
        if tail < 0.0 or head > 1.0:
            raise GeometryError(
                f"Droplet at position {position} exceeds channel {channel.channel_id} bounds")
        return tail, head

    def inject(self, droplet_id: int) -> bool:
        """Materialize a pending droplet. Returns False if it is no longer pending."""
        record = self.record(droplet_id)
        injection = self.pending_injections.get(droplet_id)
        if injection is None or record.state != DropletState.INJECTION:
            return False
        channel = self._channel(injection.position.channel_id)
        tail, head = self.injection_extent(channel, record.droplet.volume, injection.position.position)
        record.boundaries = [
            self._new_boundary(channel, tail, False),
            self._new_boundary(channel, head, True),
        ]
        record.state = DropletState.NETWORK
        del self.pending_injections[droplet_id]
        Logger.log(f"Droplet {droplet_id} injected into channel {channel.channel_id} "
                   f"between {tail:.6f} and {head:.6f}")
        return True

    # -------------------------------------------------------------------------
    # Kinematics
    # -------------------------------------------------------------------------

    def _release_wait_state(self, boundary: Boundary, flows: FlowSolution):
        channel = self._channel(boundary.channel_id)
        q = boundary.oriented_flow(flows.channel_flow(channel.channel_id))
        if boundary.state == BoundaryState.WAIT_INFLOW:
            boundary.state = BoundaryState.NORMAL
        elif boundary.state == BoundaryState.WAIT_OUTFLOW:
            if q < 0.0 or self._outflow_channels(boundary.opposite_node(channel), channel.channel_id, flows):
                boundary.state = BoundaryState.NORMAL

    def _outflow_channels(self, node_id: int, exclude_id: int, flows: FlowSolution) -> List[Channel]:
        """NORMAL channels carrying flow away from a node, ordered by channel id."""
        out = []
        for channel in self.graph.channels_at_node(node_id):
            if channel.channel_id == exclude_id or channel.channel_type != ChannelType.NORMAL:
                continue
            q = flows.channel_flow(channel.channel_id)
            away = q if channel.node0 == node_id else -q
            if away > 0.0:
                out.append(channel)
        return out

    def update_boundaries(self, flows: FlowSolution):
        """Assign boundary flow rates for every droplet inside the network."""
        for record in self.records_in_state(DropletState.NETWORK, DropletState.TRAPPED):
            for boundary in record.boundaries:
                self._release_wait_state(boundary, flows)

            inflow, outflow, exits = [], [], []
            for boundary in record.boundaries:
                boundary.flow_rate = 0.0
                if boundary.state != BoundaryState.NORMAL:
                    continue
                q = boundary.oriented_flow(flows.channel_flow(boundary.channel_id))
                if q > 0.0:
                    outflow.append((boundary, q))
                elif q < 0.0:
                    inflow.append((boundary, q))
            for ex in record.exits:
                ex.flow_rate = 0.0
                channel = self._channel(ex.channel_id)
                q = flows.channel_flow(ex.channel_id)
                q = q if ex.node_id == channel.node1 else -q
                if q > 0.0:
                    exits.append((ex, q))

            q_in = -sum(q for _, q in inflow)
            q_out = sum(q for _, q in outflow) + sum(q for _, q in exits)

            if q_in > 0.0 and q_out > 0.0:
                if record.state == DropletState.TRAPPED:
                    Logger.log(f"Droplet {record.droplet_id} released from trap", Logger.LogPriority.INFO)
                    record.state = DropletState.NETWORK
                    record.stalled_since = None
                q_avg = 0.5 * (q_in + q_out)
                for boundary, q in outflow:
                    boundary.flow_rate = self.slip_factor * q_avg * q / q_out
                for boundary, q in inflow:
                    boundary.flow_rate = self.slip_factor * q_avg * q / q_in
                for ex, q in exits:
                    ex.flow_rate = self.slip_factor * q_avg * q / q_out
            elif inflow:
                for boundary, _ in inflow:
                    boundary.state = BoundaryState.WAIT_INFLOW
                if record.state == DropletState.NETWORK:
                    Logger.log(f"Droplet {record.droplet_id} has inflow but no outflow; boundaries wait",
                               Logger.LogPriority.WARNING)
            elif outflow and record.state == DropletState.NETWORK:
                Logger.log(f"Droplet {record.droplet_id} has outflow but no inflow; boundaries stop",
                           Logger.LogPriority.WARNING)

    def update_stall_state(self, now: float):
        for record in self.records_in_state(DropletState.NETWORK):
            if record.is_stalled():
                if record.stalled_since is None:
                    record.stalled_since = now
            else:
                record.stalled_since = None

    def advance(self, dt: float):
        """
        Move every boundary of NETWORK droplets by ``flow_rate * dt``.

        Raises:
            ConservationViolation: If a boundary would overshoot its channel.
        """
        for record in self.records_in_state(DropletState.NETWORK):
            for boundary in record.boundaries:
                if boundary.flow_rate == 0.0:
                    continue
                channel = self._channel(boundary.channel_id)
                delta = boundary.flow_rate * dt / channel.volume
                raw = boundary.position + (delta if boundary.volume_towards_0 else -delta)
                if raw < -POSITION_TOLERANCE or raw > 1.0 + POSITION_TOLERANCE:
                    raise ConservationViolation(
                        f"Boundary {boundary.boundary_id} of droplet {record.droplet_id} overshot "
                        f"channel {channel.channel_id} (position {raw:.9f})")
                boundary.position = min(1.0, max(0.0, raw))
            for ex in record.exits:
                ex.drained_volume += ex.flow_rate * dt

    def check_conservation(self, tolerance: float):
        """
        Raises:
            ConservationViolation: If any droplet's geometric volume disagrees with its volume.
        """
        for record in self.records_in_state(DropletState.NETWORK, DropletState.TRAPPED):
            expected = record.droplet.volume
            actual = self.occupied_volume(record) + record.total_drained()
            if abs(actual - expected) > tolerance * expected:
                raise ConservationViolation(
                    f"Droplet {record.droplet_id}: volume {expected:.6e} but boundaries "
                    f"enclose {actual:.6e}")

    # -------------------------------------------------------------------------
    # Topology events
    # -------------------------------------------------------------------------

    def locate_event_boundary(self, droplet_id: int, boundary_id: int) -> Optional[Tuple[DropletRecord, Boundary, Channel]]:
        """Return the boundary if it still exists and has reached a channel end."""
        record = self.records.get(droplet_id)
        if record is None or record.state != DropletState.NETWORK:
            return None
        boundary = record.boundary(boundary_id)
        if boundary is None:
            return None
        channel = self._channel(boundary.channel_id)
        target = boundary.opposite_node(channel) if boundary.flow_rate > 0 else boundary.reference_node(channel)
        if abs(boundary.position - channel.end_position(target)) > POSITION_TOLERANCE:
            return None
        boundary.position = channel.end_position(target)
        return record, boundary, channel

    def _close_channel(self, record: DropletRecord, channel_id: int):
        """Mark a channel fully occupied once no boundary of the droplet is left in it."""
        if not record.boundaries_in(channel_id) and channel_id not in record.channel_ids:
            record.channel_ids.append(channel_id)

    def _finish_if_empty(self, record: DropletRecord):
        if not record.boundaries:
            Logger.log(f"Droplet {record.droplet_id} left the network", Logger.LogPriority.INFO)
            record.retire(DropletState.SINK)

    def apply_head_event(self, record: DropletRecord, boundary: Boundary, channel: Channel,
                         flows: FlowSolution) -> str:
        """
        An outflowing boundary reached its opposite node.

        Returns the resolved outcome: "sink", "merge", "split" or "wait".
        """
        node_id = boundary.opposite_node(channel)

        if self.graph.is_sink(node_id):
            record.boundaries.remove(boundary)
            record.exits.append(Exit(channel.channel_id, node_id))
            self._close_channel(record, channel.channel_id)
            Logger.log(f"Droplet {record.droplet_id} reached sink {node_id} through channel {channel.channel_id}")
            self._finish_if_empty(record)
            return "sink"

        if self.enable_merging:
            other, touching = self.droplet_at_node(node_id, record.droplet_id)
            if other is not None:
                # a head already waiting at the node keeps leading the merged body
                removed = [boundary]
                if touching is not None and not self._is_leading(touching):
                    removed.append(touching)
                self.merge(record, other, removed)
                return "merge"

        out_channels = self._outflow_channels(node_id, channel.channel_id, flows)
        if not out_channels:
            boundary.state = BoundaryState.WAIT_OUTFLOW
            boundary.flow_rate = 0.0
            Logger.log(f"Droplet {record.droplet_id} waits for outflow at node {node_id}")
            return "wait"

        record.boundaries.remove(boundary)
        for next_channel in out_channels:
            record.boundaries.append(self._new_boundary(
                next_channel, next_channel.end_position(node_id), next_channel.node0 == node_id))
        self._close_channel(record, channel.channel_id)
        Logger.log(f"Droplet {record.droplet_id} head passed node {node_id} into channels "
                   f"{[c.channel_id for c in out_channels]}")
        return "split"

    @staticmethod
    def _is_leading(boundary: Boundary) -> bool:
        return boundary.state == BoundaryState.WAIT_OUTFLOW or boundary.flow_rate > 0.0

    @staticmethod
    def _flow_into(channel: Channel, node_id: int, flows: FlowSolution) -> float:
        q = flows.channel_flow(channel.channel_id)
        return q if channel.node1 == node_id else -q

    def _continuations(self, record: DropletRecord, node_id: int, exclude_id: int) -> List[Channel]:
        return [c for c in self.graph.channels_at_node(node_id)
                if c.channel_id != exclude_id and self.occupies_end(record, c, node_id)]

    def _enter_channel(self, record: DropletRecord, channel: Channel, node_id: int):
        """Place a new tail at the ``node_id`` end of ``channel`` facing into the droplet."""
        if channel.channel_id in record.channel_ids:
            record.channel_ids.remove(channel.channel_id)
        record.boundaries.append(self._new_boundary(
            channel, channel.end_position(node_id), channel.node0 != node_id))

    def apply_tail_event(self, record: DropletRecord, boundary: Boundary, channel: Channel,
                         flows: FlowSolution) -> str:
        """
        An inflowing boundary reached its reference node.

        The body beyond the node stays connected while another part of the
        droplet still pushes into the node; the tail is then dropped. If every
        continuation carries the body away from the node, the droplet moves on
        (one continuation) or breaks up (several disconnected ones).

        Returns the resolved outcome: "sink", "move", "breakup" or "remove".
        """
        node_id = boundary.reference_node(channel)
        record.boundaries.remove(boundary)

        if self.graph.is_sink(node_id):
            for ex in list(record.exits):
                if ex.channel_id == channel.channel_id and ex.node_id == node_id:
                    record.drained_volume += ex.drained_volume
                    record.exits.remove(ex)
            self._finish_if_empty(record)
            return "sink"

        continuations = self._continuations(record, node_id, channel.channel_id)
        if not continuations:
            raise ConservationViolation(
                f"Droplet {record.droplet_id}: tail reached node {node_id} with no droplet body beyond it")

        if any(self._flow_into(c, node_id, flows) > 0.0 for c in continuations):
            Logger.log(f"Droplet {record.droplet_id} tail absorbed at node {node_id}; body still fed")
            return "remove"

        if len(continuations) == 1:
            head = self._own_head_at(record, continuations[0], node_id)
            if head is not None:
                # tail caught up with its own head: nothing left between them
                record.boundaries.remove(head)
                Logger.log(f"Droplet {record.droplet_id} tail met its own head at node {node_id}; "
                           f"both boundaries removed", Logger.LogPriority.WARNING)
                self._finish_if_empty(record)
                return "remove"
            self._enter_channel(record, continuations[0], node_id)
            return "move"

        pieces = self._group_pieces(record, node_id, continuations)
        if len(pieces) == 1:
            Logger.log(f"Droplet {record.droplet_id} body closes a loop at node {node_id}; tail removed",
                       Logger.LogPriority.WARNING)
            return "remove"

        if self._break_up(record, node_id, pieces) == 1:
            return "move"
        return "breakup"

    def _own_head_at(self, record: DropletRecord, channel: Channel, node_id: int) -> Optional[Boundary]:
        """The droplet's only boundary in ``channel`` if it still sits at the ``node_id`` end."""
        if channel.channel_id in record.channel_ids:
            return None
        boundaries = record.boundaries_in(channel.channel_id)
        if len(boundaries) != 1:
            return None
        head = boundaries[0]
        if head.reference_node(channel) != node_id:
            return None
        if abs(head.position - channel.end_position(node_id)) > POSITION_TOLERANCE:
            return None
        return head

    def _group_pieces(self, record: DropletRecord, node_id: int,
                      continuations: List[Channel]) -> List[Tuple[List[Channel], set]]:
        """
        Group continuation channels by body connectivity that avoids ``node_id``.

        Each piece is (continuation channels, channel ids reachable from them).
        """
        owner: Dict[int, int] = {}
        parent = list(range(len(continuations)))

        def find(k):
            while parent[k] != k:
                parent[k] = parent[parent[k]]
                k = parent[k]
            return k

        for k, start in enumerate(continuations):
            queue = deque([(start, node_id)])
            while queue:
                channel, entered_from = queue.popleft()
                if channel.channel_id in owner:
                    parent[find(k)] = find(owner[channel.channel_id])
                    continue
                owner[channel.channel_id] = k
                if channel.channel_id not in record.channel_ids:
                    continue
                far = channel.other_node(entered_from)
                if far == node_id:
                    continue
                for nxt in self.graph.channels_at_node(far):
                    if nxt.channel_id != channel.channel_id and self.occupies_end(record, nxt, far):
                        queue.append((nxt, far))

        groups: Dict[int, Tuple[List[Channel], set]] = {}
        for k, start in enumerate(continuations):
            root = find(k)
            groups.setdefault(root, ([], set()))[0].append(start)
        for channel_id, k in owner.items():
            groups[find(k)][1].add(channel_id)
        return [groups[root] for root in sorted(groups, key=lambda r: groups[r][0][0].channel_id)]

    def _break_up(self, record: DropletRecord, node_id: int, pieces: List[Tuple[List[Channel], set]]) -> int:
        """
        Split a droplet whose tail reached a node where its body continues in separate branches.

        Pieces holding no more than ``volume_tolerance`` of the droplet are
        dropped with their boundaries. The first remaining piece keeps the
        droplet id.

        Returns:
            Number of droplets the body ends up in.
        """
        original = record.droplet
        boundaries, full, exits = list(record.boundaries), list(record.channel_ids), list(record.exits)
        retired_drained = record.drained_volume

        split = []
        for starts, channel_ids in pieces:
            piece = DropletRecord(
                droplet=original,
                state=DropletState.NETWORK,
                boundaries=[b for b in boundaries if b.channel_id in channel_ids],
                channel_ids=[cid for cid in full if cid in channel_ids],
                exits=[ex for ex in exits if ex.channel_id in channel_ids],
            )
            for start in starts:
                self._enter_channel(piece, start, node_id)
            split.append((piece, self.occupied_volume(piece) + piece.total_drained()))

        threshold = self.volume_tolerance * original.volume
        largest = max(volume for _, volume in split)
        kept = [(piece, volume) for piece, volume in split if volume > threshold or volume == largest]
        if len(kept) < len(split):
            dropped = sum(volume for _, volume in split) - sum(volume for _, volume in kept)
            Logger.log(f"Droplet {original.droplet_id} dropped {len(split) - len(kept)} piece(s) of "
                       f"{dropped:.3e} m^3 at node {node_id}", Logger.LogPriority.WARNING)

        next_id = max(self.records) + 1
        created = []
        for index, (piece, volume) in enumerate(kept):
            if index == 0:
                target = record
                target.drained_volume = retired_drained
                volume += retired_drained
            else:
                droplet = Droplet(next_id, volume, original.fluid_id, name=f"{original.name}#{next_id}")
                target = DropletRecord(droplet=droplet, state=DropletState.NETWORK)
                self.records[next_id] = target
                created.append(next_id)
                next_id += 1
            target.boundaries = piece.boundaries
            target.channel_ids = piece.channel_ids
            target.exits = piece.exits
            target.droplet.volume = volume

        if created:
            Logger.log(f"Droplet {original.droplet_id} broke up at node {node_id} into "
                       f"{[original.droplet_id] + created}", Logger.LogPriority.INFO)
        return len(kept)

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    def mix_fluids(self, fluid0_id: int, volume0: float, fluid1_id: int, volume1: float) -> int:
        """Fluid of a merged droplet: the same fluid, or a new volume-weighted blend."""
        if fluid0_id == fluid1_id:
            return fluid0_id
        f0, f1 = self.fluids[fluid0_id], self.fluids[fluid1_id]
        total = volume0 + volume1
        w0, w1 = volume0 / total, volume1 / total
        new_id = max(self.fluids) + 1
        self.fluids[new_id] = Fluid(
            fluid_id=new_id,
            viscosity=w0 * f0.viscosity + w1 * f1.viscosity,
            density=w0 * f0.density + w1 * f1.density,
            concentration=w0 * f0.concentration + w1 * f1.concentration,
            name=f"mix({fluid0_id},{fluid1_id})",
            mixed_fluid_ids=frozenset({fluid0_id, fluid1_id}) | f0.mixed_fluid_ids | f1.mixed_fluid_ids,
        )
        return new_id

    def merge(self, first: DropletRecord, second: DropletRecord, removed: List[Boundary]) -> DropletRecord:
        """
        Merge two droplets; the lower id survives and the other is retired.

        ``removed`` are the boundaries that met and disappear.
        """
        survivor, absorbed = (first, second) if first.droplet_id < second.droplet_id else (second, first)
        removed_ids = {b.boundary_id for b in removed}
        touched_channels = sorted({b.channel_id for b in removed})

        fluid_id = self.mix_fluids(survivor.droplet.fluid_id, survivor.droplet.volume,
                                   absorbed.droplet.fluid_id, absorbed.droplet.volume)
        survivor.boundaries = [b for b in survivor.boundaries + absorbed.boundaries
                               if b.boundary_id not in removed_ids]
        for channel_id in absorbed.channel_ids:
            if channel_id not in survivor.channel_ids:
                survivor.channel_ids.append(channel_id)
        survivor.exits = survivor.exits + absorbed.exits
        survivor.drained_volume += absorbed.drained_volume
        for channel_id in touched_channels:
            self._close_channel(survivor, channel_id)
        survivor.droplet.absorb(absorbed.droplet, fluid_id)
        survivor.state = DropletState.NETWORK
        survivor.stalled_since = None

        absorbed.exits = []
        absorbed.drained_volume = 0.0
        absorbed.retire(DropletState.SINK)
        Logger.log(f"Droplet {absorbed.droplet_id} merged into droplet {survivor.droplet_id} "
                   f"(volume {survivor.droplet.volume:.6e}, fluid {fluid_id})", Logger.LogPriority.INFO)
        return survivor

    def channel_merge_time(self, a: Boundary, b: Boundary) -> Optional[float]:
        """
        Time until two boundaries of different droplets in one channel meet.

        Only boundaries facing each other across carrier fluid can meet:
        the lower one has its body towards node0, the upper one towards node1.
        """
        if a.channel_id != b.channel_id:
            return None
        low, high = (a, b) if (a.position, a.boundary_id) <= (b.position, b.boundary_id) else (b, a)
        if not low.volume_towards_0 or high.volume_towards_0:
            return None
        channel = self._channel(a.channel_id)
        v_low = low.flow_rate if low.volume_towards_0 else -low.flow_rate
        v_high = high.flow_rate if high.volume_towards_0 else -high.flow_rate
        gap = (high.position - low.position) * channel.volume
        closing = v_low - v_high
        if gap <= POSITION_TOLERANCE * channel.volume:
            return 0.0
        if closing <= 0.0:
            return None
        t = gap / closing
        meet = low.position + v_low * t / channel.volume
        if meet < -POSITION_TOLERANCE or meet > 1.0 + POSITION_TOLERANCE:
            return None
        return t

    def apply_channel_merge(self, first_id: int, first_boundary_id: int,
                            second_id: int, second_boundary_id: int) -> bool:
        first, second = self.records.get(first_id), self.records.get(second_id)
        if first is None or second is None:
            return False
        if first.state not in (DropletState.NETWORK, DropletState.TRAPPED) or \
                second.state not in (DropletState.NETWORK, DropletState.TRAPPED):
            return False
        a, b = first.boundary(first_boundary_id), second.boundary(second_boundary_id)
        if a is None or b is None or a.channel_id != b.channel_id:
            return False
        if abs(a.position - b.position) > POSITION_TOLERANCE:
            return False
        self.merge(first, second, [a, b])
        return True

    def trap(self, droplet_id: int, now: float, stall_duration: float, time_tolerance: float) -> bool:
        record = self.records.get(droplet_id)
        if record is None or record.state != DropletState.NETWORK or record.stalled_since is None:
            return False
        if now - record.stalled_since < stall_duration * (1.0 - time_tolerance):
            return False
        record.state = DropletState.TRAPPED
        Logger.log(f"Droplet {droplet_id} trapped after stalling since t={record.stalled_since:.6f}s",
                   Logger.LogPriority.WARNING)
        return True
