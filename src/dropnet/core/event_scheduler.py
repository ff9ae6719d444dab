"""
Event scheduling for the droplet integrator.

Every candidate event carries the time until it happens, measured from
the current simulation time. The step size is the smallest of these
times, bounded by the maximal adaptive time step, so no boundary can pass
a node inside one step.

Ordering of coincident events:
    (time, priority, channel id, droplet id, boundary id)

Priorities:
    0  injection, merge at a bifurcation, merge inside a channel
    1  boundary head / tail reaching a node
    2  stall timeout (droplet becomes TRAPPED)
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..utils.logger import Logger
from ..models.exceptions import SchedulingDeadlock
from ..models.results import DropletState
from .droplet_tracker import DropletTracker
from .flow_solver import FlowSolution


class EventKind(Enum):
    INJECTION = "injection"
    MERGE_BIFURCATION = "merge_bifurcation"
    MERGE_CHANNEL = "merge_channel"
    BOUNDARY_HEAD = "boundary_head"
    BOUNDARY_TAIL = "boundary_tail"
    STALL = "stall"


PRIORITY = {
    EventKind.INJECTION: 0,
    EventKind.MERGE_BIFURCATION: 0,
    EventKind.MERGE_CHANNEL: 0,
    EventKind.BOUNDARY_HEAD: 1,
    EventKind.BOUNDARY_TAIL: 1,
    EventKind.STALL: 2,
}


@dataclass(frozen=True)
class Event:
    """
    Scheduled topology change.

    Attributes:
        time: Time until the event from the moment it was computed [s].
        kind: Event type.
        channel_id: Channel the event happens in (-1 when not tied to one).
        droplet_id: Droplet that triggers the event.
        boundary_id: Boundary that triggers it (-1 when not tied to one).
        other_droplet_id: Second droplet of a channel merge.
        other_boundary_id: Boundary of the second droplet.
    """
    time: float
    kind: EventKind
    channel_id: int = -1
    droplet_id: int = -1
    boundary_id: int = -1
    other_droplet_id: int = -1
    other_boundary_id: int = -1

    @property
    def priority(self) -> int:
        return PRIORITY[self.kind]

    def sort_key(self):
        return (self.time, self.priority, self.channel_id, self.droplet_id, self.boundary_id)


class EventScheduler:
    """Computes candidate events and chooses the next step size."""

    def __init__(self, tracker: DropletTracker, maximal_adaptive_time_step: float = 0.0,
                 stall_duration: Optional[float] = 0.0, time_tolerance: float = 1e-9,
                 max_time: Optional[float] = None):
        self.tracker = tracker
        self.maximal_adaptive_time_step = maximal_adaptive_time_step
        self.stall_duration = stall_duration
        self.time_tolerance = time_tolerance
        self.max_time = max_time

    # -------------------------------------------------------------------------
    # Event computation
    # -------------------------------------------------------------------------

    def compute_events(self, now: float) -> List[Event]:
        """All finite events from the current state, sorted."""
        tracker = self.tracker
        events: List[Event] = []

        for droplet_id in sorted(tracker.pending_injections):
            injection = tracker.pending_injections[droplet_id]
            events.append(Event(
                time=max(0.0, injection.time - now),
                kind=EventKind.INJECTION,
                channel_id=injection.position.channel_id,
                droplet_id=droplet_id,
            ))

        for record in tracker.records_in_state(DropletState.NETWORK):
            for boundary in record.boundaries:
                if boundary.flow_rate == 0.0:
                    continue
                channel = tracker.graph.channel(boundary.channel_id)
                if boundary.flow_rate > 0:
                    kind = EventKind.BOUNDARY_HEAD
                    node_id = boundary.opposite_node(channel)
                    if tracker.enable_merging and not tracker.graph.is_sink(node_id):
                        other, _ = tracker.droplet_at_node(node_id, record.droplet_id)
                        if other is not None:
                            kind = EventKind.MERGE_BIFURCATION
                else:
                    kind = EventKind.BOUNDARY_TAIL
                events.append(Event(
                    time=boundary.time_to_node(channel),
                    kind=kind,
                    channel_id=boundary.channel_id,
                    droplet_id=record.droplet_id,
                    boundary_id=boundary.boundary_id,
                ))

            if self.stall_duration is not None and record.stalled_since is not None:
                events.append(Event(
                    time=max(0.0, record.stalled_since + self.stall_duration - now),
                    kind=EventKind.STALL,
                    droplet_id=record.droplet_id,
                ))

        if tracker.enable_merging:
            events.extend(self._channel_merge_events())

        events = [e for e in events if math.isfinite(e.time)]
        events.sort(key=Event.sort_key)
        return events

    def _channel_merge_events(self) -> List[Event]:
        tracker = self.tracker
        by_channel = {}
        for record in tracker.records_in_state(DropletState.NETWORK, DropletState.TRAPPED):
            for boundary in record.boundaries:
                by_channel.setdefault(boundary.channel_id, []).append((record.droplet_id, boundary))

        events = []
        for channel_id in sorted(by_channel):
            entries = by_channel[channel_id]
            for i in range(len(entries)):
                for j in range(i + 1, len(entries)):
                    (d0, b0), (d1, b1) = entries[i], entries[j]
                    if d0 == d1:
                        continue
                    t = tracker.channel_merge_time(b0, b1)
                    if t is None:
                        continue
                    if d1 < d0:
                        (d0, b0), (d1, b1) = (d1, b1), (d0, b0)
                    events.append(Event(
                        time=t,
                        kind=EventKind.MERGE_CHANNEL,
                        channel_id=channel_id,
                        droplet_id=d0,
                        boundary_id=b0.boundary_id,
                        other_droplet_id=d1,
                        other_boundary_id=b1.boundary_id,
                    ))
        return events

    # -------------------------------------------------------------------------
    # Step selection
    # -------------------------------------------------------------------------

    def zero_time_events(self, events: List[Event], now: float) -> List[Event]:
        """Events due without advancing time."""
        limit = self.time_tolerance * now
        return [e for e in events if e.time <= limit]

    def select_time_step(self, events: List[Event], now: float) -> float:
        """
        Step size for the next advance.

        Raises:
            SchedulingDeadlock: If nothing is scheduled, droplets are still
                active and no simulated-time bound exists.
        """
        candidates = []
        if events:
            candidates.append(events[0].time)
            if self.maximal_adaptive_time_step > 0:
                candidates.append(self.maximal_adaptive_time_step)
        if self.max_time is not None:
            candidates.append(self.max_time - now)
        if not candidates:
            raise SchedulingDeadlock(
                f"No finite next event at t={now:.6f}s while droplets are still in the network.")
        return max(0.0, min(candidates))

    def due_events(self, events: List[Event], dt: float, now: float) -> List[Event]:
        """Events whose arrival time matches ``dt`` within tolerance, in resolution order."""
        limit = self.time_tolerance * max(dt, now)
        return [e for e in events if abs(e.time - dt) <= limit]

    # -------------------------------------------------------------------------
    # Event resolution
    # -------------------------------------------------------------------------

    def apply(self, event: Event, flows: FlowSolution, now: float) -> bool:
        """
        Resolve one event against the current topology.

        Stale events, whose droplet or boundary changed since scheduling,
        are skipped. Returns True when the event changed the topology.
        """
        tracker = self.tracker
        if event.kind == EventKind.INJECTION:
            applied = tracker.inject(event.droplet_id)
        elif event.kind in (EventKind.BOUNDARY_HEAD, EventKind.MERGE_BIFURCATION):
            located = tracker.locate_event_boundary(event.droplet_id, event.boundary_id)
            applied = located is not None and located[1].flow_rate > 0
            if applied:
                tracker.apply_head_event(*located, flows)
        elif event.kind == EventKind.BOUNDARY_TAIL:
            located = tracker.locate_event_boundary(event.droplet_id, event.boundary_id)
            applied = located is not None and located[1].flow_rate < 0
            if applied:
                tracker.apply_tail_event(*located, flows)
        elif event.kind == EventKind.MERGE_CHANNEL:
            applied = tracker.apply_channel_merge(event.droplet_id, event.boundary_id,
                                                  event.other_droplet_id, event.other_boundary_id)
        elif event.kind == EventKind.STALL:
            applied = tracker.trap(event.droplet_id, now, self.stall_duration, self.time_tolerance)
        else:
            raise ValueError(f"Unhandled event kind: {event.kind}")

        if applied:
            Logger.log(f"t={now:.6f}s applied {event.kind.value} event "
                       f"(droplet {event.droplet_id}, channel {event.channel_id})")
        else:
            Logger.log(f"t={now:.6f}s skipped stale {event.kind.value} event (droplet {event.droplet_id})")
        return applied
