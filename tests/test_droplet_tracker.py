"""
Tests for DropletTracker - boundary kinematics and droplet topology.

Tests:
    - Injection geometry and occupied volume
    - Slip-scaled boundary flow rates and event times
    - Stall detection, trapping and release
    - Merging and fluid mixing
    - Closing time of two boundaries in one channel
    - Coincident boundaries, vanishing breakup pieces and a tail meeting its head
"""

import pytest

from dropnet.core import DropletTracker, FlowSolver, FlowSolution
from dropnet.core.droplet_tracker import Boundary, DropletRecord
from dropnet.core.resistance_models import RectangularResistanceModel
from dropnet.models import ConservationViolation, DropletState, GeometryError

from conftest import (
    WIDTH, HEIGHT, LENGTH, INLET_FLOW, DROPLET_VOLUME,
    build_reference_chip, build_y_junction_chip,
)

CHANNEL_VOLUME = WIDTH * HEIGHT * LENGTH


def make_tracker(builder, **kwargs):
    return DropletTracker(builder.graph(), builder.fluids, builder.droplets, builder.injections, **kwargs)


def solve(builder, tracker=None):
    solver = FlowSolver(builder.graph(), RectangularResistanceModel(1e-3))
    extra = tracker.droplet_resistances(solver.resistance_model) if tracker else None
    return solver.solve(extra)


def zero_flows(builder):
    flow_rates = {element_id: 0.0 for element_id in builder.chip.channels}
    return FlowSolution(pressures={}, flow_rates=flow_rates)


class TestInjection:
    """Materializing a pending droplet."""

    def test_extent_is_centred(self):
        channel = build_reference_chip().chip.channels[1]
        tail, head = DropletTracker.injection_extent(channel, DROPLET_VOLUME, 0.5)
        assert tail == pytest.approx(0.425)
        assert head == pytest.approx(0.575)

    def test_extent_rejects_oversized_droplet(self):
        channel = build_reference_chip().chip.channels[1]
        with pytest.raises(GeometryError):
            DropletTracker.injection_extent(channel, CHANNEL_VOLUME, 0.5)

    def test_inject(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        assert tracker.record(0).state == DropletState.INJECTION

        assert tracker.inject(0)
        record = tracker.record(0)
        assert record.state == DropletState.NETWORK
        assert len(record.boundaries) == 2
        assert tracker.occupied_volume(record) == pytest.approx(DROPLET_VOLUME)
        assert not tracker.inject(0)

    def test_builder_droplets_are_not_mutated(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.record(0).droplet.volume *= 2
        assert builder.droplets[0].volume == pytest.approx(DROPLET_VOLUME)


class TestKinematics:
    """Boundary flow rates, event times and advancing."""

    def test_boundary_flow_rates_use_slip(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.update_boundaries(solve(builder, tracker))

        tail, head = sorted(tracker.record(0).boundaries, key=lambda b: b.position)
        assert head.flow_rate == pytest.approx(1.28 * INLET_FLOW)
        assert tail.flow_rate == pytest.approx(-1.28 * INLET_FLOW)

    def test_time_to_node(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.update_boundaries(solve(builder, tracker))

        channel = builder.chip.channels[1]
        tail, head = sorted(tracker.record(0).boundaries, key=lambda b: b.position)
        assert head.time_to_node(channel) == pytest.approx(0.033203125)
        # the tail travels to node1, behind the body
        assert tail.time_to_node(channel) == pytest.approx(0.044921875)

    def test_advance_preserves_volume(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.update_boundaries(solve(builder, tracker))

        tracker.advance(0.02)
        record = tracker.record(0)
        tail, head = sorted(record.boundaries, key=lambda b: b.position)
        moved = 1.28 * INLET_FLOW * 0.02 / CHANNEL_VOLUME
        assert head.position == pytest.approx(0.575 + moved)
        assert tail.position == pytest.approx(0.425 + moved)
        tracker.check_conservation(1e-9)

    def test_overshoot_is_a_conservation_violation(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.update_boundaries(solve(builder, tracker))
        with pytest.raises(ConservationViolation):
            tracker.advance(0.5)

    def test_droplet_resistance_only_in_occupied_channel(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        model = RectangularResistanceModel(1e-3)
        extra = tracker.droplet_resistances(model)
        assert list(extra) == [1]
        assert extra[1] == pytest.approx(model.droplet_resistance(builder.chip.channels[1], DROPLET_VOLUME))


class TestStall:
    """Stall detection and the TRAPPED state."""

    def test_trap_and_release(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)

        tracker.update_boundaries(zero_flows(builder))
        tracker.update_stall_state(1.0)
        record = tracker.record(0)
        assert record.stalled_since == pytest.approx(1.0)

        assert tracker.trap(0, 1.0, 0.0, 1e-9)
        assert record.state == DropletState.TRAPPED
        assert not tracker.has_active_droplets()

        tracker.update_boundaries(solve(builder, tracker))
        assert record.state == DropletState.NETWORK
        assert record.stalled_since is None

    def test_trap_waits_for_stall_duration(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.update_boundaries(zero_flows(builder))
        tracker.update_stall_state(0.0)

        assert not tracker.trap(0, 0.5, 1.0, 1e-9)
        assert tracker.trap(0, 1.0, 1.0, 1e-9)


class TestMerging:
    """Fluid mixing and droplet merges."""

    def test_mix_same_fluid(self):
        tracker = make_tracker(build_reference_chip())
        assert tracker.mix_fluids(1, 1.0, 1, 2.0) == 1

    def test_mix_creates_weighted_fluid(self):
        tracker = make_tracker(build_reference_chip())
        mixed_id = tracker.mix_fluids(0, 1.0, 1, 3.0)
        mixed = tracker.fluids[mixed_id]

        assert mixed_id == 2
        assert mixed.viscosity == pytest.approx(0.25 * 1e-3 + 0.75 * 3e-3)
        assert mixed.density == pytest.approx(1e3)
        assert mixed.mixed_fluid_ids == frozenset({0, 1})

    def test_merge_keeps_lower_id(self):
        builder = build_y_junction_chip()
        tracker = make_tracker(builder)
        tracker.inject(0)
        tracker.inject(1)

        survivor = tracker.merge(tracker.record(1), tracker.record(0), [])
        absorbed = tracker.record(1)

        assert survivor.droplet_id == 0
        assert survivor.droplet.volume == pytest.approx(2 * DROPLET_VOLUME)
        assert survivor.droplet.merged_droplet_ids == [1]
        assert len(survivor.boundaries) == 4
        assert tracker.fluids[survivor.droplet.fluid_id].mixed_fluid_ids == frozenset({1, 2})
        assert absorbed.state == DropletState.SINK
        assert absorbed.boundaries == []
        tracker.check_conservation(1e-9)


class TestChannelMergeTime:
    """Two facing boundaries of different droplets closing in."""

    def test_closing_boundaries(self):
        tracker = make_tracker(build_reference_chip())
        # head of an upstream droplet and tail of a slower downstream one
        low = Boundary(0, 1, 0.2, True, flow_rate=2e-12)
        high = Boundary(1, 1, 0.5, False, flow_rate=-1e-12)
        t = tracker.channel_merge_time(low, high)
        assert t == pytest.approx(0.3 * CHANNEL_VOLUME / 1e-12)
        assert tracker.channel_merge_time(high, low) == pytest.approx(t)

    def test_separating_boundaries(self):
        tracker = make_tracker(build_reference_chip())
        low = Boundary(0, 1, 0.2, True, flow_rate=1e-12)
        high = Boundary(1, 1, 0.5, False, flow_rate=-2e-12)
        assert tracker.channel_merge_time(low, high) is None

    def test_boundaries_not_facing(self):
        tracker = make_tracker(build_reference_chip())
        low = Boundary(0, 1, 0.2, False, flow_rate=-1e-12)
        high = Boundary(1, 1, 0.5, False, flow_rate=-1e-12)
        assert tracker.channel_merge_time(low, high) is None


class TestCoincidentBoundaries:
    """A head and a tail at the same position enclose no volume."""

    @pytest.mark.parametrize("head_id, tail_id", [(0, 1), (1, 0)])
    def test_zero_length_piece_is_empty(self, head_id, tail_id):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        droplet = builder.droplets[0]
        record = DropletRecord(droplet=droplet, state=DropletState.NETWORK, boundaries=[
            Boundary(head_id, 2, 0.0, True),
            Boundary(tail_id, 2, 0.0, False),
        ])
        channel = tracker.graph.channel(2)

        assert tracker.volume_in_channel(record, channel) == 0.0
        assert not tracker.occupies_end(record, channel, channel.node0)
        assert not tracker.occupies_end(record, channel, channel.node1)

    def test_body_between_separate_positions(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        record = DropletRecord(droplet=builder.droplets[0], state=DropletState.NETWORK, boundaries=[
            Boundary(7, 2, 0.0, False),
            Boundary(3, 2, 0.25, True),
        ])
        assert tracker.volume_in_channel(record, tracker.graph.channel(2)) == pytest.approx(
            0.25 * CHANNEL_VOLUME)


class TestTailAtNode:
    """Tail events at a bifurcation."""

    def test_vanishing_piece_is_dropped(self, memory_log):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        record = tracker.record(0)
        # tail at node 2, one head well inside c3, the other barely into c4
        tail = Boundary(100, 2, 1.0, False, flow_rate=-1e-12)
        record.boundaries = [tail, Boundary(101, 3, 0.5, True), Boundary(102, 4, 1e-9, True)]
        record.droplet.volume = (0.5 + 1e-9) * CHANNEL_VOLUME

        outcome = tracker.apply_tail_event(record, tail, tracker.graph.channel(2), solve(builder))

        assert outcome == "move"
        assert set(tracker.records) == {0}
        assert sorted(b.channel_id for b in record.boundaries) == [3, 3]
        assert record.droplet.volume == pytest.approx(0.5 * CHANNEL_VOLUME)
        tracker.check_conservation(1e-9)
        assert any("dropped 1 piece" in m for m in memory_log.messages("WARNING"))

    def test_breakup_keeps_both_real_pieces(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        record = tracker.record(0)
        tail = Boundary(100, 2, 1.0, False, flow_rate=-1e-12)
        record.boundaries = [tail, Boundary(101, 3, 0.1, True), Boundary(102, 4, 0.2, True)]
        record.droplet.volume = 0.3 * CHANNEL_VOLUME

        outcome = tracker.apply_tail_event(record, tail, tracker.graph.channel(2), solve(builder))

        assert outcome == "breakup"
        assert tracker.record(0).droplet.volume == pytest.approx(0.1 * CHANNEL_VOLUME)
        assert tracker.record(1).droplet.volume == pytest.approx(0.2 * CHANNEL_VOLUME)
        tracker.check_conservation(1e-9)

    def test_tail_meeting_own_head_removes_both(self):
        builder = build_reference_chip(injection_time=0.0)
        tracker = make_tracker(builder)
        tracker.inject(0)
        record = tracker.record(0)
        # head just entered c2 at node 1 and the tail arrives at the same node
        tail = Boundary(100, 1, 1.0, False, flow_rate=-1e-12)
        record.boundaries = [tail, Boundary(101, 2, 0.0, True, flow_rate=1e-12)]
        record.droplet.volume = 1e-20

        outcome = tracker.apply_tail_event(record, tail, tracker.graph.channel(1), solve(builder))

        assert outcome == "remove"
        assert record.boundaries == []
        assert record.state == DropletState.SINK
        assert not tracker.has_active_droplets()
