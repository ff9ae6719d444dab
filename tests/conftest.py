"""
Pytest configuration for DropNet tests.

Puts ``src`` on sys.path so the tests run against a plain checkout, routes
the logger to memory and provides the chips shared by several test modules.
"""

import os
import sys
from collections import defaultdict

import pytest

# Add src/ to sys.path for imports
_src_root = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if _src_root not in sys.path:
    sys.path.insert(0, _src_root)

from dropnet import ChannelPosition, ChipBuilder, SimulationConfig  # noqa: E402
from dropnet.utils.logger import Logger, MemoryStrategy  # noqa: E402


WIDTH = 100e-6
HEIGHT = 30e-6
LENGTH = 1000e-6
INLET_FLOW = 3e-11
DROPLET_VOLUME = 1.5 * WIDTH * WIDTH * HEIGHT


@pytest.fixture(autouse=True)
def memory_log():
    """Keep every test's log in memory instead of the default log file."""
    strategy = MemoryStrategy(capacity=10000)
    previous = Logger.log_storage_strategy
    Logger.set_log_storage_strategy(strategy)
    Logger.set_min_priority(Logger.LogPriority.DEBUG)
    yield strategy
    Logger.set_log_storage_strategy(previous)
    Logger.set_min_priority(Logger.LogPriority.DEBUG)


def build_reference_chip(injection_time=None, config=None):
    """
    Six-channel chip with one bifurcation and one confluence.

        pump(-1 -> 0) c1(0->1) c2(1->2) c3(2->3) c4(2->4) c5(3->4) c6(4->-1)

    Node -1 is sink and ground. Element ids: pump 0, channels 1..6.
    With ``injection_time`` set, one droplet of the second fluid is
    injected into c1 at position 0.5.
    """
    builder = ChipBuilder("reference", config or SimulationConfig())
    builder.add_flow_rate_pump(-1, 0, INLET_FLOW)
    for node0, node1 in ((0, 1), (1, 2), (2, 3), (2, 4), (3, 4), (4, -1)):
        builder.add_channel(node0, node1, HEIGHT, WIDTH, LENGTH)
    builder.add_sink(-1)
    builder.add_ground(-1)

    continuous = builder.add_fluid(1e-3, 1e3)
    dispersed = builder.add_fluid(3e-3, 1e3)
    builder.set_continuous_phase(continuous)
    if injection_time is not None:
        builder.add_droplet(dispersed, DROPLET_VOLUME, injection_time, ChannelPosition(1, 0.5))
    return builder


def build_y_junction_chip(config=None):
    """
    Two inlets joining at node 2, one droplet in each inlet.

        pump(-1 -> 0) id 0, pump(-1 -> 1) id 1
        c0(0->2) id 2, c1(1->2) id 3, c2(2->-1) id 4

    Droplet 0 (fluid 1) sits in c0 and droplet 1 (fluid 2) in c1, both
    centred, so their heads reach node 2 together.
    """
    builder = ChipBuilder("y-junction", config or SimulationConfig())
    builder.add_flow_rate_pump(-1, 0, INLET_FLOW)
    builder.add_flow_rate_pump(-1, 1, INLET_FLOW)
    c0 = builder.add_channel(0, 2, HEIGHT, WIDTH, LENGTH)
    c1 = builder.add_channel(1, 2, HEIGHT, WIDTH, LENGTH)
    builder.add_channel(2, -1, HEIGHT, WIDTH, LENGTH)
    builder.add_sink(-1)
    builder.add_ground(-1)

    continuous = builder.add_fluid(1e-3, 1e3)
    first = builder.add_fluid(3e-3, 1e3)
    second = builder.add_fluid(5e-3, 1e3)
    builder.set_continuous_phase(continuous)
    builder.add_droplet(first, DROPLET_VOLUME, 0.0, ChannelPosition(c0, 0.5))
    builder.add_droplet(second, DROPLET_VOLUME, 0.0, ChannelPosition(c1, 0.5))
    return builder


def kcl_residuals(chip, flow_rates):
    """Net flow leaving every non-ground node."""
    net = defaultdict(float)
    elements = list(chip.channels.items()) + list(chip.flow_rate_pumps.items()) \
        + list(chip.pressure_pumps.items())
    for element_id, element in elements:
        q = flow_rates[element_id]
        net[element.node0] += q
        net[element.node1] -= q
    return {node: value for node, value in net.items() if node not in chip.grounds}


@pytest.fixture
def reference_builder():
    return build_reference_chip(injection_time=0.01)
