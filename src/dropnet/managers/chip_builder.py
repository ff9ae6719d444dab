"""
Construction API for a droplet chip.

The builder collects channels, pumps, fluids and droplets, assigns ids and
hands everything to a ``SimulationEngine``. A failing ``add_*`` call raises
before anything is stored.
"""

import threading
from typing import Dict, Optional

from ..utils.logger import Logger
from ..config.simulation_config import SimulationConfig
from ..models.chip import Chip, Channel, ChannelPosition, ChannelType, FlowRatePump, PressurePump
from ..models.exceptions import ChannelNotFoundError, FluidNotFoundError, GeometryError
from ..models.fluids import Droplet, Fluid, Injection
from ..models.results import SimulationResult
from .network.chip_graph import ChipGraph, ValidityReport


class ChipBuilder:
    """Mutable chip description; one builder per chip."""

    def __init__(self, name: str = "", config: Optional[SimulationConfig] = None):
        Logger.log(f"start ChipBuilder__init__({name!r})")
        self.chip = Chip(name=name)
        self.fluids: Dict[int, Fluid] = {}
        self.droplets: Dict[int, Droplet] = {}
        self.injections: Dict[int, Injection] = {}
        self.continuous_phase_id: Optional[int] = None
        self.config = config or SimulationConfig()

    # -------------------------------------------------------------------------
    # Chip elements
    # -------------------------------------------------------------------------

    def add_channel(self, node0: int, node1: int, height: float, width: float, length: float,
                    channel_type: ChannelType = ChannelType.NORMAL, name: str = "") -> int:
        """
        Add a channel from node0 to node1.

        Raises:
            GeometryError: If a dimension is not positive.
            TopologyError: If both ends are the same node.
        """
        channel_id = self.chip.next_element_id()
        channel = Channel(channel_id, node0, node1, width, height, length, channel_type, name)
        self.chip.channels[channel_id] = channel
        Logger.log(f"Channel {channel_id} added: {node0}->{node1}, "
                   f"w={width}, h={height}, l={length}, type={channel_type.name}")
        return channel_id

    def add_bypass_channel(self, node0: int, node1: int, height: float, width: float,
                           length: float, name: str = "") -> int:
        return self.add_channel(node0, node1, height, width, length, ChannelType.BYPASS, name)

    def add_flow_rate_pump(self, node0: int, node1: int, flow_rate: float, name: str = "") -> int:
        pump_id = self.chip.next_element_id()
        self.chip.flow_rate_pumps[pump_id] = FlowRatePump(pump_id, node0, node1, flow_rate, name)
        Logger.log(f"Flow rate pump {pump_id} added: {node0}->{node1}, q={flow_rate}")
        return pump_id

    def add_pressure_pump(self, node0: int, node1: int, pressure: float, name: str = "") -> int:
        pump_id = self.chip.next_element_id()
        self.chip.pressure_pumps[pump_id] = PressurePump(pump_id, node0, node1, pressure, name)
        Logger.log(f"Pressure pump {pump_id} added: {node0}->{node1}, p={pressure}")
        return pump_id

    def add_sink(self, node_id: int) -> None:
        self.chip.sinks.add(node_id)

    def add_ground(self, node_id: int) -> None:
        self.chip.grounds.add(node_id)

    # -------------------------------------------------------------------------
    # Fluids and droplets
    # -------------------------------------------------------------------------

    def add_fluid(self, viscosity: float, density: float, concentration: float = 0.0,
                  name: str = "") -> int:
        fluid_id = len(self.fluids)
        self.fluids[fluid_id] = Fluid(fluid_id, viscosity, density, concentration, name)
        return fluid_id

    def set_continuous_phase(self, fluid_id: int) -> None:
        if fluid_id not in self.fluids:
            raise FluidNotFoundError(f"Fluid {fluid_id} not found.")
        self.continuous_phase_id = fluid_id

    def add_droplet(self, fluid_id: int, volume: float, time: float, position: ChannelPosition,
                    name: str = "") -> int:
        """
        Add a droplet and schedule its injection.

        Raises:
            FluidNotFoundError: If the fluid is unknown.
            ChannelNotFoundError: If the injection channel is unknown.
            GeometryError: If the droplet does not fit the channel at that position.
        """
        from ..core.droplet_tracker import DropletTracker

        if fluid_id not in self.fluids:
            raise FluidNotFoundError(f"Fluid {fluid_id} not found.")
        channel = self.chip.channels.get(position.channel_id)
        if channel is None:
            raise ChannelNotFoundError(f"Channel {position.channel_id} not found in chip.")
        if channel.channel_type != ChannelType.NORMAL:
            raise GeometryError(f"Droplets can only be injected into NORMAL channels "
                                f"(channel {channel.channel_id} is {channel.channel_type.name}).")
        DropletTracker.injection_extent(channel, volume, position.position)

        droplet_id = len(self.droplets)
        droplet = Droplet(droplet_id, volume, fluid_id, name)
        injection = Injection(len(self.injections), droplet_id, time, position)
        self.droplets[droplet_id] = droplet
        self.injections[injection.injection_id] = injection
        Logger.log(f"Droplet {droplet_id} added: fluid={fluid_id}, volume={volume}, "
                   f"t={time}, channel={position.channel_id}@{position.position}")
        return droplet_id

    # -------------------------------------------------------------------------
    # Configuration shortcuts
    # -------------------------------------------------------------------------

    def set_maximal_adaptive_time_step(self, time_step: float) -> None:
        self.config.maximal_adaptive_time_step = time_step

    def set_resistance_model(self, selector: int) -> None:
        self.config.resistance_model = selector

    # -------------------------------------------------------------------------
    # Validity and simulation
    # -------------------------------------------------------------------------

    def graph(self) -> ChipGraph:
        return ChipGraph(self.chip)

    def check_chip_validity(self) -> ValidityReport:
        return self.graph().check_validity(
            fluids=self.fluids,
            droplets=self.droplets,
            injections=self.injections,
            continuous_phase_id=self.continuous_phase_id,
        )

    def simulate(self, max_states_to_return: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None) -> SimulationResult:
        """Run a fresh engine on this chip."""
        from ..core.simulation_engine import SimulationEngine

        engine = SimulationEngine(self, cancel_event=cancel_event)
        return engine.simulate(max_states_to_return)
