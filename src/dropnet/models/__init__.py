from .exceptions import (
    DropNetError,
    TopologyError,
    GeometryError,
    ConfigurationError,
    SolverError,
    ConservationViolation,
    SchedulingDeadlock,
    ChannelNotFoundError,
    FluidNotFoundError,
    DropletNotFoundError,
    StateOrderError,
)
from .chip import ChannelType, ChannelPosition, Channel, FlowRatePump, PressurePump, Chip
from .fluids import Fluid, Droplet, Injection
from .results import (
    DropletState,
    BoundaryState,
    BoundarySnapshot,
    DropletPosition,
    State,
    PathStep,
    SimulationResult,
)
