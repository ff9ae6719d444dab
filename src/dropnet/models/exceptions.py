class DropNetError(Exception):
    """Base class for all simulator errors."""
    def __init__(self, message="DropNet simulation error."):
        super().__init__(message)


class TopologyError(DropNetError):
    """Dangling reference, disconnected network, missing ground or sink."""
    def __init__(self, message="Invalid chip topology."):
        super().__init__(message)


class GeometryError(DropNetError):
    """Non-positive channel dimensions or a droplet that does not fit its channel."""
    def __init__(self, message="Invalid channel geometry."):
        super().__init__(message)


class ConfigurationError(DropNetError):
    """Unknown fluid, missing continuous phase or unsupported model selector."""
    def __init__(self, message="Invalid simulation configuration."):
        super().__init__(message)


class SolverError(DropNetError):
    """Singular or inconsistent nodal system."""
    def __init__(self, message="Flow solver failed: singular or inconsistent system."):
        super().__init__(message)


class ConservationViolation(DropNetError):
    """Droplet volume no longer reconciles with its boundary positions."""
    def __init__(self, message="Droplet volume conservation violated."):
        super().__init__(message)


class SchedulingDeadlock(DropNetError):
    """Active droplets remain but no finite next event exists."""
    def __init__(self, message="No finite next event while droplets are still active."):
        super().__init__(message)


class ChannelNotFoundError(TopologyError):
    """Channel ID not found in the chip."""
    def __init__(self, message="Channel ID not found in chip."):
        super().__init__(message)


class FluidNotFoundError(ConfigurationError):
    """Fluid ID not registered."""
    def __init__(self, message="Fluid ID not found."):
        super().__init__(message)


class DropletNotFoundError(DropNetError):
    """Droplet ID not registered."""
    def __init__(self, message="Droplet ID not found."):
        super().__init__(message)


class StateOrderError(DropNetError):
    """A recorded state does not advance simulated time."""
    def __init__(self, message="Recorded states must have strictly increasing time."):
        super().__init__(message)
