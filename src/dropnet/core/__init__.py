"""
DropNet Core Module

Flow solver, droplet tracker, event scheduler and the simulation engine.
"""

from .flow_solver import FlowSolver, FlowSolution
from .droplet_tracker import DropletTracker, Boundary, DropletRecord, Exit
from .event_scheduler import EventScheduler, Event, EventKind
from .state_recorder import StateRecorder
from .simulation_engine import SimulationEngine

__all__ = [
    "FlowSolver",
    "FlowSolution",
    "DropletTracker",
    "Boundary",
    "DropletRecord",
    "Exit",
    "EventScheduler",
    "Event",
    "EventKind",
    "StateRecorder",
    "SimulationEngine",
]
