"""
Main simulation controller.

Workflow per step:
    1. Solve pressures and flow rates for the current droplet layout
    2. Assign boundary flow rates (slip + inflow/outflow balance)
    3. Compute candidate events
    4. Resolve events due now; otherwise record a state
    5. Advance boundaries to the next event and resolve it

Termination:
    - no_active_droplets: nothing left to inject and nothing moving in the network
    - max_time: simulated-time bound reached
    - max_iterations: iteration bound reached
    - cancelled: cancellation requested by the host
    - failed: any of RUN_ERRORS raised during the run
"""

import copy
import threading
from typing import Optional

from ..utils.logger import Logger
from ..config.simulation_config import SimulationConfig
from ..managers.network.chip_graph import ChipGraph
from ..models.exceptions import (
    ConfigurationError,
    ConservationViolation,
    SchedulingDeadlock,
    SolverError,
    StateOrderError,
)
from ..models.results import SimulationResult
from .droplet_tracker import DropletTracker
from .event_scheduler import EventScheduler
from .flow_solver import FlowSolver
from .resistance_models import create_resistance_model
from .state_recorder import StateRecorder

RUN_ERRORS = (SolverError, SchedulingDeadlock, ConservationViolation, StateOrderError)


class SimulationEngine:
    """
    Runs one simulation of a chip assembled by a ``ChipBuilder``.

    The engine owns copies of every mutable record, so the builder can be
    simulated again and yields identical states.
    """

    def __init__(self, builder, config: Optional[SimulationConfig] = None,
                 cancel_event: Optional[threading.Event] = None):
        Logger.initialize()
        self.builder = builder
        self.config = config or builder.config
        self.cancel_event = cancel_event

        is_valid, error = self.config.validate()
        if not is_valid:
            raise ConfigurationError(f"Invalid configuration: {error}")

        self.time = 0.0
        self.iterations = 0
        self.termination_reason: Optional[str] = None
        self.flows = None

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _prepare(self, max_states: Optional[int]):
        builder = self.builder
        report = builder.check_chip_validity()
        if not report.is_valid:
            Logger.log(f"simulate() refused: {report.messages()}", Logger.LogPriority.ERROR)
            raise report.first_error()

        self.chip = copy.deepcopy(builder.chip)
        self.graph = ChipGraph(self.chip)

        viscosity = None
        if builder.continuous_phase_id is not None:
            viscosity = builder.fluids[builder.continuous_phase_id].viscosity
        self.resistance_model = create_resistance_model(self.config.resistance_model, viscosity)

        self.solver = FlowSolver(self.graph, self.resistance_model)
        self.tracker = DropletTracker(
            self.graph, builder.fluids, builder.droplets, builder.injections,
            slip_factor=self.config.slip_factor,
            enable_merging=self.config.enable_merging,
            volume_tolerance=self.config.volume_tolerance,
        )
        self.scheduler = EventScheduler(
            self.tracker,
            maximal_adaptive_time_step=self.config.maximal_adaptive_time_step,
            stall_duration=self.config.stall_duration,
            time_tolerance=self.config.time_tolerance,
            max_time=self.config.max_time,
        )
        self.recorder = StateRecorder(max_states)
        self.time = 0.0
        self.iterations = 0
        self.termination_reason = None

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def solve_flow(self):
        extra = None
        if self.config.droplet_resistance:
            extra = self.tracker.droplet_resistances(self.resistance_model)
        self.flows = self.solver.solve(extra)
        self.tracker.update_boundaries(self.flows)
        self.tracker.update_stall_state(self.time)
        return self.flows

    def step(self) -> bool:
        """
        Execute one engine iteration.

        Returns:
            True if the simulation should continue, False if terminated.
        """
        self.iterations += 1
        if self.iterations > self.config.max_iterations:
            self.termination_reason = "max_iterations"
            Logger.log(f"Iteration bound {self.config.max_iterations} reached at t={self.time:.6f}s",
                       Logger.LogPriority.WARNING)
            return False

        flows = self.solve_flow()
        events = self.scheduler.compute_events(self.time)

        # 1. Resolve events due now before anything is recorded
        due_now = self.scheduler.zero_time_events(events, self.time)
        if due_now:
            applied = [self.scheduler.apply(e, flows, self.time) for e in due_now]
            self.tracker.check_conservation(self.config.volume_tolerance)
            if any(applied):
                return True
            events = [e for e in events if e not in due_now]

        # 2. Record the settled state
        self.recorder.record(self.time, flows, self.tracker)

        # 3. Check termination
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.termination_reason = "cancelled"
            return False
        if not self.tracker.has_active_droplets():
            self.termination_reason = "no_active_droplets"
            return False
        max_time = self.config.max_time
        if max_time is not None and self.time >= max_time * (1.0 - self.config.time_tolerance):
            self.termination_reason = "max_time"
            return False

        # 4. Advance to the next event and resolve it
        dt = self.scheduler.select_time_step(events, self.time)
        previous = self.time
        self.tracker.advance(dt)
        self.time = previous + dt
        for event in self.scheduler.due_events(events, dt, previous):
            self.scheduler.apply(event, flows, self.time)
        self.tracker.check_conservation(self.config.volume_tolerance)
        return True

    def run(self):
        """Run until termination."""
        Logger.log(f"Starting simulation: max_time={self.config.max_time}, "
                   f"max_step={self.config.maximal_adaptive_time_step}", Logger.LogPriority.INFO)
        while self.step():
            if self.recorder.recorded_count and self.recorder.recorded_count % 1000 == 0:
                Logger.log(f"  t={self.time:.6f}s, states={self.recorder.recorded_count}")
        Logger.log(f"Terminated: {self.termination_reason} at t={self.time:.6f}s "
                   f"after {self.iterations} iterations", Logger.LogPriority.INFO)

    def simulate(self, max_states_to_return: Optional[int] = None) -> SimulationResult:
        """
        Run the simulation and collect the result.

        Args:
            max_states_to_return: Keep only the most recent states; None uses
                the configured cap (all states by default).

        Raises:
            TopologyError, GeometryError: If the chip is invalid.
            ConfigurationError: If the chip is invalid or max_states_to_return < 1.
        """
        Logger.log(f"start simulate({max_states_to_return})")
        if max_states_to_return is not None and max_states_to_return < 1:
            raise ConfigurationError(
                f"Invalid configuration: max_states_to_return must be >= 1, got {max_states_to_return}")
        max_states = max_states_to_return if max_states_to_return is not None else self.config.max_states
        self._prepare(max_states)

        failure = None
        try:
            self.run()
        except RUN_ERRORS as e:
            failure = e
            self.termination_reason = "failed"
            Logger.log(f"Simulation failed at t={self.time:.6f}s: {type(e).__name__}: {e}",
                       Logger.LogPriority.ERROR)

        result = SimulationResult(
            continuous_phase_id=self.builder.continuous_phase_id,
            maximal_adaptive_time_step=self.config.maximal_adaptive_time_step,
            resistance_model=self.config.resistance_model,
            chip=self.chip,
            fluids=dict(self.tracker.fluids),
            droplets=self.tracker.droplets,
            injections=dict(self.tracker.injections),
            states=self.recorder.states(),
            termination_reason=self.termination_reason,
            failure=failure,
        )
        Logger.log(f"end simulate(): {len(result.states)} states, reason={self.termination_reason}")
        return result
