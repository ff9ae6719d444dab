"""
Snapshot recording.

Each recorded State is frozen and gets the next sequential id. When a
retention cap is set only the most recent states are kept, but ids keep
counting over the whole run.
"""

from collections import deque
from typing import Deque, List, Optional

from ..models.exceptions import StateOrderError
from ..models.results import State
from .droplet_tracker import DropletTracker
from .flow_solver import FlowSolution


class StateRecorder:

    def __init__(self, max_states: Optional[int] = None):
        self.max_states = max_states
        self._states: Deque[State] = deque(maxlen=max_states)
        self._next_id = 0
        self.last_time: Optional[float] = None

    def record(self, time: float, flows: FlowSolution, tracker: DropletTracker) -> State:
        if self.last_time is not None and not time > self.last_time:
            raise StateOrderError(f"State time {time} does not advance past {self.last_time}")
        state = State(
            state_id=self._next_id,
            time=time,
            pressures=flows.pressures,
            flow_rates=flows.flow_rates,
            droplet_positions=tracker.positions(),
        )
        self._states.append(state)
        self._next_id += 1
        self.last_time = time
        return state

    @property
    def recorded_count(self) -> int:
        """Number of states recorded, including those dropped by the cap."""
        return self._next_id

    def states(self) -> List[State]:
        return list(self._states)
