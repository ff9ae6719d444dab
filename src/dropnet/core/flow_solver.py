"""
Hydraulic network solver (modified nodal analysis).

The chip is the hydraulic analog of a resistor network:

    Ohm:        Q_c = (p_node0 - p_node1) / R_c
    Kirchhoff:  sum of flows leaving a node = sum of pump flows entering it

Unknowns are the pressures of all non-ground nodes plus one flow per
pressure pump. Grounds are fixed at 0 Pa. Flow-rate pumps only contribute
to the right-hand side; pressure pumps add one constraint row

    p_node1 - p_node0 = P

and one column carrying their unknown flow. The system is assembled in
sparse form and factorized with SuperLU.

Sign conventions:
    - Channel flow is positive from node0 to node1.
    - Pump flow is positive from node0 to node1 through the pump.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from ..utils.logger import Logger
from ..managers.network.chip_graph import ChipGraph
from ..models.exceptions import SolverError
from .resistance_models import ResistanceModel

# relative residual above which a factorized solution is rejected
RESIDUAL_TOLERANCE = 1e-8


@dataclass(frozen=True)
class FlowSolution:
    """Pressures and flow rates of one solve."""
    pressures: Mapping[int, float]
    flow_rates: Mapping[int, float]

    def channel_flow(self, channel_id: int) -> float:
        return self.flow_rates[channel_id]


class FlowSolver:
    """
    Builds and solves the nodal system for a fixed chip.

    Channel base resistances are computed once; each solve only adds the
    droplet contribution of the current step.
    """

    def __init__(self, graph: ChipGraph, resistance_model: ResistanceModel):
        Logger.log("start FlowSolver__init__")
        self.graph = graph
        self.resistance_model = resistance_model
        chip = graph.chip

        self.free_node_ids = [n for n in graph.nodes() if not graph.is_ground(n)]
        self.node_idx = {nid: i for i, nid in enumerate(self.free_node_ids)}
        self.n_free = len(self.free_node_ids)

        self.channel_ids = sorted(chip.channels)
        self.flow_pump_ids = sorted(chip.flow_rate_pumps)
        self.pressure_pump_ids = sorted(chip.pressure_pumps)
        self.size = self.n_free + len(self.pressure_pump_ids)

        self._precompute_connectivity()
        Logger.log(f"end FlowSolver__init__: {self.n_free} free nodes, "
                   f"{len(self.channel_ids)} channels, {len(self.pressure_pump_ids)} pressure pumps")

    def _index(self, node_id: int) -> int:
        """Matrix index of a node, -1 for grounds."""
        return self.node_idx.get(node_id, -1)

    def _precompute_connectivity(self):
        """Channel endpoint indices and base resistances as arrays."""
        chip = self.graph.chip
        channels = [chip.channels[cid] for cid in self.channel_ids]
        self.channel_i = np.array([self._index(c.node0) for c in channels], dtype=int)
        self.channel_j = np.array([self._index(c.node1) for c in channels], dtype=int)
        self.base_resistance = np.array(
            [self.resistance_model.channel_resistance(c) for c in channels], dtype=np.float64)
        self.channel_pos = {cid: k for k, cid in enumerate(self.channel_ids)}

    def channel_resistance(self, channel_id: int) -> float:
        return float(self.base_resistance[self.channel_pos[channel_id]])

    def total_resistances(self, extra_resistance: Optional[Mapping[int, float]] = None) -> np.ndarray:
        resistances = self.base_resistance.copy()
        if extra_resistance:
            for channel_id, extra in extra_resistance.items():
                resistances[self.channel_pos[channel_id]] += extra
        return resistances

    def assemble(self, resistances: np.ndarray):
        """Return the sparse system matrix and right-hand side."""
        chip = self.graph.chip
        conductance = 1.0 / resistances
        i, j = self.channel_i, self.channel_j

        rows, cols, data = [], [], []
        # diagonal terms for each free endpoint
        for idx in (i, j):
            mask = idx >= 0
            rows.append(idx[mask])
            cols.append(idx[mask])
            data.append(conductance[mask])
        # off-diagonal coupling when both ends are free
        both = (i >= 0) & (j >= 0)
        rows.extend([i[both], j[both]])
        cols.extend([j[both], i[both]])
        data.extend([-conductance[both], -conductance[both]])

        rhs = np.zeros(self.size)
        for pump_id in self.flow_pump_ids:
            pump = chip.flow_rate_pumps[pump_id]
            if self._index(pump.node0) >= 0:
                rhs[self._index(pump.node0)] -= pump.flow_rate
            if self._index(pump.node1) >= 0:
                rhs[self._index(pump.node1)] += pump.flow_rate

        pump_rows, pump_cols, pump_data = [], [], []
        for k, pump_id in enumerate(self.pressure_pump_ids):
            pump = chip.pressure_pumps[pump_id]
            col = self.n_free + k
            a, b = self._index(pump.node0), self._index(pump.node1)
            if a >= 0:
                pump_rows += [a, col]
                pump_cols += [col, a]
                pump_data += [1.0, -1.0]
            if b >= 0:
                pump_rows += [b, col]
                pump_cols += [col, b]
                pump_data += [-1.0, 1.0]
            rhs[col] = pump.pressure
        rows.append(np.array(pump_rows, dtype=int))
        cols.append(np.array(pump_cols, dtype=int))
        data.append(np.array(pump_data, dtype=np.float64))

        matrix = scipy.sparse.coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
            shape=(self.size, self.size),
        ).tocsc()
        return matrix, rhs

    def solve(self, extra_resistance: Optional[Mapping[int, float]] = None) -> FlowSolution:
        """
        Solve pressures and flow rates for the current droplet resistances.

        Args:
            extra_resistance: channel id -> resistance added by droplets.

        Raises:
            SolverError: If the system is singular or the solution is not finite.
        """
        resistances = self.total_resistances(extra_resistance)
        if not np.all(np.isfinite(resistances)) or np.any(resistances <= 0):
            raise SolverError("Channel resistances must be finite and positive.")

        if self.size > 0:
            matrix, rhs = self.assemble(resistances)
            try:
                x = scipy.sparse.linalg.splu(matrix).solve(rhs)
            except RuntimeError as e:
                Logger.log(f"Nodal system factorization failed: {e}", Logger.LogPriority.ERROR)
                raise SolverError(f"Nodal system is singular: {e}")
            if not np.all(np.isfinite(x)):
                raise SolverError("Nodal system produced non-finite values.")
            residual = np.linalg.norm(matrix @ x - rhs)
            scale = max(np.linalg.norm(rhs), np.finfo(float).tiny)
            if residual > RESIDUAL_TOLERANCE * scale and residual > 0:
                raise SolverError(f"Nodal system is inconsistent (residual {residual:.3e}).")
        else:
            x = np.zeros(0)

        pressures: Dict[int, float] = {node_id: 0.0 for node_id in self.graph.ground_nodes()}
        for node_id, k in self.node_idx.items():
            pressures[node_id] = float(x[k])

        node_pressure = np.concatenate([x[:self.n_free], [0.0]])  # index -1 -> ground
        channel_flows = (node_pressure[self.channel_i] - node_pressure[self.channel_j]) / resistances

        flow_rates: Dict[int, float] = {}
        for k, channel_id in enumerate(self.channel_ids):
            flow_rates[channel_id] = float(channel_flows[k])
        for pump_id in self.flow_pump_ids:
            flow_rates[pump_id] = float(self.graph.chip.flow_rate_pumps[pump_id].flow_rate)
        for k, pump_id in enumerate(self.pressure_pump_ids):
            flow_rates[pump_id] = float(x[self.n_free + k])

        return FlowSolution(pressures=pressures, flow_rates=flow_rates)
