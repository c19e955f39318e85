"""
This module contains the result records returned by the solution algorithms of capexpand.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from rich.console import Console
from rich.table import Table

from .core import TerminationStatus

if TYPE_CHECKING:
    from .structure import ExpansionModel

logger = logging.getLogger('capexpand')


class SolutionStatus(str, enum.Enum):
    """How a solution algorithm ended.

    ``STOPPED`` marks a monolithic solve that ended without proven optimality, e.g. on a time limit.
    """

    SOLVED = 'solved'
    STOPPED = 'stopped'
    CONVERGED = 'converged'
    ITERATION_LIMIT_REACHED = 'iteration_limit_reached'


@dataclass
class IterationRecord:
    """Bounds after one iteration of the decomposition."""

    iteration: int
    lower_bound: float
    upper_bound: float
    gap: float
    cuts: int
    elapsed_seconds: float


@dataclass
class SolveResult:
    """
    Outcome of solving a case.

    Attributes:
        algorithm: ``'monolithic'`` or ``'benders'``.
        status: How the algorithm ended.
        termination: Termination status of the last solve.
        objective_value: Total discounted cost of the returned solution. NaN if the solver returned no solution.
        lower_bound: Best lower bound. Equals the objective for the monolithic algorithm.
        upper_bound: Best upper bound. Equals the objective for the monolithic algorithm.
        iterations: Number of decomposition iterations. 1 for the monolithic algorithm.
        planning_solution: Capacity of every edge and period, keyed by variable name.
        period_costs: Numeric cost breakdown per period.
        history: Bounds per iteration of the decomposition.
        model: The solved monolithic model, or the planning model of the decomposition.
    """

    algorithm: str
    status: SolutionStatus
    termination: TerminationStatus
    objective_value: float
    lower_bound: float
    upper_bound: float
    iterations: int
    planning_solution: dict[str, float]
    period_costs: pd.DataFrame | None = None
    history: list[IterationRecord] = field(default_factory=list)
    model: ExpansionModel | None = field(default=None, repr=False)

    @property
    def converged(self) -> bool:
        return self.status in (SolutionStatus.SOLVED, SolutionStatus.CONVERGED)

    @property
    def gap(self) -> float:
        if not np.isfinite(self.upper_bound) or not np.isfinite(self.lower_bound):
            return np.inf
        return (self.upper_bound - self.lower_bound) / max(abs(self.upper_bound), 1e-10)

    @property
    def history_frame(self) -> pd.DataFrame:
        if not self.history:
            return pd.DataFrame(columns=['lower_bound', 'upper_bound', 'gap', 'cuts', 'elapsed_seconds'])
        return pd.DataFrame([record.__dict__ for record in self.history]).set_index('iteration')

    def capacity(self, period: str, edge: str) -> float:
        """Planned capacity of an edge (by ``label_full``) in a period (by label)."""
        return self.planning_solution[f'{period}|{edge}|capacity']

    def __str__(self) -> str:
        table = Table(title=f'{self.algorithm} ({self.status.value})', show_header=False)
        table.add_row('Termination', self.termination.value)
        table.add_row('Objective', f'{self.objective_value:,.4f}')
        table.add_row('Lower bound', f'{self.lower_bound:,.4f}')
        table.add_row('Upper bound', f'{self.upper_bound:,.4f}')
        table.add_row('Gap', f'{self.gap:.2e}')
        table.add_row('Iterations', str(self.iterations))
        with StringIO() as output_buffer:
            console = Console(file=output_buffer, width=120)
            console.print(table)
            return output_buffer.getvalue()
