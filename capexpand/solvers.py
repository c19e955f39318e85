"""
This module contains the solver settings of capexpand, making them available to the end user in a compact way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .config import CONFIG

logger = logging.getLogger('capexpand')


@dataclass
class _Solver:
    """
    Abstract base class for solvers.

    Args:
        mip_gap: Solver's mip gap setting. The MIP gap describes the accepted (MILP) objective,
            and the lower bound, which is the theoretically optimal solution (LP)
        time_limit_seconds: Solver's time limit in seconds.
        log_to_console: Whether the solver writes its log to the console.
        extra_options: Additional solver options, passed to the solver unchanged
            (e.g. ``{'solver': 'ipm', 'run_crossover': 'off'}`` for HiGHS).
    """

    name: ClassVar[str]
    mip_gap: float = field(default_factory=lambda: CONFIG.Solving.mip_gap)
    time_limit_seconds: int = field(default_factory=lambda: CONFIG.Solving.time_limit_seconds)
    log_to_console: bool = field(default_factory=lambda: CONFIG.Solving.log_to_console)
    extra_options: dict[str, Any] = field(default_factory=dict)

    @property
    def options(self) -> dict[str, Any]:
        """Return a dictionary of solver options."""
        return {key: value for key, value in {**self._options, **self.extra_options}.items() if value is not None}

    @property
    def _options(self) -> dict[str, Any]:
        """Return a dictionary of solver options, translated to the solver's API."""
        raise NotImplementedError


@dataclass
class GurobiSolver(_Solver):
    """
    Args:
        mip_gap: Solver's mip gap setting. The MIP gap describes the accepted (MILP) objective,
            and the lower bound, which is the theoretically optimal solution (LP)
        time_limit_seconds: Solver's time limit in seconds.
        log_to_console: Whether the solver writes its log to the console.
        extra_options: Additional solver options (e.g. ``{'Method': 2, 'Crossover': 0}``).
    """

    name: ClassVar[str] = 'gurobi'

    @property
    def _options(self) -> dict[str, Any]:
        return {
            'MIPGap': self.mip_gap,
            'TimeLimit': self.time_limit_seconds,
            'LogToConsole': int(self.log_to_console),
        }


@dataclass
class HighsSolver(_Solver):
    """
    HiGHS solver configuration.

    Attributes:
        mip_gap: Solver's mip gap setting. The MIP gap describes the accepted (MILP) objective,
            and the lower bound, which is the theoretically optimal solution (LP)
        time_limit_seconds: Solver's time limit in seconds.
        log_to_console: Whether the solver writes its log to the console.
        extra_options: Additional solver options.
        threads: Number of threads to use. Defaults to None.
    """

    threads: int | None = None
    name: ClassVar[str] = 'highs'

    @property
    def _options(self) -> dict[str, Any]:
        return {
            'mip_rel_gap': float(self.mip_gap),
            'time_limit': float(self.time_limit_seconds),
            'log_to_console': self.log_to_console,
            'threads': self.threads,
        }
