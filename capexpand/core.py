"""
This module contains the core functionality of capexpand.
It provides datatypes, the error taxonomy and helpers to bring user data onto model coordinates.
"""

from __future__ import annotations

import enum
import logging
from typing import Union

import numpy as np
import pandas as pd
import xarray as xr

logger = logging.getLogger('capexpand')

Scalar = Union[int, float]
"""A single number, either integer or float."""

TemporalDataUser = Union[int, float, np.integer, np.floating, np.ndarray, list, pd.Series, xr.DataArray]
"""User data which might have a time dimension. Internally converted to an xr.DataArray with a 'time' dimension."""


class PlausibilityError(Exception):
    """Error for a failing plausibility check of an element."""

    pass


class AllocationError(Exception):
    """An edge declares a capability without the attributes needed to bound its variables."""

    pass


class AssemblyError(Exception):
    """The case cannot be assembled: inconsistent period ordering, shared edges or a missing carry-over target."""

    pass


class ConversionError(Exception):
    """Data could not be brought onto the coordinates of a time domain."""

    pass


class ConvergenceWarning(UserWarning):
    """The decomposition stopped before the bounds met the gap tolerance."""

    pass


class Stage(str, enum.Enum):
    """The solve stage at which a termination status was reported."""

    MONOLITHIC = 'monolithic'
    PLANNING = 'planning'
    SUBPROBLEM = 'subproblem'


class TerminationStatus(str, enum.Enum):
    """Solver termination, normalized over the termination conditions linopy reports."""

    OPTIMAL = 'optimal'
    INFEASIBLE = 'infeasible'
    UNBOUNDED = 'unbounded'
    INFEASIBLE_OR_UNBOUNDED = 'infeasible_or_unbounded'
    TIME_LIMIT = 'time_limit'
    NUMERICAL_ERROR = 'numerical_error'
    OTHER = 'other'

    @classmethod
    def from_linopy(cls, condition: str | None) -> TerminationStatus:
        condition = str(getattr(condition, 'value', condition)).lower()
        if condition in _LINOPY_TERMINATION:
            return _LINOPY_TERMINATION[condition]
        return cls.OTHER

    @property
    def is_failure(self) -> bool:
        """Infeasible and unbounded solves abort the stage that produced them."""
        return self in (
            TerminationStatus.INFEASIBLE,
            TerminationStatus.UNBOUNDED,
            TerminationStatus.INFEASIBLE_OR_UNBOUNDED,
        )


_LINOPY_TERMINATION = {
    'optimal': TerminationStatus.OPTIMAL,
    'infeasible': TerminationStatus.INFEASIBLE,
    'unbounded': TerminationStatus.UNBOUNDED,
    'infeasible_or_unbounded': TerminationStatus.INFEASIBLE_OR_UNBOUNDED,
    'time_limit': TerminationStatus.TIME_LIMIT,
    'iteration_limit': TerminationStatus.TIME_LIMIT,
    'terminated_by_limit': TerminationStatus.TIME_LIMIT,
    'suboptimal': TerminationStatus.NUMERICAL_ERROR,
    'imprecise': TerminationStatus.NUMERICAL_ERROR,
    'numeric': TerminationStatus.NUMERICAL_ERROR,
    'internal_solver_error': TerminationStatus.NUMERICAL_ERROR,
    'error': TerminationStatus.NUMERICAL_ERROR,
}


class SolveError(Exception):
    """A solve that failed or left no usable solution, tagged with the stage (and period) at which it occurred."""

    def __init__(
        self,
        message: str,
        stage: Stage,
        termination: TerminationStatus,
        period: int | None = None,
    ):
        self.stage = Stage(stage)
        self.termination = termination
        self.period = period
        location = f'{self.stage.value} stage' if period is None else f'{self.stage.value} stage of period {period}'
        super().__init__(f'{message} ({location}, termination={termination.value})')


def as_time_array(data: TemporalDataUser, index: pd.Index, name: str | None = None) -> xr.DataArray:
    """Convert scalar or time-series user data to a DataArray over the given time index.

    Args:
        data: A scalar, or one value per time step (list, array, Series or DataArray).
        index: The time index the data must match. Its name is used as dimension.
        name: Name of the resulting DataArray, used in error messages.

    Raises:
        ConversionError: If the data has more than one dimension or the wrong length.
    """
    dim = index.name or 'time'
    if isinstance(data, xr.DataArray):
        if data.ndim == 0:
            data = data.item()
        else:
            data = data.values
    elif isinstance(data, pd.Series):
        data = data.to_numpy()

    if np.isscalar(data):
        return xr.DataArray(np.full(len(index), float(data)), coords={dim: index}, dims=[dim], name=name)

    values = np.asarray(data, dtype=float)
    if values.ndim != 1:
        raise ConversionError(f'"{name}" must be one-dimensional, got shape {values.shape}')
    if values.size != len(index):
        raise ConversionError(f'"{name}" has {values.size} values, but the time domain has {len(index)} time steps')
    return xr.DataArray(values, coords={dim: index}, dims=[dim], name=name)
