"""
The time domain of one period: ordered operational time steps and the hours each of them represents.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd
import xarray as xr

from .core import Scalar

logger = logging.getLogger('capexpand')


class TimeDomain:
    """
    Ordered operational time steps of one period, grouped into subperiods.

    Each subperiod is a block of consecutive time steps standing in for a number of
    real-world occurrences (its weight). Time steps wrap around cyclically inside
    their subperiod: the step before the first step of a subperiod is its last step.

    Args:
        time_steps: Number of time steps (labelled 1..T) or explicit time step labels.
        hours_per_timestep: Duration of one time step in hours.
        hours_per_subperiod: Number of time steps per subperiod. Defaults to the whole horizon.
        subperiod_weights: Occurrences represented by each subperiod. Defaults to 1 for every subperiod.

    Examples:
        One day at hourly resolution:

        >>> TimeDomain(24)

        Two representative weeks, the first standing in for 30 weeks and the second for 22:

        >>> TimeDomain(336, hours_per_subperiod=168, subperiod_weights=[30, 22])
    """

    def __init__(
        self,
        time_steps: int | Sequence | pd.Index,
        hours_per_timestep: Scalar = 1,
        hours_per_subperiod: int | None = None,
        subperiod_weights: Sequence[Scalar] | np.ndarray | None = None,
    ):
        if isinstance(time_steps, (int, np.integer)):
            if time_steps < 1:
                raise ValueError(f'A time domain needs at least one time step, got {time_steps}')
            index = pd.RangeIndex(1, int(time_steps) + 1, name='time')
        else:
            index = pd.Index(time_steps, name='time')
        if index.empty:
            raise ValueError('A time domain needs at least one time step')
        if not index.is_unique:
            raise ValueError('Time step labels must be unique')
        if hours_per_timestep <= 0:
            raise ValueError(f'hours_per_timestep must be positive, got {hours_per_timestep}')

        n_steps = len(index)
        hours_per_subperiod = n_steps if hours_per_subperiod is None else int(hours_per_subperiod)
        if hours_per_subperiod < 1 or n_steps % hours_per_subperiod != 0:
            raise ValueError(
                f'{n_steps} time steps cannot be split into subperiods of {hours_per_subperiod} time steps'
            )
        n_subperiods = n_steps // hours_per_subperiod

        if subperiod_weights is None:
            subperiod_weights = np.ones(n_subperiods)
        subperiod_weights = np.asarray(subperiod_weights, dtype=float)
        if subperiod_weights.shape != (n_subperiods,):
            raise ValueError(f'Expected {n_subperiods} subperiod weights, got {subperiod_weights.size}')
        if (subperiod_weights < 0).any():
            raise ValueError('Subperiod weights must not be negative')

        self.index = index
        self.hours_per_timestep = float(hours_per_timestep)
        self.hours_per_subperiod = hours_per_subperiod
        self.subperiod_weights = subperiod_weights

    @classmethod
    def from_representative_periods(
        cls,
        occurrences: Sequence[int],
        hours_per_subperiod: int,
        hours_per_timestep: Scalar = 1,
        weight_total: Scalar = 8760,
    ) -> TimeDomain:
        """Build a time domain from representative subperiods and how often each of them occurs.

        The weights are scaled so that the weighted hours of all time steps add up to ``weight_total``.

        Args:
            occurrences: Number of real subperiods mapped onto each representative subperiod.
            hours_per_subperiod: Number of time steps per representative subperiod.
            hours_per_timestep: Duration of one time step in hours.
            weight_total: Total hours the time domain represents (8760 for one year).
        """
        occurrences = np.asarray(occurrences, dtype=float)
        if occurrences.sum() <= 0:
            raise ValueError('At least one representative subperiod must occur')
        represented_hours = occurrences.sum() * hours_per_subperiod * hours_per_timestep
        weights = occurrences * weight_total / represented_hours
        return cls(
            len(occurrences) * hours_per_subperiod,
            hours_per_timestep=hours_per_timestep,
            hours_per_subperiod=hours_per_subperiod,
            subperiod_weights=weights,
        )

    @property
    def n_steps(self) -> int:
        return len(self.index)

    @property
    def n_subperiods(self) -> int:
        return self.n_steps // self.hours_per_subperiod

    @property
    def subperiod_of_step(self) -> np.ndarray:
        """Subperiod position of each time step."""
        return np.arange(self.n_steps) // self.hours_per_subperiod

    @property
    def weights(self) -> xr.DataArray:
        """Hours represented by each time step."""
        values = self.subperiod_weights[self.subperiod_of_step] * self.hours_per_timestep
        return xr.DataArray(values, coords={'time': self.index}, dims=['time'], name='weights')

    @property
    def total_hours(self) -> float:
        return float(self.weights.sum())

    @property
    def previous_positions(self) -> np.ndarray:
        """Position of the step before each step, wrapping around inside each subperiod."""
        positions = np.arange(self.n_steps)
        start = self.subperiod_of_step * self.hours_per_subperiod
        return start + (positions - start - 1) % self.hours_per_subperiod

    def previous(self, step):
        """Label of the time step before ``step``."""
        return self.index[self.previous_positions[self.index.get_loc(step)]]

    def __len__(self) -> int:
        return self.n_steps

    def __repr__(self) -> str:
        return (
            f'TimeDomain(n_steps={self.n_steps}, hours_per_timestep={self.hours_per_timestep}, '
            f'n_subperiods={self.n_subperiods})'
        )
