"""
This module contains the CostAggregator, which discounts the per-period cost registers and forms the objectives.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

import linopy
import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .case import CaseSettings
    from .model_builder import PeriodCosts

logger = logging.getLogger('capexpand')


class CostAggregator:
    """
    Applies multi-period discounting and multi-year operational weighting to per-period costs.

    For period s (starting at 1) with length L_s years and discount rate r:

    - ``discount_factor[s] = 1 / (1 + r) ** (L_1 + ... + L_{s-1})``
    - ``opex_multiplier[s] = sum_{i=1}^{L_s} 1 / (1 + r) ** i``

    Fixed costs (investment and fixed O&M) are discounted once. Variable costs describe one
    representative year and are weighted by the opex multiplier as well.

    Args:
        discount_rate: Yearly discount rate, at least 0.
        period_lengths: Years covered by each period, positive integers.

    Raises:
        ValueError: If the discount rate is negative or a period length is not a positive integer.
    """

    def __init__(self, discount_rate: float, period_lengths: Sequence[int]):
        if discount_rate < 0:
            raise ValueError(f'discount_rate must not be negative, got {discount_rate}')
        period_lengths = list(period_lengths)
        for length in period_lengths:
            if int(length) != length or length < 1:
                raise ValueError(f'Period lengths must be positive integers, got {period_lengths}')
        self.discount_rate = float(discount_rate)
        self.period_lengths = [int(length) for length in period_lengths]

    @classmethod
    def from_settings(cls, settings: CaseSettings) -> CostAggregator:
        return cls(settings.discount_rate, settings.period_lengths)

    @property
    def n_periods(self) -> int:
        return len(self.period_lengths)

    @property
    def years_before(self) -> np.ndarray:
        """Cumulative years before the start of each period. 0 for the first period."""
        return np.concatenate([[0], np.cumsum(self.period_lengths)[:-1]]).astype(int)

    @property
    def discount_factors(self) -> np.ndarray:
        return 1 / (1 + self.discount_rate) ** self.years_before

    @property
    def opex_multipliers(self) -> np.ndarray:
        return np.array(
            [sum(1 / (1 + self.discount_rate) ** i for i in range(1, length + 1)) for length in self.period_lengths]
        )

    def discount_factor(self, period: int) -> float:
        return float(self.discount_factors[self._position(period)])

    def opex_multiplier(self, period: int) -> float:
        return float(self.opex_multipliers[self._position(period)])

    def discounted_fixed(self, costs: PeriodCosts, period: int) -> linopy.LinearExpression:
        return costs.fixed * self.discount_factor(period)

    def discounted_variable(self, costs: PeriodCosts, period: int) -> linopy.LinearExpression:
        return costs.variable * (self.discount_factor(period) * self.opex_multiplier(period))

    def objective(self, period_costs: Sequence[PeriodCosts]) -> linopy.LinearExpression:
        """Total discounted cost over all periods."""
        self._check_length(period_costs)
        return sum(
            [
                self.discounted_fixed(costs, period) + self.discounted_variable(costs, period)
                for period, costs in enumerate(period_costs, start=1)
            ]
        )

    def planning_objective(
        self, period_costs: Sequence[PeriodCosts], cost_to_go: Sequence[linopy.Variable]
    ) -> linopy.LinearExpression:
        """Discounted fixed costs plus the cost-to-go variables approximating the discounted operating costs."""
        self._check_length(period_costs)
        fixed = sum([self.discounted_fixed(costs, period) for period, costs in enumerate(period_costs, start=1)])
        return fixed + sum(cost_to_go)

    def subproblem_objective(self, costs: PeriodCosts, period: int) -> linopy.LinearExpression:
        """Discounted operating cost of a single period."""
        return self.discounted_variable(costs, period)

    def breakdown(self, period_costs: Sequence[PeriodCosts]) -> pd.DataFrame:
        """Numeric cost breakdown per period of a solved model."""
        return self.tabulate([costs.values() for costs in period_costs])

    def tabulate(self, period_values: Sequence[dict[str, float]]) -> pd.DataFrame:
        """Cost breakdown from numeric register values (keys ``investment``, ``om_fixed``, ``fixed``, ``variable``)."""
        self._check_length(period_values)
        rows = []
        for period, values in enumerate(period_values, start=1):
            values = dict(values)
            discount_factor = self.discount_factor(period)
            opex_multiplier = self.opex_multiplier(period)
            values['discount_factor'] = discount_factor
            values['opex_multiplier'] = opex_multiplier
            values['discounted'] = discount_factor * (values['fixed'] + opex_multiplier * values['variable'])
            rows.append(values)
        return pd.DataFrame(rows, index=pd.RangeIndex(1, len(rows) + 1, name='period'))

    def _position(self, period: int) -> int:
        if not 1 <= period <= self.n_periods:
            raise IndexError(f'Period {period} does not exist, there are {self.n_periods} periods')
        return period - 1

    def _check_length(self, period_costs: Sequence) -> None:
        if len(period_costs) != self.n_periods:
            raise ValueError(f'Expected costs of {self.n_periods} periods, got {len(period_costs)}')

    def __repr__(self) -> str:
        return f'CostAggregator(discount_rate={self.discount_rate}, period_lengths={self.period_lengths})'
