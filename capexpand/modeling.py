import logging

import linopy
import numpy as np

from .structure import ExpansionModel
from .time_domain import TimeDomain

logger = logging.getLogger('capexpand')


class TimeLag:
    """Access variables at earlier time steps, wrapping around inside each subperiod of a time domain"""

    @staticmethod
    def positions(time_domain: TimeDomain, steps: int = 1) -> np.ndarray:
        """Position of the time step ``steps`` steps before each step."""
        positions = np.arange(time_domain.n_steps)
        previous = time_domain.previous_positions
        for _ in range(steps):
            positions = previous[positions]
        return positions

    @staticmethod
    def previous(variable: linopy.Variable, time_domain: TimeDomain, steps: int = 1) -> linopy.Variable:
        """The variable shifted by ``steps`` time steps, relabelled onto the original time index.

        Mathematical Formulation:
            previous(x, k)[t] = x[t - k]  (cyclic within the subperiod of t)
        """
        positions = TimeLag.positions(time_domain, steps)
        return variable.isel(time=positions).assign_coords(time=time_domain.index)

    @staticmethod
    def lagged_sum(variable: linopy.Variable, time_domain: TimeDomain, steps: int) -> linopy.LinearExpression:
        """Sum of the variable over the current and the ``steps - 1`` preceding time steps.

        Mathematical Formulation:
            lagged_sum(x, K)[t] = sum_{k=0}^{K-1} x[t - k]
        """
        if steps < 1:
            raise ValueError(f'A lagged sum needs at least one step, got {steps}')
        steps = min(steps, time_domain.hours_per_subperiod)
        return sum([TimeLag.previous(variable, time_domain, k) if k else variable for k in range(steps)])


class ModelingPrimitives:
    """Mathematical modeling primitives shared by edges and assets"""

    @staticmethod
    def state_transition(
        model: ExpansionModel,
        state: linopy.Variable,
        increase: linopy.Variable,
        decrease: linopy.Variable,
        time_domain: TimeDomain,
        name: str,
    ) -> linopy.Constraint:
        """
        Links a state to the variables tracking its changes.

        Mathematical Formulation:
            increase[t] - decrease[t] = state[t] - state[t-1]  ∀t  (cyclic within each subperiod)
        """
        return model.add_constraints(
            state - TimeLag.previous(state, time_domain) - increase + decrease == 0,
            name=name,
        )

    @staticmethod
    def storage_balance(
        model: ExpansionModel,
        level: linopy.Variable,
        charge: linopy.Variable,
        discharge: linopy.Variable,
        time_domain: TimeDomain,
        charge_efficiency: float,
        discharge_efficiency: float,
        self_discharge: float,
        name: str,
    ) -> linopy.Constraint:
        """
        Tracks the energy content of a storage.

        Mathematical Formulation:
            level[t] = level[t-1] * (1 - self_discharge)^h + h * (eta_c * charge[t] - discharge[t] / eta_d)

        with h the duration of one time step in hours.
        """
        hours = time_domain.hours_per_timestep
        retention = (1 - self_discharge) ** hours
        return model.add_constraints(
            level
            - TimeLag.previous(level, time_domain) * retention
            - charge * (hours * charge_efficiency)
            + discharge * (hours / discharge_efficiency)
            == 0,
            name=name,
        )


def scale_constraints(model: linopy.Model) -> int:
    """Divide every constraint row by its largest absolute coefficient.

    Rows without coefficients are left unchanged. Returns the number of scaled constraints.
    """
    scaled = 0
    for name in list(model.constraints):
        constraint = model.constraints[name]
        magnitude = abs(constraint.coeffs).where(constraint.vars != -1).max('_term')
        magnitude = magnitude.where(magnitude > 0).fillna(1)
        if bool((magnitude == 1).all()):
            continue
        constraint.coeffs = constraint.coeffs / magnitude
        constraint.rhs = constraint.rhs / magnitude
        scaled += 1
    logger.debug(f'Scaled {scaled} of {len(model.constraints)} constraints')
    return scaled

