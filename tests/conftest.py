"""
The conftest.py file is used by pytest to define shared fixtures, hooks, and configuration
that apply to multiple test files without needing explicit imports.
It helps avoid redundancy and centralizes reusable test logic.
"""

import logging

import linopy
import linopy.testing
import numpy as np
import pytest
import xarray as xr

import capexpand as cx

# ============================================================================
# SOLVER FIXTURES
# ============================================================================


@pytest.fixture()
def highs_solver():
    return cx.HighsSolver(mip_gap=0, time_limit_seconds=300, log_to_console=False)


@pytest.fixture()
def gurobi_solver():
    pytest.importorskip('gurobipy', reason='Gurobi not available in this environment')
    return cx.GurobiSolver(mip_gap=0, time_limit_seconds=300, log_to_console=False)


@pytest.fixture(params=[highs_solver, gurobi_solver], ids=['highs', 'gurobi'])
def solver_fixture(request):
    return request.getfixturevalue(request.param.__name__)


@pytest.fixture(autouse=True)
def _quiet_config():
    """Keep solver output and progress bars off the console, then restore the defaults."""
    cx.CONFIG.Solving.log_to_console = False
    cx.CONFIG.Solving.log_main_results = False
    yield
    cx.CONFIG.reset()
    logging.getLogger('capexpand').propagate = True


# ============================================================================
# CASE BUILDERS
# ============================================================================


def single_period_case(nodes, assets, n_steps: int = 3, **settings) -> cx.Case:
    """One period labelled 'p1' over ``n_steps`` hourly time steps, no discounting."""
    settings.setdefault('period_lengths', (1,))
    period = cx.Period('p1', cx.NetworkGraph(nodes, assets), cx.TimeDomain(n_steps))
    return cx.Case([period], cx.CaseSettings(**settings))


def multi_period_case(network_factory, n_periods: int, n_steps: int = 1, **settings) -> cx.Case:
    """``n_periods`` periods labelled 'p1', 'p2', ..., each with a fresh network from ``network_factory(index)``."""
    settings.setdefault('period_lengths', (1,) * n_periods)
    periods = [
        cx.Period(f'p{index}', network_factory(index), cx.TimeDomain(n_steps)) for index in range(1, n_periods + 1)
    ]
    return cx.Case(periods, cx.CaseSettings(**settings))


def solar_profile(n_steps: int = 24) -> np.ndarray:
    hours = np.arange(n_steps) % 24
    return np.clip(np.sin((hours - 6) / 12 * np.pi), 0, None)


def wind_profile(n_steps: int = 24) -> np.ndarray:
    return 0.45 + 0.35 * np.cos(np.arange(n_steps) / n_steps * 4 * np.pi)


def two_node_network(index: int, n_steps: int = 24) -> cx.NetworkGraph:
    """Two nodes with ten edges in total, all continuous.

    Only a few edges can be expanded, the rest operate existing capacity. Both nodes
    value non-served demand, so every capacity decision has a feasible operation.
    """
    growth = 1 + 0.15 * (index - 1)
    demand_north = growth * (40 + 10 * np.sin(np.arange(n_steps) / n_steps * 2 * np.pi))
    demand_south = growth * (30 + 8 * np.cos(np.arange(n_steps) / n_steps * 2 * np.pi))
    return cx.NetworkGraph(
        nodes=[
            cx.Node('North', demand=demand_north, non_served_price=500),
            cx.Node('South', demand=demand_south, non_served_price=500),
        ],
        assets=[
            cx.ThermalPlant(
                'Coal',
                node='North',
                existing_capacity=25,
                fixed_om_cost=3,
                variable_om_cost=20,
                ramping=True,
                ramp_up_fraction=0.3,
                ramp_down_fraction=0.3,
            ),
            cx.ThermalPlant('Gas', node='South', can_expand=True, investment_cost=120, variable_om_cost=45),
            cx.ThermalPlant(
                'Peaker', node='North', existing_capacity=15, can_retire=True, fixed_om_cost=8, variable_om_cost=90
            ),
            cx.ThermalPlant('Nuclear', node='South', existing_capacity=10, fixed_om_cost=15, variable_om_cost=5),
            cx.VariableRenewable(
                'Solar', node='North', availability=solar_profile(n_steps), can_expand=True, investment_cost=150
            ),
            cx.VariableRenewable('Wind', node='South', availability=wind_profile(n_steps), existing_capacity=20),
            cx.VariableRenewable('Hydro', node='South', availability=0.5, existing_capacity=8, variable_om_cost=2),
            cx.Battery(
                'Storage',
                node='North',
                duration_hours=4,
                charge_efficiency=0.95,
                discharge_efficiency=0.95,
                can_expand=True,
                investment_cost=90,
            ),
            cx.TransmissionLine('Line', start_node='North', end_node='South', existing_capacity=10),
        ],
    )


# ============================================================================
# ASSERTIONS
# ============================================================================


def assert_conequal(actual: linopy.Constraint, desired: linopy.Constraint):
    """Assert that two constraints are equal with detailed error messages."""

    try:
        linopy.testing.assert_linequal(actual.lhs, desired.lhs)
    except AssertionError as e:
        raise AssertionError(f"{actual.name} left-hand sides don't match:\n{e}") from e

    try:
        xr.testing.assert_equal(actual.sign, desired.sign)
    except AssertionError as e:
        raise AssertionError(f"{actual.name} signs don't match:\n{e}") from e

    try:
        xr.testing.assert_equal(actual.rhs, desired.rhs)
    except AssertionError as e:
        raise AssertionError(f"{actual.name} right-hand sides don't match:\n{e}") from e


def assert_var_equal(actual: linopy.Variable, desired: linopy.Variable):
    """Assert that two variables have the same bounds and coordinates."""
    name = actual.name
    try:
        xr.testing.assert_equal(actual.lower, desired.lower)
    except AssertionError as e:
        raise AssertionError(
            f"{name} lower bounds don't match:\nActual: {actual.lower}\nExpected: {desired.lower}"
        ) from e

    try:
        xr.testing.assert_equal(actual.upper, desired.upper)
    except AssertionError as e:
        raise AssertionError(
            f"{name} upper bounds don't match:\nActual: {actual.upper}\nExpected: {desired.upper}"
        ) from e

    if actual.type != desired.type:
        raise AssertionError(f"{name} types don't match: {actual.type} != {desired.type}")
