"""
This module contains the solution algorithms of capexpand and the DecompositionController driving them.

Two algorithms are available:

- :class:`Monolithic`: all periods are assembled into one program and solved once.
- :class:`Benders`: a planning problem over the capacities of all periods alternates with one
  operational subproblem per period. Every subproblem returns its operating cost and the duals of the
  constraints fixing its capacities, which become optimality cuts on the cost-to-go variables of the
  planning problem.
"""

from __future__ import annotations

import enum
import logging
import sys
import timeit
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

import linopy
import numpy as np
from tqdm import tqdm

from .config import CONFIG
from .core import AssemblyError, ConvergenceWarning, SolveError, Stage, TerminationStatus
from .costs import CostAggregator
from .model_builder import ModelBuilder, PeriodCosts
from .preallocation import ModelScope
from .results import IterationRecord, SolutionStatus, SolveResult
from .solvers import HighsSolver

if TYPE_CHECKING:
    from .case import Case
    from .solvers import _Solver
    from .structure import ExpansionModel

logger = logging.getLogger('capexpand')


@dataclass(frozen=True)
class SolutionAlgorithm:
    """Base class of the solution algorithms."""

    name: ClassVar[str]


@dataclass(frozen=True)
class Monolithic(SolutionAlgorithm):
    """Assemble all periods into one program and solve it once."""

    name: ClassVar[str] = 'monolithic'


@dataclass(frozen=True)
class Benders(SolutionAlgorithm):
    """
    Benders decomposition into a planning problem and one operational subproblem per period.

    Args:
        max_iterations: Iterations before the loop stops with the best solution found.
        gap_tolerance: Relative gap ``(UB - LB) / max(|UB|, 1e-10)`` at which the loop has converged.
        time_limit_seconds: Wall-clock limit including model assembly, checked before every iteration
            after the first. None for no limit.
        max_workers: Threads solving the subproblems of one iteration.
        multicut: One cost-to-go variable and cut per period. If False, a single aggregated cut.
    """

    name: ClassVar[str] = 'benders'
    max_iterations: int = field(default_factory=lambda: CONFIG.Decomposition.max_iterations)
    gap_tolerance: float = field(default_factory=lambda: CONFIG.Decomposition.gap_tolerance)
    time_limit_seconds: float | None = field(default_factory=lambda: CONFIG.Decomposition.time_limit_seconds)
    max_workers: int = field(default_factory=lambda: CONFIG.Decomposition.max_workers)
    multicut: bool = field(default_factory=lambda: CONFIG.Decomposition.multicut)

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError(f'max_iterations must be at least 1, got {self.max_iterations}')
        if self.gap_tolerance < 0:
            raise ValueError(f'gap_tolerance must not be negative, got {self.gap_tolerance}')
        if self.max_workers < 1:
            raise ValueError(f'max_workers must be at least 1, got {self.max_workers}')


class DecompositionStage(str, enum.Enum):
    """States of the solution algorithms."""

    BUILT = 'built'
    SOLVED = 'solved'
    INITIALIZED = 'initialized'
    PLANNING_SOLVED = 'planning_solved'
    SUBPROBLEMS_SOLVED = 'subproblems_solved'
    CONVERGED = 'converged'
    ITERATION_LIMIT_REACHED = 'iteration_limit_reached'


_TRANSITIONS: dict[DecompositionStage | None, set[DecompositionStage]] = {
    None: {DecompositionStage.BUILT, DecompositionStage.INITIALIZED},
    DecompositionStage.BUILT: {DecompositionStage.SOLVED},
    DecompositionStage.INITIALIZED: {DecompositionStage.PLANNING_SOLVED, DecompositionStage.ITERATION_LIMIT_REACHED},
    DecompositionStage.PLANNING_SOLVED: {
        DecompositionStage.SUBPROBLEMS_SOLVED,
        DecompositionStage.CONVERGED,
        DecompositionStage.ITERATION_LIMIT_REACHED,
    },
    DecompositionStage.SUBPROBLEMS_SOLVED: {
        DecompositionStage.PLANNING_SOLVED,
        DecompositionStage.CONVERGED,
        DecompositionStage.ITERATION_LIMIT_REACHED,
    },
}


@dataclass
class Cut:
    """Optimality cut of one period: theta >= cost + sum_k dual_k * (x_k - point_k)"""

    period: int
    iteration: int
    cost: float
    duals: dict[str, float]
    point: dict[str, float]


@dataclass
class DecompositionState:
    """Mutable state of a solution algorithm."""

    stage: DecompositionStage | None = None
    iteration: int = 0
    planning_solution: dict[str, float] = field(default_factory=dict)
    cuts: list[Cut] = field(default_factory=list)
    lower_bound: float = -np.inf
    upper_bound: float = np.inf
    best_solution: dict[str, float] = field(default_factory=dict)
    best_costs: list[dict[str, float]] = field(default_factory=list)
    termination: TerminationStatus = TerminationStatus.OPTIMAL
    history: list[IterationRecord] = field(default_factory=list)

    def advance(self, stage: DecompositionStage) -> None:
        current = self.stage.value if self.stage is not None else 'start'
        if stage not in _TRANSITIONS.get(self.stage, set()):
            raise RuntimeError(f'Invalid transition from {current} to {stage.value}')
        logger.debug(f'{current} -> {stage.value}')
        self.stage = stage

    @property
    def gap(self) -> float:
        if not np.isfinite(self.upper_bound) or not np.isfinite(self.lower_bound):
            return np.inf
        return (self.upper_bound - self.lower_bound) / max(abs(self.upper_bound), 1e-10)


@dataclass
class _Subproblem:
    period: int
    model: ExpansionModel
    costs: PeriodCosts
    fixed: bool = False


class DecompositionController:
    """
    Solves a case with the algorithm chosen in its settings.

    Args:
        case: The case to solve.
        solver: Solver used for every solve.
        planning_solver: Solver of the Benders planning problem. Defaults to ``solver``.
        subproblem_solver: Solver of the Benders subproblems. Defaults to ``solver``.
    """

    def __init__(
        self,
        case: Case,
        solver: _Solver | None = None,
        planning_solver: _Solver | None = None,
        subproblem_solver: _Solver | None = None,
    ):
        self.case = case
        self.solver = solver if solver is not None else HighsSolver()
        self.planning_solver = planning_solver if planning_solver is not None else self.solver
        self.subproblem_solver = subproblem_solver if subproblem_solver is not None else self.solver
        self.aggregator = CostAggregator.from_settings(case.settings)
        self.state = DecompositionState()

    @property
    def algorithm(self) -> SolutionAlgorithm:
        return self.case.settings.solution_algorithm

    def solve(self) -> SolveResult:
        self.state = DecompositionState()
        if isinstance(self.algorithm, Benders):
            result = self._solve_benders(self.algorithm)
        elif isinstance(self.algorithm, Monolithic):
            result = self._solve_monolithic()
        else:
            raise TypeError(f'Unknown solution algorithm {self.algorithm!r}')

        if CONFIG.Solving.log_main_results:
            logger.info(f'Result of {result.algorithm}:\n{result}')
        return result

    def _solve_monolithic(self) -> SolveResult:
        start = timeit.default_timer()
        builder = ModelBuilder(self.case.settings)
        model, period_costs = builder.build(self.case, ModelScope.FULL, label='monolithic')
        model.add_objective(self.aggregator.objective(period_costs))
        self.state.advance(DecompositionStage.BUILT)

        termination = _solve(model, self.solver, Stage.MONOLITHIC)
        self.state.advance(DecompositionStage.SOLVED)
        objective = _objective_value(model)
        if termination == TerminationStatus.OPTIMAL:
            status = SolutionStatus.SOLVED
            logger.success(f'Solved monolithic model in {timeit.default_timer() - start:.2f} seconds')
        else:
            status = SolutionStatus.STOPPED

        return SolveResult(
            algorithm=Monolithic.name,
            status=status,
            termination=termination,
            objective_value=objective,
            lower_bound=objective,
            upper_bound=objective,
            iterations=1,
            planning_solution=model.linking_values() if status == SolutionStatus.SOLVED else {},
            period_costs=self.aggregator.breakdown(period_costs) if status == SolutionStatus.SOLVED else None,
            model=model,
        )

    def _solve_benders(self, algorithm: Benders) -> SolveResult:
        start = timeit.default_timer()
        state = self.state
        planning, planning_costs, cost_to_go = self._build_planning(algorithm)
        subproblems = self._build_subproblems(planning)
        state.advance(DecompositionStage.INITIALIZED)

        previous_solution: dict[str, float] | None = None
        stopped_at: tuple[Stage, int | None] = (Stage.PLANNING, None)
        progress_bar = tqdm(
            total=algorithm.max_iterations,
            desc='Benders',
            unit='iteration',
            file=sys.stdout,
            disable=not CONFIG.Solving.log_to_console,
        )
        try:
            while True:
                elapsed = timeit.default_timer() - start
                out_of_time = (
                    algorithm.time_limit_seconds is not None
                    and state.iteration >= 1
                    and elapsed >= algorithm.time_limit_seconds
                )
                if state.iteration >= algorithm.max_iterations or out_of_time:
                    state.advance(DecompositionStage.ITERATION_LIMIT_REACHED)
                    break
                state.iteration += 1

                state.termination = _solve(planning, self.planning_solver, Stage.PLANNING)
                if state.termination != TerminationStatus.OPTIMAL:
                    state.advance(DecompositionStage.ITERATION_LIMIT_REACHED)
                    break
                state.advance(DecompositionStage.PLANNING_SOLVED)
                state.lower_bound = max(state.lower_bound, _objective_value(planning))
                state.planning_solution = planning.linking_values()

                if previous_solution is not None and _unchanged(previous_solution, state.planning_solution):
                    logger.info(f'Planning solution of iteration {state.iteration} repeats the previous one')
                    state.advance(DecompositionStage.CONVERGED)
                    break
                previous_solution = state.planning_solution

                outcomes = self._solve_subproblems(subproblems, state.planning_solution, algorithm.max_workers)
                failed = [
                    (subproblem.period, termination)
                    for subproblem, (_, _, termination) in zip(subproblems, outcomes, strict=True)
                    if termination != TerminationStatus.OPTIMAL
                ]
                if failed:
                    period, state.termination = failed[0]
                    stopped_at = (Stage.SUBPROBLEM, period)
                    state.advance(DecompositionStage.ITERATION_LIMIT_REACHED)
                    break
                state.advance(DecompositionStage.SUBPROBLEMS_SOLVED)

                fixed_values = [costs.values() for costs in planning_costs]
                upper_bound = sum(
                    self.aggregator.discount_factor(period) * values['fixed']
                    for period, values in enumerate(fixed_values, start=1)
                ) + sum(cut.cost for cut, _, _ in outcomes)
                if upper_bound < state.upper_bound:
                    state.upper_bound = upper_bound
                    state.best_solution = dict(state.planning_solution)
                    state.best_costs = [
                        {**values, 'variable': variable}
                        for values, (_, variable, _) in zip(fixed_values, outcomes, strict=True)
                    ]

                self._add_cuts(planning, cost_to_go, [cut for cut, _, _ in outcomes], algorithm.multicut)

                state.history.append(
                    IterationRecord(
                        iteration=state.iteration,
                        lower_bound=state.lower_bound,
                        upper_bound=state.upper_bound,
                        gap=state.gap,
                        cuts=len(state.cuts),
                        elapsed_seconds=timeit.default_timer() - start,
                    )
                )
                progress_bar.update(1)
                progress_bar.set_postfix(
                    lb=f'{state.lower_bound:.4g}', ub=f'{state.upper_bound:.4g}', gap=f'{state.gap:.2e}'
                )
                logger.debug(
                    f'Iteration {state.iteration}: LB={state.lower_bound:.6g}, UB={state.upper_bound:.6g}, '
                    f'gap={state.gap:.3e}'
                )

                if state.gap <= algorithm.gap_tolerance:
                    state.advance(DecompositionStage.CONVERGED)
                    break
        finally:
            progress_bar.close()

        if not np.isfinite(state.upper_bound):
            stage, period = stopped_at
            raise SolveError(
                f'Benders stopped in iteration {state.iteration} before any upper bound was found',
                stage,
                state.termination,
                period,
            )

        if state.stage == DecompositionStage.CONVERGED:
            status = SolutionStatus.CONVERGED
            logger.success(
                f'Benders converged after {state.iteration} iterations in {timeit.default_timer() - start:.2f} seconds'
            )
        else:
            status = SolutionStatus.ITERATION_LIMIT_REACHED
            warnings.warn(
                f'Benders stopped after {state.iteration} iterations with a relative gap of {state.gap:.3e} '
                f'(termination: {state.termination.value}); returning the best solution found',
                ConvergenceWarning,
                stacklevel=3,
            )

        return SolveResult(
            algorithm=Benders.name,
            status=status,
            termination=state.termination,
            objective_value=state.upper_bound,
            lower_bound=state.lower_bound,
            upper_bound=state.upper_bound,
            iterations=state.iteration,
            planning_solution=state.best_solution,
            period_costs=self.aggregator.tabulate(state.best_costs) if state.best_costs else None,
            history=list(state.history),
            model=planning,
        )

    def _build_planning(self, algorithm: Benders) -> tuple[ExpansionModel, list[PeriodCosts], list[linopy.Variable]]:
        planning, planning_costs = ModelBuilder(self.case.settings).build(
            self.case, ModelScope.PLANNING, label='planning'
        )
        if algorithm.multicut:
            cost_to_go = [
                planning.add_variables(lower=0, name=f'{period.label}|cost_to_go') for period in self.case.periods
            ]
        else:
            cost_to_go = [planning.add_variables(lower=0, name='cost_to_go')]
        planning.add_objective(self.aggregator.planning_objective(planning_costs, cost_to_go))
        return planning, planning_costs, cost_to_go

    def _build_subproblems(self, planning: ExpansionModel) -> list[_Subproblem]:
        builder = ModelBuilder(self.case.settings, relax_integrality=True)
        subproblems = []
        for period in self.case.periods:
            model, costs = builder.build_subproblem(self.case, period.index)
            missing = set(model.linking_variables) - set(planning.linking_variables)
            if missing:
                raise AssemblyError(
                    f'Subproblem of period "{period.label}" links unknown capacities: {sorted(missing)}'
                )
            model.add_objective(self.aggregator.subproblem_objective(costs, period.index))
            for node in period.network.nodes.values():
                if not node.allows_non_served and np.any(np.asarray(node.demand, dtype=float) > 0):
                    logger.warning(
                        f'Node "{node.label}" of period "{period.label}" has no non_served_price. '
                        f'Subproblems may become infeasible for capacities proposed by the planning problem'
                    )
            subproblems.append(_Subproblem(period.index, model, costs))
        return subproblems

    def _solve_subproblems(
        self, subproblems: list[_Subproblem], planning_solution: dict[str, float], max_workers: int
    ) -> list[tuple[Cut | None, float, TerminationStatus]]:
        def solve_one(subproblem: _Subproblem) -> tuple[Cut | None, float, TerminationStatus]:
            model = subproblem.model
            for name, variable in model.linking_variables.items():
                if subproblem.fixed:
                    model.remove_constraints(f'{name}|fix')
                model.add_constraints(variable == planning_solution[name], name=f'{name}|fix')
            subproblem.fixed = True

            termination = _solve(model, self.subproblem_solver, Stage.SUBPROBLEM, period=subproblem.period)
            if termination != TerminationStatus.OPTIMAL:
                return None, np.nan, termination
            cut = Cut(
                period=subproblem.period,
                iteration=self.state.iteration,
                cost=_objective_value(model),
                duals={name: float(model.constraints[f'{name}|fix'].dual) for name in model.linking_variables},
                point={name: planning_solution[name] for name in model.linking_variables},
            )
            return cut, float(subproblem.costs.variable.solution), termination

        if max_workers > 1 and len(subproblems) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                return list(executor.map(solve_one, subproblems))
        return [solve_one(subproblem) for subproblem in subproblems]

    def _add_cuts(
        self, planning: ExpansionModel, cost_to_go: list[linopy.Variable], cuts: list[Cut], multicut: bool
    ) -> None:
        iteration = self.state.iteration
        groups = [[cut] for cut in cuts] if multicut else [cuts]
        for theta, group in zip(cost_to_go, groups, strict=True):
            slopes = [
                planning.linking_variables[name] * dual for cut in group for name, dual in cut.duals.items() if dual
            ]
            rhs = sum(cut.cost - sum(dual * cut.point[name] for name, dual in cut.duals.items()) for cut in group)
            lhs = theta - sum(slopes) if slopes else theta * 1
            label = f'{group[0].period}' if multicut else 'all'
            planning.add_constraints(lhs >= rhs, name=f'cut|{label}|{iteration}')
        self.state.cuts.extend(cuts)


def _solve(model: ExpansionModel, solver: _Solver, stage: Stage, period: int | None = None) -> TerminationStatus:
    """Solve a model. Infeasible and unbounded models raise a SolveError, other non-optimal outcomes are logged."""
    _, condition = model.solve(solver_name=solver.name, **solver.options)
    termination = TerminationStatus.from_linopy(condition)
    if termination.is_failure:
        raise SolveError(f'Model "{model.label}" could not be solved', stage, termination, period)
    if termination != TerminationStatus.OPTIMAL:
        logger.warning(f'Model "{model.label}" terminated with {condition} ({termination.value})')
    return termination


def _objective_value(model: ExpansionModel) -> float:
    """Objective of the last solve, NaN if the solver returned no solution."""
    value = model.objective.value
    if model.status != 'ok' or value is None:
        return np.nan
    return float(value)


def _unchanged(previous: dict[str, float], current: dict[str, float]) -> bool:
    epsilon = CONFIG.Modeling.epsilon
    return previous.keys() == current.keys() and all(abs(previous[key] - current[key]) <= epsilon for key in current)


def solve_case(
    case: Case,
    solver: _Solver | None = None,
    planning_solver: _Solver | None = None,
    subproblem_solver: _Solver | None = None,
) -> SolveResult:
    """Solve a case with the algorithm chosen in its settings.

    Args:
        case: The case to solve.
        solver: Solver used for every solve. Defaults to :class:`HighsSolver`.
        planning_solver: Solver of the Benders planning problem. Defaults to ``solver``.
        subproblem_solver: Solver of the Benders subproblems. Defaults to ``solver``.

    Raises:
        AllocationError: If an edge is inconsistent.
        AssemblyError: If the case cannot be assembled.
        SolveError: If a solve is infeasible or unbounded, or Benders stops before finding an upper bound.
    """
    return DecompositionController(case, solver, planning_solver, subproblem_solver).solve()
