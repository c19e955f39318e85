import numpy as np
import pytest
from numpy.testing import assert_allclose

import capexpand as cx
from capexpand import decomposition
from capexpand.decomposition import DecompositionStage, DecompositionState

from .conftest import multi_period_case, single_period_case, two_node_network


class TestMonolithic:
    def test_investment_and_dispatch(self, solver_fixture):
        """Proves: the monolithic model builds exactly the capacity needed and pays for its dispatch.

        Demand 10 over 3 hours. Investment 5 per unit (10 units → 50) plus 2 per unit of flow (30 units → 60).
        """
        case = single_period_case(
            [cx.Node('Grid', demand=10)],
            [cx.ThermalPlant('Plant', node='Grid', can_expand=True, investment_cost=5, variable_om_cost=2)],
        )
        result = cx.solve_case(case, solver_fixture)
        assert result.algorithm == 'monolithic'
        assert result.status == cx.SolutionStatus.SOLVED
        assert result.termination == cx.TerminationStatus.OPTIMAL
        assert result.iterations == 1
        assert result.converged
        assert_allclose(result.objective_value, 110, rtol=1e-6)
        assert_allclose(result.capacity('p1', 'Plant(generation)'), 10, rtol=1e-6)
        assert_allclose(result.period_costs.loc[1, ['investment', 'variable']].values, [50, 60], rtol=1e-6)

    def test_unit_commitment(self, highs_solver):
        """Proves: committed units respect their minimum stable level and every startup is paid.

        Three units of 10 with a minimum level of 6. Demand [10, 20, 10] needs one unit, then two.
        The second unit starts once per cycle (startup cost 100). Keeping two units on would force at
        least 12 units of flow against a demand of 10, which the balance forbids.
        """
        case = single_period_case(
            [cx.Node('Grid', demand=np.array([10, 20, 10]))],
            [
                cx.ThermalPlant(
                    'Plant',
                    node='Grid',
                    existing_capacity=30,
                    unit_commitment=True,
                    capacity_size=10,
                    min_flow_fraction=0.6,
                    startup_cost=100,
                )
            ],
        )
        result = cx.solve_case(case, highs_solver)
        assert_allclose(result.objective_value, 100, rtol=1e-6)
        commitment = result.model.variables['p1|Plant(generation)|commitment'].solution.values
        assert_allclose(commitment, [1, 2, 1], atol=1e-6)

    def test_ramping(self, highs_solver):
        """Proves: ramp limits bound the change of flow between consecutive (cyclic) time steps.

        Cheap plant A (cost 1) may change by 10 per step, expensive plant B (cost 10) is unrestricted.
        Demand [50, 100]: A runs [50, 60], B covers the remaining 40 → 50 + 60 + 400 = 510.
        """
        case = single_period_case(
            [cx.Node('Grid', demand=np.array([50, 100]))],
            [
                cx.ThermalPlant(
                    'A',
                    node='Grid',
                    existing_capacity=100,
                    variable_om_cost=1,
                    ramping=True,
                    ramp_up_fraction=0.1,
                    ramp_down_fraction=0.1,
                ),
                cx.ThermalPlant('B', node='Grid', existing_capacity=100, variable_om_cost=10),
            ],
            n_steps=2,
        )
        result = cx.solve_case(case, highs_solver)
        assert_allclose(result.objective_value, 510, rtol=1e-6)
        assert_allclose(result.model.variables['p1|A(generation)|flow'].solution.values, [50, 60], rtol=1e-6)

    def test_battery_shifts_energy(self, highs_solver):
        """Proves: a battery stores energy in one step and releases it in the next.

        Solar (10 units, available only in step 1, cost 1) charges a lossless one-hour battery of 10.
        Demand of 10 in step 2 is served from storage, non-served demand (100) is avoided → cost 10.
        """
        case = single_period_case(
            [cx.Node('Grid', demand=np.array([0, 10]), non_served_price=100)],
            [
                cx.VariableRenewable(
                    'Solar', node='Grid', availability=np.array([1, 0]), existing_capacity=10, variable_om_cost=1
                ),
                cx.Battery(
                    'Battery',
                    node='Grid',
                    existing_capacity=10,
                    duration_hours=1,
                    charge_efficiency=1,
                    discharge_efficiency=1,
                ),
            ],
            n_steps=2,
        )
        result = cx.solve_case(case, highs_solver)
        assert_allclose(result.objective_value, 10, rtol=1e-6)
        level = result.model.variables['p1|Battery|storage_level'].solution.values
        assert_allclose(level, [10, 0], atol=1e-6)

    @pytest.mark.parametrize('start, end', [('A', 'B'), ('B', 'A')], ids=['forward', 'reverse'])
    def test_transmission(self, highs_solver, start, end):
        """Proves: a line carries energy in either direction up to its capacity.

        Cheap supply at A (cost 1), expensive supply at B (cost 10), demand 10 at B and a line of 5.
        5 units cross the line, 5 are produced at B → 5 + 50 = 55, whatever the orientation of the line.
        """
        case = single_period_case(
            [cx.Node('A'), cx.Node('B', demand=10)],
            [
                cx.ThermalPlant('CheapPlant', node='A', existing_capacity=100, variable_om_cost=1),
                cx.ThermalPlant('ExpensivePlant', node='B', existing_capacity=100, variable_om_cost=10),
                cx.TransmissionLine('Line', start_node=start, end_node=end, existing_capacity=5),
            ],
            n_steps=1,
        )
        result = cx.solve_case(case, highs_solver)
        assert_allclose(result.objective_value, 55, rtol=1e-6)
        flow = result.model.variables['p1|Line(flow)|flow'].solution.item()
        assert_allclose(abs(flow), 5, rtol=1e-6)

    def test_discounting(self, highs_solver):
        """Proves: period costs enter the objective discounted by the years before each period.

        Dispatch cost 10 per year in two periods of 2 years at 10 %.
        """
        case = multi_period_case(
            lambda index: cx.NetworkGraph(
                [cx.Node('Grid', demand=10)],
                [cx.ThermalPlant('Plant', node='Grid', existing_capacity=10, variable_om_cost=1)],
            ),
            n_periods=2,
            discount_rate=0.1,
            period_lengths=(2, 2),
        )
        result = cx.solve_case(case, highs_solver)
        aggregator = cx.CostAggregator(0.1, [2, 2])
        expected = 10 * sum(aggregator.discount_factors * aggregator.opex_multipliers)
        assert_allclose(result.objective_value, expected, rtol=1e-6)

    def test_infeasible(self, highs_solver):
        case = single_period_case(
            [cx.Node('Grid', demand=10)],
            [cx.ThermalPlant('Plant', node='Grid', can_expand=True, max_capacity=5)],
        )
        with pytest.raises(cx.SolveError) as exc_info:
            cx.solve_case(case, highs_solver)
        assert exc_info.value.stage == cx.Stage.MONOLITHIC
        assert exc_info.value.period is None
        assert exc_info.value.termination.is_failure

    def test_time_limit_is_not_reported_as_solved(self):
        """Proves: a solve stopped by the time limit is neither converged nor carries an objective."""
        case = multi_period_case(
            two_node_network, n_periods=3, n_steps=24, discount_rate=0.05, period_lengths=(5, 5, 5)
        )
        solver = cx.HighsSolver(mip_gap=0, time_limit_seconds=1e-9, log_to_console=False)
        result = cx.solve_case(case, solver)
        assert result.status == cx.SolutionStatus.STOPPED
        assert result.termination == cx.TerminationStatus.TIME_LIMIT
        assert not result.converged
        assert np.isnan(result.objective_value)
        assert result.planning_solution == {}
        assert result.period_costs is None


class TestBenders:
    def test_matches_monolithic(self, highs_solver):
        """Proves: on a continuous case with complete recourse, Benders converges to the monolithic optimum.

        Three periods of five years at 5 %, two nodes and ten edges, three of them expandable.
        """
        case = multi_period_case(
            two_node_network, n_periods=3, n_steps=24, discount_rate=0.05, period_lengths=(5, 5, 5)
        )
        monolithic = cx.solve_case(case, highs_solver)

        benders_case = case.with_settings(
            solution_algorithm=cx.Benders(max_iterations=200, gap_tolerance=1e-7, max_workers=2)
        )
        benders = cx.solve_case(benders_case, highs_solver)

        assert benders.algorithm == 'benders'
        assert benders.status == cx.SolutionStatus.CONVERGED
        assert_allclose(benders.objective_value, monolithic.objective_value, rtol=1e-6)
        assert benders.lower_bound <= benders.upper_bound + 1e-6 * abs(benders.upper_bound)
        assert set(benders.planning_solution) == set(monolithic.planning_solution)
        assert_allclose(benders.period_costs['discounted'].sum(), benders.objective_value, rtol=1e-6)

    def test_bounds_are_monotone(self, highs_solver):
        case = multi_period_case(
            two_node_network,
            n_periods=2,
            n_steps=24,
            discount_rate=0.05,
            period_lengths=(5, 5),
            solution_algorithm=cx.Benders(max_iterations=200, gap_tolerance=1e-6),
        )
        result = cx.solve_case(case, highs_solver)
        frame = result.history_frame
        assert len(frame) == result.iterations or len(frame) == result.iterations - 1
        assert (np.diff(frame['lower_bound'].values) >= -1e-6).all()
        assert (np.diff(frame['upper_bound'].values) <= 1e-6).all()
        assert (frame['cuts'].values == 2 * frame.index.values).all()

    def test_single_cut(self, highs_solver):
        """Proves: one aggregated cut per iteration reaches the same optimum as one cut per period."""
        case = multi_period_case(two_node_network, n_periods=2, n_steps=24, discount_rate=0.05, period_lengths=(5, 5))
        monolithic = cx.solve_case(case, highs_solver)
        single = cx.solve_case(
            case.with_settings(solution_algorithm=cx.Benders(max_iterations=200, gap_tolerance=1e-7, multicut=False)),
            highs_solver,
        )
        assert single.status == cx.SolutionStatus.CONVERGED
        assert 'cost_to_go' in single.model.variables
        assert 'p1|cost_to_go' not in single.model.variables
        assert_allclose(single.objective_value, monolithic.objective_value, rtol=1e-6)

    def test_iteration_limit(self, highs_solver):
        """Proves: stopping before convergence warns and returns the best solution found so far.

        The first planning solution builds nothing and relies on non-served demand, leaving a gap.
        """
        case = multi_period_case(
            two_node_network,
            n_periods=2,
            n_steps=24,
            period_lengths=(5, 5),
            solution_algorithm=cx.Benders(max_iterations=1),
        )
        with pytest.warns(cx.ConvergenceWarning):
            result = cx.solve_case(case, highs_solver)
        assert result.status == cx.SolutionStatus.ITERATION_LIMIT_REACHED
        assert not result.converged
        assert result.iterations == 1
        assert np.isfinite(result.objective_value)
        assert result.gap > 0
        assert len(result.history) == 1

    def test_time_limit_completes_one_iteration(self, highs_solver):
        """Proves: a time limit shorter than model assembly still returns the result of one full iteration."""
        case = multi_period_case(
            two_node_network,
            n_periods=2,
            n_steps=24,
            period_lengths=(5, 5),
            solution_algorithm=cx.Benders(max_iterations=50, time_limit_seconds=1e-6),
        )
        with pytest.warns(cx.ConvergenceWarning):
            result = cx.solve_case(case, highs_solver)
        assert result.status == cx.SolutionStatus.ITERATION_LIMIT_REACHED
        assert result.iterations == 1
        assert np.isfinite(result.objective_value)
        assert set(result.planning_solution) == set(result.model.linking_variables)
        assert list(result.period_costs.index) == [1, 2]
        assert len(result.history) == 1

    def test_stop_before_upper_bound_raises(self, highs_solver, monkeypatch):
        """Proves: a planning problem that is not solved to optimality in the first iteration raises
        instead of returning an infinite objective."""
        solve = decomposition._solve

        def stop_planning(model, solver, stage, period=None):
            if stage == cx.Stage.PLANNING:
                return cx.TerminationStatus.TIME_LIMIT
            return solve(model, solver, stage, period)

        monkeypatch.setattr(decomposition, '_solve', stop_planning)
        case = multi_period_case(
            two_node_network, n_periods=2, n_steps=24, period_lengths=(5, 5), solution_algorithm=cx.Benders()
        )
        with pytest.raises(cx.SolveError) as exc_info:
            cx.solve_case(case, highs_solver)
        assert exc_info.value.stage == cx.Stage.PLANNING
        assert exc_info.value.termination == cx.TerminationStatus.TIME_LIMIT
        assert exc_info.value.period is None

    def test_infeasible_subproblem(self, highs_solver):
        """Proves: a subproblem without complete recourse aborts with the failing stage and period."""
        case = single_period_case(
            [cx.Node('Grid', demand=10)],
            [cx.ThermalPlant('Plant', node='Grid', can_expand=True, max_capacity=5)],
            solution_algorithm=cx.Benders(),
        )
        with pytest.raises(cx.SolveError) as exc_info:
            cx.solve_case(case, highs_solver)
        assert exc_info.value.stage == cx.Stage.SUBPROBLEM
        assert exc_info.value.period == 1

    def test_unit_commitment_is_relaxed_in_subproblems(self, highs_solver):
        case = single_period_case(
            [cx.Node('Grid', demand=np.array([10, 20, 10]), non_served_price=1000)],
            [
                cx.ThermalPlant(
                    'Plant',
                    node='Grid',
                    existing_capacity=30,
                    unit_commitment=True,
                    capacity_size=10,
                    min_flow_fraction=0.6,
                )
            ],
            solution_algorithm=cx.Benders(),
        )
        controller = cx.DecompositionController(case, highs_solver)
        result = controller.solve()
        assert result.status == cx.SolutionStatus.CONVERGED
        assert_allclose(result.objective_value, 0, atol=1e-6)

    @pytest.mark.parametrize('kwargs', [{'max_iterations': 0}, {'gap_tolerance': -1}, {'max_workers': 0}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            cx.Benders(**kwargs)

    def test_defaults_follow_config(self):
        cx.CONFIG.Decomposition.max_iterations = 7
        assert cx.Benders().max_iterations == 7
        assert cx.Benders().multicut is True


class TestStateMachine:
    def test_valid_sequence(self):
        state = DecompositionState()
        for stage in (
            DecompositionStage.INITIALIZED,
            DecompositionStage.PLANNING_SOLVED,
            DecompositionStage.SUBPROBLEMS_SOLVED,
            DecompositionStage.PLANNING_SOLVED,
            DecompositionStage.CONVERGED,
        ):
            state.advance(stage)
        assert state.stage == DecompositionStage.CONVERGED

    @pytest.mark.parametrize(
        'sequence',
        [
            [DecompositionStage.SOLVED],
            [DecompositionStage.INITIALIZED, DecompositionStage.SUBPROBLEMS_SOLVED],
            [DecompositionStage.BUILT, DecompositionStage.SOLVED, DecompositionStage.SOLVED],
            [
                DecompositionStage.INITIALIZED,
                DecompositionStage.PLANNING_SOLVED,
                DecompositionStage.CONVERGED,
                DecompositionStage.PLANNING_SOLVED,
            ],
        ],
    )
    def test_invalid_transition(self, sequence):
        state = DecompositionState()
        with pytest.raises(RuntimeError, match='Invalid transition'):
            for stage in sequence:
                state.advance(stage)

    def test_gap(self):
        state = DecompositionState()
        assert state.gap == np.inf
        state.lower_bound, state.upper_bound = 90, 100
        assert_allclose(state.gap, 0.1)
