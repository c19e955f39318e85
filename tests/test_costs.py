import pytest
from numpy.testing import assert_allclose

import capexpand as cx
from capexpand.model_builder import PeriodCosts
from capexpand.structure import ExpansionModel


class TestCostAggregator:
    def test_without_discounting(self):
        """Proves: with a zero rate every period has discount factor 1 and operates for its length in years."""
        aggregator = cx.CostAggregator(0.0, [5, 10, 5])
        assert_allclose(aggregator.discount_factors, [1, 1, 1])
        assert_allclose(aggregator.opex_multipliers, [5, 10, 5])
        assert list(aggregator.years_before) == [0, 5, 15]

    def test_with_discounting(self):
        aggregator = cx.CostAggregator(0.1, [2, 3])
        assert_allclose(aggregator.discount_factors, [1, 1 / 1.1**2])
        assert_allclose(aggregator.opex_multipliers, [1 / 1.1 + 1 / 1.1**2, 1 / 1.1 + 1 / 1.1**2 + 1 / 1.1**3])
        assert_allclose(aggregator.discount_factor(2), 1 / 1.21)
        assert_allclose(aggregator.opex_multiplier(1), 1.7355371900826446)

    @pytest.mark.parametrize('rate, lengths', [(-0.01, [1]), (0.05, [0]), (0.05, [1.5]), (0.05, [1, -2])])
    def test_invalid(self, rate, lengths):
        with pytest.raises(ValueError):
            cx.CostAggregator(rate, lengths)

    def test_unknown_period(self):
        aggregator = cx.CostAggregator(0.05, [1, 1])
        with pytest.raises(IndexError):
            aggregator.discount_factor(3)
        with pytest.raises(IndexError):
            aggregator.opex_multiplier(0)

    def test_from_settings(self):
        aggregator = cx.CostAggregator.from_settings(cx.CaseSettings(discount_rate=0.03, period_lengths=(5, 5)))
        assert aggregator.discount_rate == 0.03
        assert aggregator.period_lengths == [5, 5]


class TestObjectives:
    @staticmethod
    def registers(model, period, investment=0.0, om_fixed=0.0, variable=0.0):
        return PeriodCosts(period, model.constant(investment), model.constant(om_fixed), model.constant(variable))

    def test_objective_weights(self):
        """Proves: fixed costs are discounted once, variable costs are also weighted by the opex multiplier."""
        aggregator = cx.CostAggregator(0.1, [2, 3])
        model = ExpansionModel()
        costs = [
            self.registers(model, 1, investment=100, om_fixed=10, variable=1),
            self.registers(model, 2, investment=50, variable=2),
        ]
        objective = aggregator.objective(costs)
        df, om = aggregator.discount_factors, aggregator.opex_multipliers
        expected = 110 * df[0] + 1 * df[0] * om[0] + 50 * df[1] + 2 * df[1] * om[1]
        assert_allclose(float(objective.coeffs.sum()), expected)

    def test_planning_and_subproblem_objectives(self):
        aggregator = cx.CostAggregator(0.0, [3])
        model = ExpansionModel()
        costs = [self.registers(model, 1, investment=100, variable=5)]
        theta = model.add_variables(lower=0, name='cost_to_go')
        planning = aggregator.planning_objective(costs, [theta])
        assert_allclose(float(planning.coeffs.sum()), 101)
        assert_allclose(float(aggregator.subproblem_objective(costs[0], 1).coeffs.sum()), 15)

    def test_wrong_number_of_periods(self):
        aggregator = cx.CostAggregator(0.0, [1, 1])
        with pytest.raises(ValueError, match='Expected costs of 2 periods'):
            aggregator.objective([self.registers(ExpansionModel(), 1)])

    def test_tabulate(self):
        aggregator = cx.CostAggregator(0.0, [2, 2])
        frame = aggregator.tabulate(
            [
                {'investment': 10.0, 'om_fixed': 1.0, 'fixed': 11.0, 'variable': 3.0},
                {'investment': 0.0, 'om_fixed': 1.0, 'fixed': 1.0, 'variable': 4.0},
            ]
        )
        assert list(frame.index) == [1, 2]
        assert_allclose(frame['discounted'].values, [11 + 2 * 3, 1 + 2 * 4])
        assert_allclose(frame['opex_multiplier'].values, [2, 2])
