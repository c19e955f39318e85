"""
This module contains the ModelBuilder, which assembles the periods of a case into a linopy model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import linopy

from .core import AssemblyError, as_time_array
from .costs import CostAggregator
from .modeling import scale_constraints
from .preallocation import EdgeVariableStore, ModelScope, VariableKind
from .structure import ExpansionModel

if TYPE_CHECKING:
    from .case import Case, CaseSettings, Period
    from .elements import Edge

logger = logging.getLogger('capexpand')


@dataclass
class PeriodCosts:
    """The cost registers of one period, as scalar linear expressions."""

    period: int
    investment: linopy.LinearExpression
    om_fixed: linopy.LinearExpression
    variable: linopy.LinearExpression

    @property
    def fixed(self) -> linopy.LinearExpression:
        return self.investment + self.om_fixed

    def values(self) -> dict[str, float]:
        """Solution values of the registers. Only valid after the model holding them was solved."""
        investment = float(self.investment.solution)
        om_fixed = float(self.om_fixed.solution)
        return {
            'investment': investment,
            'om_fixed': om_fixed,
            'fixed': investment + om_fixed,
            'variable': float(self.variable.solution),
        }


@dataclass
class _Vintages:
    """Capacity history of one edge across periods, used by age-based retirement."""

    first_year: int
    existing_capacity: float
    existing_age: int
    builds: list[tuple[int, linopy.Variable]]
    retirements: list[linopy.Variable]


class ModelBuilder:
    """
    Assembles the periods of a case, strictly in order, into one linopy model.

    For each period the builder allocates the edge variables through an :class:`EdgeVariableStore`,
    registers the capacity variables as the linking variables between planning and operation
    (no separate linking variables are created), defines available capacity,
    adds planning and age-based retirement constraints, carries the capacity over to the next
    period, adds the operational constraints and finally moves the cost registers into a
    :class:`PeriodCosts` record.

    Args:
        settings: The case settings. Defaults to the settings of the case being built.
        relax_integrality: Build commitment variables as continuous.
    """

    def __init__(self, settings: CaseSettings | None = None, relax_integrality: bool = False):
        self.settings = settings
        self.relax_integrality = relax_integrality
        self.stores: dict[int, EdgeVariableStore] = {}
        self._vintages: dict[str, _Vintages] = {}
        self.investment_cost: linopy.LinearExpression | None = None
        self.om_fixed_cost: linopy.LinearExpression | None = None
        self.variable_cost: linopy.LinearExpression | None = None

    @property
    def fixed_cost(self) -> linopy.LinearExpression:
        return self.investment_cost + self.om_fixed_cost

    def build(
        self, case: Case, scope: ModelScope = ModelScope.FULL, label: str = 'monolithic'
    ) -> tuple[ExpansionModel, list[PeriodCosts]]:
        """Assemble all periods of the case.

        Args:
            case: The case to assemble.
            scope: ``FULL`` for the monolithic model, ``PLANNING`` for the planning problem of the decomposition.
            label: Label of the created model.

        Returns:
            The model and the cost registers of every period, in period order.

        Raises:
            AssemblyError: If the periods are out of order or a capacity has no carry-over target.
        """
        settings = self._settings(case)
        model = ExpansionModel(label=label)
        self.stores = {}
        self._vintages = {}
        for period in case.periods:
            for edge in period.network.edges:
                edge.carried_over_capacity = None

        years_before = CostAggregator.from_settings(settings).years_before
        period_costs = []
        for expected, period in enumerate(case.periods, start=1):
            if period.index != expected:
                raise AssemblyError(f'Period "{period.label}" has index {period.index}, expected {expected}')
            period_costs.append(self._build_period(model, case, period, scope, int(years_before[expected - 1])))

        if settings.constraint_scaling:
            scale_constraints(model)
        stats = model.statistics
        logger.info(
            f'Built {scope.value} model "{label}" over {len(case.periods)} periods: '
            f'{stats["variables"]} variables ({stats["integers"]} integer), {stats["constraints"]} constraints'
        )
        return model, period_costs

    def build_subproblem(self, case: Case, period_index: int) -> tuple[ExpansionModel, PeriodCosts]:
        """Assemble the operational subproblem of one period.

        Its capacities are registered as linking variables and left free, to be fixed by the caller.
        """
        settings = self._settings(case)
        period = case.period(period_index)
        model = ExpansionModel(label=f'{period.label}|subproblem')
        costs = self._build_period(model, case, period, ModelScope.OPERATION, years_before=0)
        if settings.constraint_scaling:
            scale_constraints(model)
        logger.debug(f'Built subproblem of period "{period.label}": {model.nvars} variables, {model.ncons} constraints')
        return model, costs

    def _settings(self, case: Case) -> CaseSettings:
        return self.settings if self.settings is not None else case.settings

    def _build_period(
        self, model: ExpansionModel, case: Case, period: Period, scope: ModelScope, years_before: int
    ) -> PeriodCosts:
        edges = period.network.edges

        store = EdgeVariableStore(scope, prefix=period.label, relax_integrality=self.relax_integrality)
        store.allocate(model, edges, period.time_domain)
        self.stores[period.index] = store
        self._reset_registers(model)

        capacity_edges = [edge for edge in edges if store.has(edge, VariableKind.CAPACITY)]
        for edge in capacity_edges:
            model.register_linking_variable(store.handle(edge, VariableKind.CAPACITY))

        if scope.includes_planning:
            for edge in capacity_edges:
                self._add_available_capacity(model, store, edge, period)
                self._add_planning(model, store, edge, period)
                self._add_age_based_retirement(model, store, edge, period, years_before)
            if period.index < len(case.periods):
                self._carry_over(store, capacity_edges, case.period(period.index + 1))

        if scope.includes_operation:
            self._add_operation(model, store, period)

        costs = PeriodCosts(period.index, self.investment_cost, self.om_fixed_cost, self.variable_cost)
        self._reset_registers(model)
        return costs

    def _reset_registers(self, model: ExpansionModel) -> None:
        self.investment_cost = model.zero()
        self.om_fixed_cost = model.zero()
        self.variable_cost = model.zero()

    def _add_available_capacity(self, model: ExpansionModel, store: EdgeVariableStore, edge: Edge, period: Period):
        """capacity = base + new - retired"""
        expression = store.handle(edge, VariableKind.CAPACITY) * 1
        if store.has(edge, VariableKind.NEW_CAPACITY):
            expression = expression - store.handle(edge, VariableKind.NEW_CAPACITY)
        if store.has(edge, VariableKind.RETIRED_CAPACITY):
            expression = expression + store.handle(edge, VariableKind.RETIRED_CAPACITY)

        base = edge.base_capacity
        if isinstance(base, linopy.Variable):
            expression, rhs = expression - base, 0
        else:
            rhs = float(base)
        model.add_constraints(expression == rhs, name=f'{period.label}|{edge.label_full}|available_capacity')

    def _add_planning(self, model: ExpansionModel, store: EdgeVariableStore, edge: Edge, period: Period):
        if store.has(edge, VariableKind.RETIRED_CAPACITY):
            retired = store.handle(edge, VariableKind.RETIRED_CAPACITY)
            base = edge.base_capacity
            if isinstance(base, linopy.Variable):
                model.add_constraints(retired - base <= 0, name=f'{period.label}|{edge.label_full}|max_retirement')
            else:
                model.add_constraints(retired <= float(base), name=f'{period.label}|{edge.label_full}|max_retirement')

        if store.has(edge, VariableKind.NEW_CAPACITY) and edge.investment_cost:
            self.investment_cost += store.handle(edge, VariableKind.NEW_CAPACITY) * float(edge.investment_cost)
        if edge.fixed_om_cost:
            self.om_fixed_cost += store.handle(edge, VariableKind.CAPACITY) * float(edge.fixed_om_cost)

    def _add_age_based_retirement(
        self, model: ExpansionModel, store: EdgeVariableStore, edge: Edge, period: Period, years_before: int
    ):
        """
        Cumulative retirements must cover every vintage that reached the lifetime of the edge:

            sum_{k<=s} retired_k >= sum_{k: start_s - start_k >= lifetime} new_k
                                    + existing  (if the existing fleet expired)
        """
        vintages = self._vintages.setdefault(
            edge.label_full,
            _Vintages(years_before, float(edge.existing_capacity), int(edge.existing_capacity_age), [], []),
        )
        if store.has(edge, VariableKind.RETIRED_CAPACITY):
            vintages.retirements.append(store.handle(edge, VariableKind.RETIRED_CAPACITY))

        asset = period.network.assets.get(edge.asset)
        if asset is not None and asset.retirement_policy == 'lifetime':
            lifetime = edge.lifetime
            expired_builds = [new for start, new in vintages.builds if years_before - start >= lifetime]
            existing_age = vintages.existing_age + years_before - vintages.first_year
            expired_existing = vintages.existing_capacity if existing_age >= lifetime else 0.0
            if expired_builds or expired_existing > 0:
                retired = sum(vintages.retirements)
                if expired_builds:
                    retired = retired - sum(expired_builds)
                model.add_constraints(
                    retired >= expired_existing, name=f'{period.label}|{edge.label_full}|lifetime_retirement'
                )

        if store.has(edge, VariableKind.NEW_CAPACITY):
            vintages.builds.append((years_before, store.handle(edge, VariableKind.NEW_CAPACITY)))

    def _carry_over(self, store: EdgeVariableStore, capacity_edges: list[Edge], next_period: Period) -> None:
        targets = {edge.label_full: edge for edge in next_period.network.edges}
        for edge in capacity_edges:
            target = targets.get(edge.label_full)
            if target is None or not target.has_capacity:
                raise AssemblyError(
                    f'Capacity of "{edge.label_full}" cannot be carried over: '
                    f'period "{next_period.label}" has no matching edge with a capacity'
                )
            target.carried_over_capacity = store.handle(edge, VariableKind.CAPACITY)

    def _add_operation(self, model: ExpansionModel, store: EdgeVariableStore, period: Period) -> None:
        network = period.network
        time_domain = period.time_domain
        weights = time_domain.weights

        for node in network.nodes.values():
            inflows = [store.handle(edge, VariableKind.FLOW) for edge in network.inflows(node)]
            outflows = [store.handle(edge, VariableKind.FLOW) for edge in network.outflows(node)]
            if not inflows and not outflows and not node.allows_non_served:
                continue
            demand = as_time_array(node.demand, time_domain.index, name=f'{node.label}|demand')
            terms = inflows + [-flow for flow in outflows]
            if node.allows_non_served:
                upper = demand * node.max_non_served if node.max_non_served is not None else float('inf')
                non_served = model.add_variables(
                    lower=0,
                    upper=upper,
                    coords=model.get_coords(time_domain),
                    name=f'{period.label}|{node.label}|non_served',
                )
                terms.append(non_served)
                self.variable_cost += (non_served * (weights * float(node.non_served_price))).sum()
            model.add_constraints(sum(terms) == demand, name=f'{period.label}|{node.label}|balance')

        for asset in network.assets.values():
            asset.add_operational_constraints(model, store, time_domain, prefix=period.label)

        for edge in store.edges:
            if edge.variable_om_cost:
                flow = store.handle(edge, VariableKind.FLOW)
                self.variable_cost += (flow * (weights * float(edge.variable_om_cost))).sum()
            if edge.startup_cost and store.has(edge, VariableKind.STARTUP):
                startup = store.handle(edge, VariableKind.STARTUP)
                self.variable_cost += (startup * (weights * float(edge.startup_cost))).sum()
