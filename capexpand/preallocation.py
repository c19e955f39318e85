"""
This module contains the EdgeVariableStore, the single path through which edge-level variables and
constraints enter a model.

Allocation happens in three passes over the edges, always in ``label_full`` order:

1. every edge is validated; any inconsistency raises an AllocationError before the model is touched,
2. an allocation plan (variable kinds, bounds, constraint kinds) is computed per edge,
   optionally on a thread pool,
3. variables and then constraints are added to the model, single-threaded.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import linopy
import numpy as np
import xarray as xr

from .config import CONFIG
from .core import AllocationError, as_time_array
from .elements import Capability, Edge
from .modeling import ModelingPrimitives, TimeLag
from .structure import ExpansionModel
from .time_domain import TimeDomain

logger = logging.getLogger('capexpand')


class VariableKind(str, enum.Enum):
    """The kinds of variables an edge can own."""

    CAPACITY = 'capacity'
    NEW_CAPACITY = 'new_capacity'
    RETIRED_CAPACITY = 'retired_capacity'
    FLOW = 'flow'
    COMMITMENT = 'commitment'
    STARTUP = 'startup'
    SHUTDOWN = 'shutdown'
    RAMP_UP = 'ramp_up'
    RAMP_DOWN = 'ramp_down'

    @property
    def is_temporal(self) -> bool:
        return self not in (VariableKind.CAPACITY, VariableKind.NEW_CAPACITY, VariableKind.RETIRED_CAPACITY)


class ConstraintKind(str, enum.Enum):
    """The kinds of constraints binding the variables of one edge."""

    MAX_CAPACITY = 'max_capacity'
    MIN_CAPACITY = 'min_capacity'
    MAX_FLOW = 'max_flow'
    MIN_FLOW = 'min_flow'
    COMMITMENT_LIMIT = 'commitment_limit'
    COMMITMENT_TRANSITION = 'commitment_transition'
    MIN_UP_TIME = 'min_up_time'
    MIN_DOWN_TIME = 'min_down_time'
    RAMP_BALANCE = 'ramp_balance'
    RAMP_UP_LIMIT = 'ramp_up_limit'
    RAMP_DOWN_LIMIT = 'ramp_down_limit'


class ModelScope(str, enum.Enum):
    """Which part of the formulation a store allocates.

    - FULL: planning and operation, used by the monolithic model
    - PLANNING: capacities and their limits, used by the planning problem of the decomposition
    - OPERATION: capacity as linking handle plus everything operational, used by the subproblems
    """

    FULL = 'full'
    PLANNING = 'planning'
    OPERATION = 'operation'

    @property
    def includes_planning(self) -> bool:
        return self in (ModelScope.FULL, ModelScope.PLANNING)

    @property
    def includes_operation(self) -> bool:
        return self in (ModelScope.FULL, ModelScope.OPERATION)


@dataclass(frozen=True)
class PlannedVariable:
    kind: VariableKind
    lower: float = 0
    upper: float = np.inf
    integer: bool = False


@dataclass
class EdgeAllocationPlan:
    """What the store creates for one edge."""

    edge: Edge
    variables: list[PlannedVariable] = field(default_factory=list)
    constraints: list[ConstraintKind] = field(default_factory=list)
    availability: xr.DataArray | None = None


class EdgeVariableStore:
    """
    Creates and registers the variables and constraints of edges.

    Handles are keyed by ``(edge.label_full, kind)``; no other component creates edge variables.
    A store is filled once per model. Allocating an edge that is already registered raises an AllocationError.

    Args:
        scope: Which part of the formulation is allocated.
        prefix: Prepended to every variable and constraint name, usually the label of the period.
        relax_integrality: Create commitment, startup and shutdown variables as continuous.
        max_workers: Threads used to compute allocation plans. Defaults to ``CONFIG.Modeling.allocation_workers``.
    """

    def __init__(
        self,
        scope: ModelScope = ModelScope.FULL,
        prefix: str | None = None,
        relax_integrality: bool = False,
        max_workers: int | None = None,
    ):
        self.scope = ModelScope(scope)
        self.prefix = prefix
        self.relax_integrality = relax_integrality
        self.max_workers = max_workers
        self._variables: dict[tuple[str, VariableKind], linopy.Variable] = {}
        self._constraints: dict[tuple[str, ConstraintKind], linopy.Constraint] = {}
        self._edges: dict[str, Edge] = {}

    def allocate(
        self, model: ExpansionModel, edges: Iterable[Edge], time_horizon: TimeDomain
    ) -> dict[tuple[str, VariableKind], linopy.Variable]:
        """Create all variables and constraints of the given edges.

        Args:
            model: The model to add the variables and constraints to.
            edges: The edges to allocate. Their order does not matter.
            time_horizon: The time domain of the temporal variables.

        Returns:
            The variable handles created by this call, keyed by ``(edge.label_full, kind)``.

        Raises:
            AllocationError: If any edge is inconsistent. Nothing is added to the model in this case.
        """
        edges = sorted(edges, key=lambda edge: edge.label_full)
        self._validate(edges, time_horizon)

        workers = self.max_workers if self.max_workers is not None else CONFIG.Modeling.allocation_workers
        if workers > 1 and len(edges) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                plans = list(executor.map(lambda edge: self._plan(edge, time_horizon), edges))
        else:
            plans = [self._plan(edge, time_horizon) for edge in edges]

        created = {}
        for plan in plans:
            self._edges[plan.edge.label_full] = plan.edge
            for planned in plan.variables:
                key = (plan.edge.label_full, planned.kind)
                created[key] = self._add_variable(model, plan.edge, planned, time_horizon)
        for plan in plans:
            for kind in plan.constraints:
                self._add_constraint(model, plan, kind, time_horizon)

        logger.debug(
            f'Allocated {len(created)} variables and {sum(len(plan.constraints) for plan in plans)} constraints '
            f'for {len(plans)} edges ({self.scope.value} scope)'
        )
        return created

    def handle(self, edge: Edge | str, kind: VariableKind, time_step=None) -> linopy.Variable:
        """The variable of ``kind`` registered for ``edge``. With ``time_step``, only that time step."""
        key = (self._key(edge), VariableKind(kind))
        try:
            variable = self._variables[key]
        except KeyError:
            raise KeyError(f'No {key[1].value} variable allocated for edge "{key[0]}" in this store') from None
        if time_step is None:
            return variable
        if not key[1].is_temporal:
            raise ValueError(f'{key[1].value} is not indexed by time')
        return variable.sel(time=time_step)

    def has(self, edge: Edge | str, kind: VariableKind) -> bool:
        return (self._key(edge), VariableKind(kind)) in self._variables

    def constraint(self, edge: Edge | str, kind: ConstraintKind) -> linopy.Constraint:
        key = (self._key(edge), ConstraintKind(kind))
        try:
            return self._constraints[key]
        except KeyError:
            raise KeyError(f'No {key[1].value} constraint allocated for edge "{key[0]}" in this store') from None

    def kinds(self, edge: Edge | str) -> list[VariableKind]:
        label = self._key(edge)
        return [kind for kind in VariableKind if (label, kind) in self._variables]

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges.values())

    def counts(self) -> dict[str, int]:
        """Number of scalar variables per variable kind and of scalar constraints per constraint kind."""
        counts = Counter()
        for (_, kind), variable in self._variables.items():
            counts[kind.value] += variable.labels.size
        for (_, kind), constraint in self._constraints.items():
            counts[kind.value] += constraint.labels.size
        return dict(sorted(counts.items()))

    @property
    def num_variables(self) -> int:
        return sum(variable.labels.size for variable in self._variables.values())

    @property
    def num_constraints(self) -> int:
        return sum(constraint.labels.size for constraint in self._constraints.values())

    def __contains__(self, edge: Edge | str) -> bool:
        return self._key(edge) in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def __repr__(self) -> str:
        return (
            f'{self.__class__.__name__}(scope={self.scope.value}, edges={len(self)}, '
            f'variables={self.num_variables}, constraints={self.num_constraints})'
        )

    @staticmethod
    def _key(edge: Edge | str) -> str:
        return edge if isinstance(edge, str) else edge.label_full

    def _name(self, edge: Edge, kind: VariableKind | ConstraintKind) -> str:
        name = f'{edge.label_full}|{kind.value}'
        return f'{self.prefix}|{name}' if self.prefix else name

    def _validate(self, edges: list[Edge], time_horizon: TimeDomain) -> None:
        errors = []
        seen = set()
        for edge in edges:
            label = edge.label_full
            if label in seen or label in self._edges:
                errors.append(f'Edge "{label}" is allocated more than once')
            seen.add(label)
            capabilities = edge.capabilities
            if Capability.COMMITMENT in capabilities:
                if edge.min_flow_fraction is None:
                    errors.append(f'Edge "{label}" uses unit commitment without a min_flow_fraction')
                if Capability.CAPACITY not in capabilities:
                    errors.append(f'Edge "{label}" uses unit commitment without a capacity')
                if not edge.capacity_size or edge.capacity_size <= 0:
                    errors.append(f'Edge "{label}" uses unit commitment without a positive capacity_size')
                if not edge.unidirectional:
                    errors.append(f'Edge "{label}" uses unit commitment but is bidirectional')
            if Capability.RAMPING in capabilities:
                if edge.ramp_up_fraction is None or edge.ramp_down_fraction is None:
                    errors.append(f'Edge "{label}" uses ramping without ramp_up_fraction and ramp_down_fraction')
                if Capability.CAPACITY not in capabilities:
                    errors.append(f'Edge "{label}" uses ramping without a capacity')
            for capability in (Capability.EXPANSION, Capability.RETIREMENT):
                if capability in capabilities and Capability.CAPACITY not in capabilities:
                    errors.append(f'Edge "{label}" declares {capability.value} without a capacity')
            if edge.min_flow_fraction is not None and not 0 <= edge.min_flow_fraction <= 1:
                errors.append(f'min_flow_fraction of edge "{label}" must be within [0, 1]')
            availability = np.asarray(edge.availability, dtype=float)
            if availability.ndim > 1 or (availability.ndim == 1 and availability.size != time_horizon.n_steps):
                errors.append(
                    f'Availability of edge "{label}" has shape {availability.shape}, '
                    f'but the time horizon has {time_horizon.n_steps} time steps'
                )
        if errors:
            raise AllocationError('\n'.join(errors))

    def _plan(self, edge: Edge, time_horizon: TimeDomain) -> EdgeAllocationPlan:
        plan = EdgeAllocationPlan(edge)
        has = edge.has
        integer = not self.relax_integrality

        if has(Capability.CAPACITY):
            plan.variables.append(PlannedVariable(VariableKind.CAPACITY))

        if self.scope.includes_planning and has(Capability.CAPACITY):
            if has(Capability.EXPANSION):
                plan.variables.append(PlannedVariable(VariableKind.NEW_CAPACITY, upper=float(edge.max_new_capacity)))
            if has(Capability.RETIREMENT):
                plan.variables.append(PlannedVariable(VariableKind.RETIRED_CAPACITY))
            if np.isfinite(edge.max_capacity):
                plan.constraints.append(ConstraintKind.MAX_CAPACITY)
            if edge.min_capacity > 0:
                plan.constraints.append(ConstraintKind.MIN_CAPACITY)

        if self.scope.includes_operation:
            plan.availability = as_time_array(
                edge.availability, time_horizon.index, name=f'{edge.label_full}|availability'
            )
            plan.variables.append(PlannedVariable(VariableKind.FLOW, lower=0 if edge.unidirectional else -np.inf))
            if has(Capability.CAPACITY):
                plan.constraints.append(ConstraintKind.MAX_FLOW)
                if not edge.unidirectional or has(Capability.COMMITMENT) or edge.min_flow_fraction:
                    plan.constraints.append(ConstraintKind.MIN_FLOW)
            if has(Capability.COMMITMENT):
                plan.variables += [
                    PlannedVariable(VariableKind.COMMITMENT, integer=integer),
                    PlannedVariable(VariableKind.STARTUP, integer=integer),
                    PlannedVariable(VariableKind.SHUTDOWN, integer=integer),
                ]
                plan.constraints += [ConstraintKind.COMMITMENT_LIMIT, ConstraintKind.COMMITMENT_TRANSITION]
                if edge.min_up_time > 1:
                    plan.constraints.append(ConstraintKind.MIN_UP_TIME)
                if edge.min_down_time > 1:
                    plan.constraints.append(ConstraintKind.MIN_DOWN_TIME)
            if has(Capability.RAMPING):
                plan.variables += [PlannedVariable(VariableKind.RAMP_UP), PlannedVariable(VariableKind.RAMP_DOWN)]
                plan.constraints += [
                    ConstraintKind.RAMP_BALANCE,
                    ConstraintKind.RAMP_UP_LIMIT,
                    ConstraintKind.RAMP_DOWN_LIMIT,
                ]
        return plan

    def _add_variable(
        self, model: ExpansionModel, edge: Edge, planned: PlannedVariable, time_horizon: TimeDomain
    ) -> linopy.Variable:
        variable = model.add_variables(
            lower=planned.lower,
            upper=planned.upper,
            coords=model.get_coords(time_horizon) if planned.kind.is_temporal else None,
            integer=planned.integer,
            name=self._name(edge, planned.kind),
        )
        self._variables[(edge.label_full, planned.kind)] = variable
        return variable

    def _add_constraint(
        self, model: ExpansionModel, plan: EdgeAllocationPlan, kind: ConstraintKind, time_horizon: TimeDomain
    ) -> linopy.Constraint:
        edge = plan.edge
        name = self._name(edge, kind)
        var = {k: self.handle(edge, k) for k in self.kinds(edge)}
        capacity = var.get(VariableKind.CAPACITY)
        size = float(edge.capacity_size)

        if kind == ConstraintKind.MAX_CAPACITY:
            constraint = model.add_constraints(capacity <= float(edge.max_capacity), name=name)
        elif kind == ConstraintKind.MIN_CAPACITY:
            constraint = model.add_constraints(capacity >= float(edge.min_capacity), name=name)

        elif kind == ConstraintKind.MAX_FLOW:
            if VariableKind.COMMITMENT in var:
                bound = var[VariableKind.COMMITMENT] * (plan.availability * size)
            else:
                bound = capacity * plan.availability
            constraint = model.add_constraints(var[VariableKind.FLOW] - bound <= 0, name=name)
        elif kind == ConstraintKind.MIN_FLOW:
            if VariableKind.COMMITMENT in var:
                bound = var[VariableKind.COMMITMENT] * (float(edge.min_flow_fraction) * size)
            elif not edge.unidirectional:
                bound = capacity * (-plan.availability)
            else:
                bound = capacity * float(edge.min_flow_fraction)
            constraint = model.add_constraints(var[VariableKind.FLOW] - bound >= 0, name=name)

        elif kind == ConstraintKind.COMMITMENT_LIMIT:
            constraint = model.add_constraints(var[VariableKind.COMMITMENT] * size - capacity <= 0, name=name)
        elif kind == ConstraintKind.COMMITMENT_TRANSITION:
            constraint = ModelingPrimitives.state_transition(
                model,
                var[VariableKind.COMMITMENT],
                var[VariableKind.STARTUP],
                var[VariableKind.SHUTDOWN],
                time_horizon,
                name=name,
            )
        elif kind == ConstraintKind.MIN_UP_TIME:
            # Units started within the last min_up_time steps are still committed
            recent_startups = TimeLag.lagged_sum(var[VariableKind.STARTUP], time_horizon, int(edge.min_up_time))
            constraint = model.add_constraints(recent_startups - var[VariableKind.COMMITMENT] <= 0, name=name)
        elif kind == ConstraintKind.MIN_DOWN_TIME:
            # Units shut down within the last min_down_time steps cannot be committed
            recent_shutdowns = TimeLag.lagged_sum(var[VariableKind.SHUTDOWN], time_horizon, int(edge.min_down_time))
            constraint = model.add_constraints(
                recent_shutdowns + var[VariableKind.COMMITMENT] - capacity * (1 / size) <= 0, name=name
            )

        elif kind == ConstraintKind.RAMP_BALANCE:
            constraint = ModelingPrimitives.state_transition(
                model,
                var[VariableKind.FLOW],
                var[VariableKind.RAMP_UP],
                var[VariableKind.RAMP_DOWN],
                time_horizon,
                name=name,
            )
        elif kind in (ConstraintKind.RAMP_UP_LIMIT, ConstraintKind.RAMP_DOWN_LIMIT):
            upward = kind == ConstraintKind.RAMP_UP_LIMIT
            ramp = var[VariableKind.RAMP_UP if upward else VariableKind.RAMP_DOWN]
            fraction = float(edge.ramp_up_fraction if upward else edge.ramp_down_fraction)
            if VariableKind.COMMITMENT in var:
                # Units switching in this step may jump to at least their minimum stable level
                jump = max(float(edge.min_flow_fraction), fraction) * size
                limit = var[VariableKind.COMMITMENT] * (fraction * size)
                if upward:
                    limit = limit + var[VariableKind.STARTUP] * (jump - fraction * size)
                else:
                    limit = limit - var[VariableKind.STARTUP] * (fraction * size) + var[VariableKind.SHUTDOWN] * jump
                constraint = model.add_constraints(ramp - limit <= 0, name=name)
            else:
                constraint = model.add_constraints(ramp - capacity * fraction <= 0, name=name)
        else:
            raise ValueError(f'Unknown constraint kind {kind!r}')

        self._constraints[(edge.label_full, kind)] = constraint
        return constraint


EdgeOptimizationManager = EdgeVariableStore
