"""
This module contains the basic elements of capexpand: balance nodes and the edges connecting them.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

import numpy as np

from .core import PlausibilityError, Scalar, TemporalDataUser
from .structure import Element

if TYPE_CHECKING:
    import linopy

logger = logging.getLogger('capexpand')


class Capability(str, enum.Enum):
    """Capabilities an edge can declare. They decide which variables are allocated for it."""

    CAPACITY = 'capacity'
    EXPANSION = 'expansion'
    RETIREMENT = 'retirement'
    COMMITMENT = 'commitment'
    RAMPING = 'ramping'


class Node(Element):
    """
    A Node balances the flows of all edges ending in it against the flows of all edges
    starting in it and its demand.

    Args:
        label: The label of the Node.
        demand: Demand per time step. Scalar or one value per time step.
        non_served_price: Cost per unit of non-served demand. If None, demand must be met exactly.
        max_non_served: Upper bound of the non-served demand per time step, as a fraction of the demand.
            Only used together with ``non_served_price``. None means unbounded.
        meta_data: used to store more information about the Element. Is not used internally.
    """

    def __init__(
        self,
        label: str,
        demand: TemporalDataUser = 0,
        non_served_price: Scalar | None = None,
        max_non_served: Scalar | None = None,
        meta_data: dict | None = None,
    ):
        super().__init__(label, meta_data=meta_data)
        self.demand = demand
        self.non_served_price = non_served_price
        self.max_non_served = max_non_served
        self._plausibility_checks()

    @property
    def allows_non_served(self) -> bool:
        return self.non_served_price is not None

    def _plausibility_checks(self) -> None:
        if np.any(np.asarray(self.demand, dtype=float) < 0):
            raise PlausibilityError(f'Demand of node "{self.label}" must not be negative')
        if self.non_served_price is not None and self.non_served_price < 0:
            raise PlausibilityError(f'non_served_price of node "{self.label}" must not be negative')
        if self.max_non_served is not None:
            if self.non_served_price is None:
                logger.warning(f'max_non_served of node "{self.label}" is ignored without a non_served_price')
            elif not 0 <= self.max_non_served <= 1:
                raise PlausibilityError(f'max_non_served of node "{self.label}" must be within [0, 1]')


class Edge(Element):
    """
    An **Edge** is a directed flow path between two endpoints of one period.

    The endpoints are node labels or the label of the asset owning the edge. The flow
    of the edge is its main operational variable; edges with capacity additionally carry
    planning variables (capacity, new capacity, retired capacity).

    An edge is never shared between periods: every period holds its own edge instances,
    matched across periods by ``label_full``.
    """

    def __init__(
        self,
        label: str,
        start: str,
        end: str,
        has_capacity: bool = False,
        existing_capacity: Scalar = 0,
        min_capacity: Scalar = 0,
        max_capacity: Scalar = np.inf,
        can_expand: bool = False,
        max_new_capacity: Scalar = np.inf,
        can_retire: bool = False,
        investment_cost: Scalar = 0,
        fixed_om_cost: Scalar = 0,
        variable_om_cost: Scalar = 0,
        availability: TemporalDataUser = 1,
        unidirectional: bool = True,
        unit_commitment: bool = False,
        min_flow_fraction: Scalar | None = None,
        capacity_size: Scalar = 1,
        min_up_time: int = 0,
        min_down_time: int = 0,
        startup_cost: Scalar = 0,
        ramping: bool = False,
        ramp_up_fraction: Scalar | None = None,
        ramp_down_fraction: Scalar | None = None,
        lifetime: int | None = None,
        existing_capacity_age: int = 0,
        meta_data: dict | None = None,
    ):
        r"""
        Args:
            label: The label of the Edge. Its ``label_full`` consists of the label of the asset
                and the label of the edge.
            start: Endpoint the flow leaves (a node label or the owning asset's label).
            end: Endpoint the flow enters (a node label or the owning asset's label).
            has_capacity: The flow is bounded by a capacity variable.
            existing_capacity: Capacity installed before the first period.
            min_capacity: Lower bound of the total capacity.
            max_capacity: Upper bound of the total capacity.
            can_expand: New capacity can be built in every period.
            max_new_capacity: Upper bound of the capacity built in one period.
            can_retire: Capacity can be retired.
            investment_cost: Cost per unit of new capacity.
            fixed_om_cost: Fixed operation and maintenance cost per unit of capacity.
            variable_om_cost: Cost per unit of flow and hour.
            availability: Fraction of the capacity available per time step (scalar or one value per time step).
            unidirectional: If False, the flow may run against the edge direction, bounded by the same capacity.
            unit_commitment: Operate the edge in discrete units of ``capacity_size``.
                Induces commitment, startup and shutdown variables.
            min_flow_fraction: Minimum stable level of a committed unit, as fraction of ``capacity_size``.
                Required for unit commitment. Without unit commitment, a lower bound of the flow
                relative to the capacity.
            capacity_size: Size of one unit, used by unit commitment.
            min_up_time: Minimum number of time steps a started unit stays committed.
            min_down_time: Minimum number of time steps a shut down unit stays off.
            startup_cost: Cost per unit startup.
            ramping: Limit the change of the flow between consecutive time steps. Induces ramp variables.
            ramp_up_fraction: Maximum increase per time step, as fraction of the capacity.
            ramp_down_fraction: Maximum decrease per time step, as fraction of the capacity.
            lifetime: Technical lifetime in years. Used by age-based retirement.
            existing_capacity_age: Age of the existing capacity at the start of the first period in years.
            meta_data: used to store more information about the Element. Is not used internally.
        """
        super().__init__(label, meta_data=meta_data)
        self.start = start
        self.end = end
        self.has_capacity = has_capacity
        self.existing_capacity = existing_capacity
        self.min_capacity = min_capacity
        self.max_capacity = max_capacity
        self.can_expand = can_expand
        self.max_new_capacity = max_new_capacity
        self.can_retire = can_retire
        self.investment_cost = investment_cost
        self.fixed_om_cost = fixed_om_cost
        self.variable_om_cost = variable_om_cost
        self.availability = availability
        self.unidirectional = unidirectional
        self.unit_commitment = unit_commitment
        self.min_flow_fraction = min_flow_fraction
        self.capacity_size = capacity_size
        self.min_up_time = min_up_time
        self.min_down_time = min_down_time
        self.startup_cost = startup_cost
        self.ramping = ramping
        self.ramp_up_fraction = ramp_up_fraction
        self.ramp_down_fraction = ramp_down_fraction
        self.lifetime = lifetime
        self.existing_capacity_age = existing_capacity_age

        self.asset: str = 'UnknownAsset'
        self.carried_over_capacity: linopy.Variable | None = None

        self._plausibility_checks()

    @property
    def label_full(self) -> str:
        return f'{self.asset}({self.label})'

    @property
    def capabilities(self) -> frozenset[Capability]:
        flags = {
            Capability.CAPACITY: self.has_capacity,
            Capability.EXPANSION: self.can_expand,
            Capability.RETIREMENT: self.can_retire,
            Capability.COMMITMENT: self.unit_commitment,
            Capability.RAMPING: self.ramping,
        }
        return frozenset(capability for capability, declared in flags.items() if declared)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def base_capacity(self) -> linopy.Variable | Scalar:
        """Capacity available before this period's own investment decisions."""
        if self.carried_over_capacity is not None:
            return self.carried_over_capacity
        return self.existing_capacity

    def _plausibility_checks(self) -> None:
        # Capability/attribute mismatches that prevent bounding the variables are raised
        # by the EdgeVariableStore as AllocationError. Only value ranges are checked here.
        for name in ('existing_capacity', 'min_capacity', 'max_new_capacity', 'investment_cost', 'fixed_om_cost'):
            if getattr(self, name) < 0:
                raise PlausibilityError(
                    f'{name} of edge "{self.label}" must not be negative, got {getattr(self, name)}'
                )
        if self.min_capacity > self.max_capacity:
            raise PlausibilityError(
                f'min_capacity ({self.min_capacity}) of edge "{self.label}" exceeds max_capacity ({self.max_capacity})'
            )
        if self.has_capacity and self.existing_capacity > self.max_capacity and not self.can_retire:
            raise PlausibilityError(
                f'existing_capacity of edge "{self.label}" exceeds max_capacity and the edge cannot retire capacity'
            )
        if np.any(np.asarray(self.availability, dtype=float) < 0):
            raise PlausibilityError(f'availability of edge "{self.label}" must not be negative')
        if not self.unidirectional and self.variable_om_cost != 0:
            raise PlausibilityError(
                f'Edge "{self.label}" is bidirectional and cannot carry a variable_om_cost; '
                f'model the cost on a unidirectional edge instead'
            )
        if self.min_up_time < 0 or self.min_down_time < 0:
            raise PlausibilityError(f'min_up_time and min_down_time of edge "{self.label}" must not be negative')
        if self.lifetime is not None and self.lifetime <= 0:
            raise PlausibilityError(f'lifetime of edge "{self.label}" must be positive, got {self.lifetime}')
        if self.start == self.end:
            raise PlausibilityError(f'Edge "{self.label}" starts and ends in "{self.start}"')
