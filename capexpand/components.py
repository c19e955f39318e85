"""
This module contains the assets of capexpand. Every asset owns a fixed set of edges, exposed by ``edges()``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from .core import PlausibilityError, Scalar, TemporalDataUser
from .elements import Edge
from .modeling import ModelingPrimitives
from .preallocation import EdgeVariableStore, VariableKind
from .structure import Element

if TYPE_CHECKING:
    import linopy

    from .structure import ExpansionModel
    from .time_domain import TimeDomain

logger = logging.getLogger('capexpand')

RetirementPolicy = Literal['none', 'lifetime']


class Asset(Element):
    """
    Base class of all assets. An asset owns edges and may add operating constraints across them.

    Args:
        label: The label of the asset.
        retirement_policy: ``'lifetime'`` retires capacity once it reaches the lifetime of its edge.
            ``'none'`` leaves retirements to the optimizer.
        meta_data: used to store more information about the Element. Is not used internally.
    """

    def __init__(self, label: str, retirement_policy: RetirementPolicy = 'none', meta_data: dict | None = None):
        super().__init__(label, meta_data=meta_data)
        self.retirement_policy = retirement_policy

    def edges(self) -> list[Edge]:
        raise NotImplementedError('Every Asset needs an edges() method')

    def _attach(self, *edges: Edge) -> None:
        for edge in edges:
            edge.asset = self.label

    def add_operational_constraints(
        self, model: ExpansionModel, store: EdgeVariableStore, time_domain: TimeDomain, prefix: str
    ) -> None:
        """Adds constraints linking the edges of this asset during operation. Most assets have none."""
        pass

    def _plausibility_checks(self) -> None:
        if self.retirement_policy not in ('none', 'lifetime'):
            raise PlausibilityError(
                f'retirement_policy of "{self.label}" must be "none" or "lifetime", got {self.retirement_policy!r}'
            )
        if self.retirement_policy == 'lifetime':
            for edge in self.edges():
                if edge.has_capacity and (edge.lifetime is None or not edge.can_retire):
                    raise PlausibilityError(
                        f'Edge "{edge.label_full}" needs a lifetime and must be able to retire capacity, '
                        f'because "{self.label}" retires capacity by lifetime'
                    )


class ThermalPlant(Asset):
    """
    A dispatchable plant feeding one node through its ``generation`` edge.

    Args:
        label: The label of the plant.
        node: Label of the node the plant feeds.
        retirement_policy: See :class:`Asset`.
        meta_data: used to store more information about the Element. Is not used internally.
        **edge_parameters: Passed to the ``generation`` :class:`Edge` (capacity, costs, unit commitment, ramping).

    Examples:
        A gas turbine built in blocks of 50 MW:

        >>> ThermalPlant(
        ...     'OCGT',
        ...     node='Grid',
        ...     can_expand=True,
        ...     investment_cost=60_000,
        ...     variable_om_cost=80,
        ...     unit_commitment=True,
        ...     capacity_size=50,
        ...     min_flow_fraction=0.3,
        ... )
    """

    def __init__(
        self,
        label: str,
        node: str,
        retirement_policy: RetirementPolicy = 'none',
        meta_data: dict | None = None,
        **edge_parameters,
    ):
        super().__init__(label, retirement_policy=retirement_policy, meta_data=meta_data)
        self.node = node
        self.edge_parameters = edge_parameters
        edge_parameters.setdefault('has_capacity', True)
        self.generation = Edge('generation', start=label, end=node, **edge_parameters)
        self._attach(self.generation)
        self._plausibility_checks()

    def edges(self) -> list[Edge]:
        return [self.generation]


class VariableRenewable(Asset):
    """
    A weather-dependent plant. Its output is bounded by ``availability`` times its capacity.

    Args:
        label: The label of the plant.
        node: Label of the node the plant feeds.
        availability: Capacity factor per time step.
        retirement_policy: See :class:`Asset`.
        meta_data: used to store more information about the Element. Is not used internally.
        **edge_parameters: Passed to the ``generation`` :class:`Edge`.
    """

    def __init__(
        self,
        label: str,
        node: str,
        availability: TemporalDataUser,
        retirement_policy: RetirementPolicy = 'none',
        meta_data: dict | None = None,
        **edge_parameters,
    ):
        super().__init__(label, retirement_policy=retirement_policy, meta_data=meta_data)
        self.node = node
        self.availability = availability
        self.edge_parameters = edge_parameters
        edge_parameters.setdefault('has_capacity', True)
        self.generation = Edge('generation', start=label, end=node, availability=availability, **edge_parameters)
        self._attach(self.generation)
        self._plausibility_checks()

    def edges(self) -> list[Edge]:
        return [self.generation]


class Battery(Asset):
    """
    A storage charging from and discharging into one node.

    The ``discharge`` edge carries the power capacity and its costs. The energy capacity is
    ``duration_hours`` times the discharge capacity. Charging is bounded by the discharge capacity as well.

    Args:
        label: The label of the battery.
        node: Label of the node the battery is connected to.
        duration_hours: Energy to power ratio.
        charge_efficiency: Fraction of charged energy that is stored.
        discharge_efficiency: Fraction of discharged stored energy that reaches the node.
        self_discharge: Fraction of the stored energy lost per hour.
        retirement_policy: See :class:`Asset`.
        meta_data: used to store more information about the Element. Is not used internally.
        **edge_parameters: Passed to the ``discharge`` :class:`Edge`.
    """

    def __init__(
        self,
        label: str,
        node: str,
        duration_hours: Scalar = 4,
        charge_efficiency: Scalar = 0.95,
        discharge_efficiency: Scalar = 0.95,
        self_discharge: Scalar = 0,
        retirement_policy: RetirementPolicy = 'none',
        meta_data: dict | None = None,
        **edge_parameters,
    ):
        super().__init__(label, retirement_policy=retirement_policy, meta_data=meta_data)
        self.node = node
        self.duration_hours = duration_hours
        self.charge_efficiency = charge_efficiency
        self.discharge_efficiency = discharge_efficiency
        self.self_discharge = self_discharge
        self.edge_parameters = edge_parameters
        edge_parameters.setdefault('has_capacity', True)
        self.charge = Edge('charge', start=node, end=label)
        self.discharge = Edge('discharge', start=label, end=node, **edge_parameters)
        self._attach(self.charge, self.discharge)
        self._plausibility_checks()

    def edges(self) -> list[Edge]:
        return [self.charge, self.discharge]

    def add_operational_constraints(
        self, model: ExpansionModel, store: EdgeVariableStore, time_domain: TimeDomain, prefix: str
    ) -> None:
        name = f'{prefix}|{self.label}'
        charge = store.handle(self.charge, VariableKind.FLOW)
        discharge = store.handle(self.discharge, VariableKind.FLOW)
        capacity: linopy.Variable = store.handle(self.discharge, VariableKind.CAPACITY)

        level = model.add_variables(lower=0, coords=model.get_coords(time_domain), name=f'{name}|storage_level')
        ModelingPrimitives.storage_balance(
            model,
            level,
            charge,
            discharge,
            time_domain,
            charge_efficiency=self.charge_efficiency,
            discharge_efficiency=self.discharge_efficiency,
            self_discharge=self.self_discharge,
            name=f'{name}|storage_balance',
        )
        model.add_constraints(level - capacity * self.duration_hours <= 0, name=f'{name}|energy_capacity')
        model.add_constraints(charge - capacity <= 0, name=f'{name}|charge_limit')

    def _plausibility_checks(self) -> None:
        super()._plausibility_checks()
        if not self.discharge.has_capacity:
            raise PlausibilityError(f'The discharge edge of battery "{self.label}" needs a capacity')
        if self.duration_hours <= 0:
            raise PlausibilityError(f'duration_hours of battery "{self.label}" must be positive')
        for name in ('charge_efficiency', 'discharge_efficiency'):
            if not 0 < getattr(self, name) <= 1:
                raise PlausibilityError(f'{name} of battery "{self.label}" must be within (0, 1]')
        if not 0 <= self.self_discharge < 1:
            raise PlausibilityError(f'self_discharge of battery "{self.label}" must be within [0, 1)')


class TransmissionLine(Asset):
    """
    A bidirectional connection between two nodes. Its ``flow`` edge runs from ``start_node`` to ``end_node``;
    negative flow runs the other way, bounded by the same capacity.

    Args:
        label: The label of the line.
        start_node: Label of the node the positive flow leaves.
        end_node: Label of the node the positive flow enters.
        retirement_policy: See :class:`Asset`.
        meta_data: used to store more information about the Element. Is not used internally.
        **edge_parameters: Passed to the ``flow`` :class:`Edge`.
    """

    def __init__(
        self,
        label: str,
        start_node: str,
        end_node: str,
        retirement_policy: RetirementPolicy = 'none',
        meta_data: dict | None = None,
        **edge_parameters,
    ):
        super().__init__(label, retirement_policy=retirement_policy, meta_data=meta_data)
        self.start_node = start_node
        self.end_node = end_node
        self.edge_parameters = edge_parameters
        edge_parameters.setdefault('has_capacity', True)
        edge_parameters.setdefault('unidirectional', False)
        self.flow = Edge('flow', start=start_node, end=end_node, **edge_parameters)
        self._attach(self.flow)
        self._plausibility_checks()

    def edges(self) -> list[Edge]:
        return [self.flow]
