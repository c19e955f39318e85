"""
This module contains the Case: the ordered periods of a capacity-expansion problem and its settings.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from .core import AssemblyError
from .decomposition import Monolithic, SolutionAlgorithm
from .network import NetworkGraph
from .structure import Element, Interface
from .time_domain import TimeDomain

logger = logging.getLogger('capexpand')


@dataclass(frozen=True)
class CaseSettings:
    """
    Settings shared by all periods of a case. Immutable; use :meth:`replace` to derive modified settings.

    Args:
        discount_rate: Yearly discount rate, at least 0.
        period_lengths: Years covered by each period.
        solution_algorithm: ``Monolithic()`` or ``Benders(...)``.
        constraint_scaling: Rescale every constraint row by its largest absolute coefficient after assembly.
    """

    discount_rate: float = 0.0
    period_lengths: tuple[int, ...] = ()
    solution_algorithm: SolutionAlgorithm = field(default_factory=Monolithic)
    constraint_scaling: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'period_lengths', tuple(self.period_lengths))
        if self.discount_rate < 0:
            raise ValueError(f'discount_rate must not be negative, got {self.discount_rate}')
        for length in self.period_lengths:
            if int(length) != length or length < 1:
                raise ValueError(f'Period lengths must be positive integers, got {self.period_lengths}')

    def replace(self, **changes) -> CaseSettings:
        return dataclasses.replace(self, **changes)


class Period(Element):
    """
    One planning stage: a network snapshot operated over a time domain.

    Args:
        label: The label of the period. Prefixes the names of all its variables and constraints.
        network: The nodes and assets of the period. Its edges must not be shared with other periods.
        time_domain: The operational time steps of the period.
        index: Position of the period, starting at 1. Assigned by the Case if not given.
    """

    def __init__(self, label: str, network: NetworkGraph, time_domain: TimeDomain, index: int | None = None):
        super().__init__(label)
        self.network = network
        self.time_domain = time_domain
        self.index = index

    def _plausibility_checks(self) -> None:
        pass

    def __repr__(self) -> str:
        return (
            f'Period(label={self.label!r}, index={self.index}, '
            f'network={self.network!r}, time_domain={self.time_domain!r})'
        )


class Case(Interface):
    """
    The ordered periods of a capacity-expansion problem and the settings shared by them.

    Args:
        periods: The periods, in chronological order.
        settings: The shared settings. ``period_lengths`` must hold one entry per period.

    Raises:
        AssemblyError: If the periods are out of order, labels repeat, edges are shared between periods
            or the number of period lengths does not match.
    """

    def __init__(self, periods: Sequence[Period], settings: CaseSettings | None = None):
        self.periods = list(periods)
        self.settings = settings if settings is not None else CaseSettings(period_lengths=(1,) * len(self.periods))
        for position, period in enumerate(self.periods, start=1):
            if period.index is None:
                period.index = position
        self._plausibility_checks()

    def _plausibility_checks(self) -> None:
        indices = [period.index for period in self.periods]
        if indices != list(range(1, len(self.periods) + 1)):
            raise AssemblyError(f'Periods must be ordered 1..{len(self.periods)}, got {indices}')
        labels = [period.label for period in self.periods]
        if len(set(labels)) != len(labels):
            raise AssemblyError(f'Period labels must be unique, got {labels}')
        if len(self.settings.period_lengths) != len(self.periods):
            raise AssemblyError(
                f'Expected {len(self.periods)} period lengths, got {len(self.settings.period_lengths)}'
            )
        owner: dict[int, str] = {}
        for period in self.periods:
            for edge in period.network.edges:
                if id(edge) in owner:
                    raise AssemblyError(
                        f'Edge "{edge.label_full}" of period "{period.label}" is shared with period "{owner[id(edge)]}"'
                    )
                owner[id(edge)] = period.label

    def period(self, index: int) -> Period:
        """The period at position ``index``, starting at 1."""
        if not 1 <= index <= len(self.periods):
            raise IndexError(f'Period {index} does not exist, the case has {len(self.periods)} periods')
        return self.periods[index - 1]

    def with_settings(self, **changes) -> Case:
        """A case over the same periods with modified settings."""
        return Case(self.periods, self.settings.replace(**changes))

    def __iter__(self) -> Iterator[Period]:
        return iter(self.periods)

    def __len__(self) -> int:
        return len(self.periods)

    def __repr__(self) -> str:
        return f'Case(periods={[period.label for period in self.periods]}, settings={self.settings!r})'
