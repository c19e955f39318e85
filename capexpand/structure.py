"""
This module contains the core structure of capexpand.
These classes are not directly used by the end user, but are used by other modules.
"""

from __future__ import annotations

import inspect
import logging
from io import StringIO
from typing import TYPE_CHECKING, Any

import linopy
import numpy as np
from rich.console import Console
from rich.pretty import Pretty

if TYPE_CHECKING:
    from .time_domain import TimeDomain

logger = logging.getLogger('capexpand')


class ExpansionModel(linopy.Model):
    """
    The linopy Model that holds the variables and constraints of one assembled program.

    Every model carries a reference variable ``vREF`` fixed to 1. Cost registers and
    balances start from ``0 * vREF`` so that they are well-formed linear expressions
    even when nothing contributes to them.
    """

    def __init__(self, label: str = 'model'):
        super().__init__(force_dim_names=True)
        self.label = label
        self.reference = self.add_variables(lower=1, upper=1, name='vREF')
        self.linking_variables: dict[str, linopy.Variable] = {}

    def zero(self) -> linopy.LinearExpression:
        """A scalar linear expression equal to zero."""
        return 0 * self.reference

    def constant(self, value: float) -> linopy.LinearExpression:
        """A scalar linear expression equal to ``value``."""
        return float(value) * self.reference

    def get_coords(self, time_domain: TimeDomain) -> list:
        return [time_domain.index]

    def register_linking_variable(self, variable: linopy.Variable) -> None:
        if variable.name in self.linking_variables:
            raise KeyError(f'Linking variable "{variable.name}" is already registered')
        self.linking_variables[variable.name] = variable

    def linking_values(self) -> dict[str, float]:
        """Solution values of all linking variables, keyed by variable name."""
        return {name: float(variable.solution) for name, variable in self.linking_variables.items()}

    @property
    def statistics(self) -> dict[str, int]:
        return {
            'variables': self.nvars,
            'constraints': self.ncons,
            'integers': self.variables.integers.nvars + self.variables.binaries.nvars,
        }


class Interface:
    """
    Base class for all user-facing data classes of capexpand.

    Provides a constructor-based ``__repr__`` and a rich ``__str__``.
    """

    def _init_arguments(self) -> dict[str, Any]:
        if not hasattr(self, '_cached_init_params'):
            self._cached_init_params = [
                name for name in inspect.signature(self.__init__).parameters if name not in ('self', 'args', 'kwargs')
            ]
        return {name: getattr(self, name, None) for name in self._cached_init_params}

    def get_structure(self) -> dict[str, Any]:
        """Nested dictionary of the constructor arguments, for inspection."""
        structure = {'__class__': self.__class__.__name__}
        for name, value in self._init_arguments().items():
            if value is None:
                continue
            structure[name] = self._to_basic(value)
        return structure

    @classmethod
    def _to_basic(cls, value):
        if isinstance(value, Interface):
            return value.get_structure()
        if isinstance(value, (list, tuple)):
            return [cls._to_basic(item) for item in value]
        if isinstance(value, dict):
            return {key: cls._to_basic(item) for key, item in value.items()}
        if isinstance(value, np.ndarray):
            return value.tolist() if value.size <= 10 else f'array(shape={value.shape})'
        if hasattr(value, 'values') and hasattr(value, 'dims'):
            return f'{type(value).__name__}(dims={tuple(value.dims)}, size={value.size})'
        return value

    def __repr__(self):
        args_parts = []
        for name, value in self._init_arguments().items():
            value_repr = repr(value)
            if len(value_repr) > 50:
                value_repr = value_repr[:47] + '...'
            args_parts.append(f'{name}={value_repr}')
        return f'{self.__class__.__name__}({", ".join(args_parts)})'

    def __str__(self):
        with StringIO() as output_buffer:
            console = Console(file=output_buffer, width=1000)
            console.print(Pretty(self.get_structure(), expand_all=True, indent_guides=True))
            return output_buffer.getvalue()


class Element(Interface):
    """Basic labelled element of capexpand."""

    def __init__(self, label: str, meta_data: dict | None = None):
        """
        Args:
            label: The label of the element
            meta_data: used to store more information about the Element. Is not used internally.
        """
        self.label = Element._valid_label(label)
        self.meta_data = meta_data if meta_data is not None else {}

    def _plausibility_checks(self) -> None:
        """This function is used to do some basic plausibility checks for each Element during initialization"""
        raise NotImplementedError('Every Element needs a _plausibility_checks() method')

    @property
    def label_full(self) -> str:
        return self.label

    @staticmethod
    def _valid_label(label: str) -> str:
        """
        Checks if the label is valid.

        Raises
        ------
        ValueError
            If the label is not valid
        """
        not_allowed = ['(', ')', '|', '->', '\\']
        if not isinstance(label, str) or not label.strip():
            raise ValueError(f'Label must be a non-empty string, got {label!r}')
        if any(sign in label for sign in not_allowed):
            raise ValueError(
                f'Label "{label}" is not valid. Labels cannot contain the following characters: {not_allowed}. '
                f'Use any other symbol instead'
            )
        if label.endswith(' '):
            logger.warning(f'Label "{label}" ends with a space. This will be removed.')
            return label.rstrip()
        return label
