"""
This module bundles all common functionality of capexpand and sets up the logging
"""

import logging
import warnings
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version('capexpand')
except (PackageNotFoundError, TypeError):
    # Package is not installed (development mode without editable install)
    __version__ = '0.0.0.dev0'

from . import results, solvers
from .case import Case, CaseSettings, Period
from .components import Asset, Battery, ThermalPlant, TransmissionLine, VariableRenewable
from .config import CONFIG
from .core import (
    AllocationError,
    AssemblyError,
    ConversionError,
    ConvergenceWarning,
    PlausibilityError,
    SolveError,
    Stage,
    TerminationStatus,
)
from .costs import CostAggregator
from .decomposition import Benders, DecompositionController, DecompositionStage, Monolithic, solve_case
from .elements import Capability, Edge, Node
from .model_builder import ModelBuilder, PeriodCosts
from .network import NetworkGraph
from .preallocation import ConstraintKind, EdgeOptimizationManager, EdgeVariableStore, ModelScope, VariableKind
from .results import SolutionStatus, SolveResult
from .solvers import GurobiSolver, HighsSolver
from .time_domain import TimeDomain

__all__ = [
    'CONFIG',
    'TimeDomain',
    'Node',
    'Edge',
    'Capability',
    'Asset',
    'ThermalPlant',
    'VariableRenewable',
    'Battery',
    'TransmissionLine',
    'NetworkGraph',
    'Period',
    'Case',
    'CaseSettings',
    'EdgeVariableStore',
    'EdgeOptimizationManager',
    'VariableKind',
    'ConstraintKind',
    'ModelScope',
    'ModelBuilder',
    'PeriodCosts',
    'CostAggregator',
    'Monolithic',
    'Benders',
    'DecompositionController',
    'DecompositionStage',
    'solve_case',
    'SolveResult',
    'SolutionStatus',
    'HighsSolver',
    'GurobiSolver',
    'AllocationError',
    'AssemblyError',
    'ConversionError',
    'ConvergenceWarning',
    'PlausibilityError',
    'SolveError',
    'Stage',
    'TerminationStatus',
    'results',
    'solvers',
]

# Initialize logger with default configuration (silent: WARNING level, NullHandler)
logger = logging.getLogger('capexpand')
logger.setLevel(logging.WARNING)
logger.addHandler(logging.NullHandler())

# === Runtime warning suppression for third-party libraries ===
# These filters match the test configuration in pyproject.toml.

# linopy: Linear optimization library
# - UserWarning: Coordinate mismatch warnings that don't affect functionality and are expected.
warnings.filterwarnings(
    'ignore', category=UserWarning, message='Coordinates across variables not equal', module='linopy'
)
# - FutureWarning: join parameter default will change in future versions
warnings.filterwarnings(
    'ignore',
    category=FutureWarning,
    message="In a future version of xarray the default value for join will change from join='outer' to join='exact'",
    module='linopy',
)
