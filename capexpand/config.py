from __future__ import annotations

import datetime
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import MappingProxyType

import colorlog
from colorlog.escape_codes import escape_codes

__all__ = ['CONFIG', 'MultilineFormatter', 'ColoredMultilineFormatter']

# Custom SUCCESS level (between INFO and WARNING)
SUCCESS_LEVEL = 25
logging.addLevelName(SUCCESS_LEVEL, 'SUCCESS')


def _success(self, message, *args, **kwargs):
    """Log a message with severity 'SUCCESS'."""
    if self.isEnabledFor(SUCCESS_LEVEL):
        self._log(SUCCESS_LEVEL, message, args, **kwargs)


logging.Logger.success = _success


def _format_time(record: logging.LogRecord) -> str:
    # formatTime doesn't support %f, so use datetime directly
    dt = datetime.datetime.fromtimestamp(record.created)
    return dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]


def _record_lines(formatter: logging.Formatter, record: logging.LogRecord) -> list[str]:
    lines = record.getMessage().split('\n')
    if record.exc_info:
        lines.extend(formatter.formatException(record.exc_info).split('\n'))
    if record.stack_info:
        lines.extend(record.stack_info.rstrip().split('\n'))
    return lines


class MultilineFormatter(logging.Formatter):
    """Formatter that renders multi-line messages with box-style borders."""

    def format(self, record):
        lines = _record_lines(self, record)
        time_str = _format_time(record)
        level_str = f'{record.levelname: <8}'

        if len(lines) == 1:
            return f'{time_str} {level_str} │ {lines[0]}'

        result = f'{time_str} {level_str} │ ┌─ {lines[0]}'
        indent = ' ' * 23  # width of 'YYYY-MM-DD HH:MM:SS.mmm'
        for line in lines[1:-1]:
            result += f'\n{indent} {" " * 8} │ │  {line}'
        result += f'\n{indent} {" " * 8} │ └─ {lines[-1]}'
        return result


class ColoredMultilineFormatter(colorlog.ColoredFormatter):
    """Colored formatter with multi-line message support."""

    def format(self, record):
        lines = _record_lines(self, record)
        dim = escape_codes['thin']
        reset = escape_codes['reset']
        time_formatted = f'{dim}{_format_time(record)}{reset}'

        color = escape_codes.get(self.log_colors.get(record.levelname, ''), '')
        level_str = f'{record.levelname: <8}'

        if len(lines) == 1:
            return f'{time_formatted} {color}{level_str}{reset} │ {lines[0]}'

        result = f'{time_formatted} {color}{level_str}{reset} │ {color}┌─ {lines[0]}{reset}'
        indent = ' ' * 23
        for line in lines[1:-1]:
            result += f'\n{dim}{indent}{reset} {" " * 8} │ {color}│  {line}{reset}'
        result += f'\n{dim}{indent}{reset} {" " * 8} │ {color}└─ {lines[-1]}{reset}'
        return result


# SINGLE SOURCE OF TRUTH - immutable to prevent accidental modification
_DEFAULTS = MappingProxyType(
    {
        'config_name': 'capexpand',
        'modeling': MappingProxyType(
            {
                'epsilon': 1e-5,
                'allocation_workers': 1,
            }
        ),
        'solving': MappingProxyType(
            {
                'mip_gap': 0.01,
                'time_limit_seconds': 300,
                'log_to_console': True,
                'log_main_results': True,
            }
        ),
        'decomposition': MappingProxyType(
            {
                'max_iterations': 50,
                'gap_tolerance': 1e-3,
                'time_limit_seconds': None,
                'max_workers': 1,
                'multicut': True,
            }
        ),
    }
)


class CONFIG:
    """Configuration for capexpand.

    Attributes:
        Logging: Logging configuration (see CONFIG.Logging for details).
        Modeling: Model assembly parameters.
        Solving: Solver defaults.
        Decomposition: Defaults of the Benders decomposition loop.
        config_name: Configuration name.

    Examples:
        ```python
        CONFIG.Logging.enable_console('INFO')

        # Or use presets (affects logging and solver output)
        CONFIG.debug()
        CONFIG.production('capexpand.log')
        CONFIG.silent()

        CONFIG.Decomposition.max_iterations = 200
        CONFIG.Solving.mip_gap = 0.001
        ```
    """

    class Logging:
        """Logging configuration helpers.

        capexpand is silent by default (WARNING level, no handlers).

        Methods:
            - ``enable_console(level='INFO', colored=True, stream=None)``
            - ``enable_file(level='INFO', path='capexpand.log', max_bytes=10MB, backup_count=5)``
            - ``disable()`` - Remove all handlers
        """

        @classmethod
        def enable_console(cls, level: str | int = 'INFO', colored: bool = True, stream=None) -> None:
            """Enable console logging.

            Args:
                level: Log level (DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL or logging constant)
                colored: Use colored output (default: True)
                stream: Output stream (default: sys.stdout).
            """
            logger = logging.getLogger('capexpand')

            if isinstance(level, str):
                level = logging.getLevelName(level.upper())

            logger.setLevel(level)

            if stream is None:
                stream = sys.stdout

            # Remove existing console handlers to avoid duplicates
            logger.handlers = [
                h
                for h in logger.handlers
                if not isinstance(h, logging.StreamHandler) or isinstance(h, logging.FileHandler)
            ]

            if colored:
                handler = colorlog.StreamHandler(stream)
                handler.setFormatter(
                    ColoredMultilineFormatter(
                        '%(log_color)s%(levelname)-8s%(reset)s %(message)s',
                        log_colors={
                            'DEBUG': 'cyan',
                            'INFO': '',
                            'SUCCESS': 'green',
                            'WARNING': 'yellow',
                            'ERROR': 'red',
                            'CRITICAL': 'bold_red',
                        },
                    )
                )
            else:
                handler = logging.StreamHandler(stream)
                handler.setFormatter(MultilineFormatter('%(levelname)-8s %(message)s'))

            logger.addHandler(handler)
            logger.propagate = False

        @classmethod
        def enable_file(
            cls,
            level: str | int = 'INFO',
            path: str | Path = 'capexpand.log',
            max_bytes: int = 10 * 1024 * 1024,
            backup_count: int = 5,
        ) -> None:
            """Enable file logging with rotation.

            Args:
                level: Log level (DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL or logging constant)
                path: Path to log file (default: 'capexpand.log')
                max_bytes: Maximum file size before rotation in bytes (default: 10MB)
                backup_count: Number of backup files to keep (default: 5)
            """
            logger = logging.getLogger('capexpand')

            if isinstance(level, str):
                level = logging.getLevelName(level.upper())

            logger.setLevel(level)

            # Remove existing file handlers to avoid duplicates
            logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

            log_path = Path(path)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
            handler.setFormatter(MultilineFormatter())

            logger.addHandler(handler)
            logger.propagate = False

        @classmethod
        def disable(cls) -> None:
            """Disable all capexpand logging."""
            logger = logging.getLogger('capexpand')
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()
            logger.addHandler(logging.NullHandler())
            logger.setLevel(logging.CRITICAL)

    class Modeling:
        """Model assembly parameters.

        Attributes:
            epsilon: Tolerance for numerical comparisons (e.g. repeated planning decisions).
            allocation_workers: Threads used to plan edge allocations. 1 plans sequentially.
        """

        epsilon: float = _DEFAULTS['modeling']['epsilon']
        allocation_workers: int = _DEFAULTS['modeling']['allocation_workers']

    class Solving:
        """Solver configuration and default parameters.

        Attributes:
            mip_gap: Default MIP gap tolerance for solver convergence.
            time_limit_seconds: Default time limit in seconds for solver runs.
            log_to_console: Whether the solver (and progress bars) output to console.
            log_main_results: Whether to log main results after solving.
        """

        mip_gap: float = _DEFAULTS['solving']['mip_gap']
        time_limit_seconds: int = _DEFAULTS['solving']['time_limit_seconds']
        log_to_console: bool = _DEFAULTS['solving']['log_to_console']
        log_main_results: bool = _DEFAULTS['solving']['log_main_results']

    class Decomposition:
        """Defaults of the Benders decomposition loop.

        Attributes:
            max_iterations: Iteration limit of the planning/subproblem loop.
            gap_tolerance: Relative gap between upper and lower bound that counts as converged.
            time_limit_seconds: Wall-clock limit, checked at iteration boundaries after the first iteration.
                None disables it.
            max_workers: Threads used to solve the subproblems of one iteration.
            multicut: One cost-to-go variable and cut per period (True) or one aggregated cut (False).
        """

        max_iterations: int = _DEFAULTS['decomposition']['max_iterations']
        gap_tolerance: float = _DEFAULTS['decomposition']['gap_tolerance']
        time_limit_seconds: float | None = _DEFAULTS['decomposition']['time_limit_seconds']
        max_workers: int = _DEFAULTS['decomposition']['max_workers']
        multicut: bool = _DEFAULTS['decomposition']['multicut']

    config_name: str = _DEFAULTS['config_name']

    @classmethod
    def reset(cls) -> None:
        """Reset all configuration values to defaults and disable logging."""
        for key, value in _DEFAULTS['modeling'].items():
            setattr(cls.Modeling, key, value)

        for key, value in _DEFAULTS['solving'].items():
            setattr(cls.Solving, key, value)

        for key, value in _DEFAULTS['decomposition'].items():
            setattr(cls.Decomposition, key, value)

        cls.config_name = _DEFAULTS['config_name']
        cls.Logging.disable()

    @classmethod
    def to_dict(cls) -> dict:
        """Convert the configuration class into a dictionary for JSON serialization.

        Returns:
            Dictionary representation of the current configuration.
        """
        return {
            'config_name': cls.config_name,
            'modeling': {key: getattr(cls.Modeling, key) for key in _DEFAULTS['modeling']},
            'solving': {key: getattr(cls.Solving, key) for key in _DEFAULTS['solving']},
            'decomposition': {key: getattr(cls.Decomposition, key) for key in _DEFAULTS['decomposition']},
        }

    @classmethod
    def silent(cls) -> type[CONFIG]:
        """Configure for silent operation: no logging, no solver output."""
        cls.Logging.disable()
        cls.Solving.log_to_console = False
        cls.Solving.log_main_results = False
        return cls

    @classmethod
    def debug(cls) -> type[CONFIG]:
        """Configure for debug mode with verbose output."""
        cls.Logging.enable_console('DEBUG')
        cls.Solving.log_to_console = True
        cls.Solving.log_main_results = True
        return cls

    @classmethod
    def production(cls, log_file: str | Path = 'capexpand.log') -> type[CONFIG]:
        """Configure for production use: file logging only, no solver console output.

        Args:
            log_file: Path to log file (default: 'capexpand.log')
        """
        cls.Logging.disable()
        cls.Logging.enable_file('INFO', log_file)
        cls.Solving.log_to_console = False
        cls.Solving.log_main_results = False
        return cls
