"""Tests for the config module."""

import logging

import pytest

from capexpand.config import _DEFAULTS, CONFIG, MultilineFormatter

logger = logging.getLogger('capexpand')


# All tests in this class will run in the same worker to prevent issues with global config altering
@pytest.mark.xdist_group(name='config_tests')
class TestConfigModule:
    """Test the CONFIG class and logging setup."""

    def setup_method(self):
        """Reset CONFIG to defaults before each test."""
        CONFIG.reset()

    def teardown_method(self):
        """Clean up after each test to prevent state leakage."""
        CONFIG.reset()

    def test_config_defaults(self):
        """Test that CONFIG has correct default values."""
        assert CONFIG.Modeling.epsilon == 1e-5
        assert CONFIG.Modeling.allocation_workers == 1
        assert CONFIG.Solving.mip_gap == 0.01
        assert CONFIG.Solving.time_limit_seconds == 300
        assert CONFIG.Solving.log_to_console is True
        assert CONFIG.Solving.log_main_results is True
        assert CONFIG.Decomposition.max_iterations == 50
        assert CONFIG.Decomposition.gap_tolerance == 1e-3
        assert CONFIG.Decomposition.time_limit_seconds is None
        assert CONFIG.Decomposition.max_workers == 1
        assert CONFIG.Decomposition.multicut is True
        assert CONFIG.config_name == 'capexpand'

    def test_silent_by_default(self, capfd):
        logger.info('test message')
        captured = capfd.readouterr()
        assert 'test message' not in captured.out
        assert 'test message' not in captured.err

    def test_enable_console(self, capfd):
        """Test that DEBUG level logs appear in console output."""
        CONFIG.Logging.enable_console('DEBUG')
        test_message = 'test debug message 12345'
        logger.debug(test_message)
        captured = capfd.readouterr()
        assert test_message in captured.out

    def test_enable_console_uncolored(self, capfd):
        CONFIG.Logging.enable_console('INFO', colored=False)
        logger.info('first line\nsecond line')
        captured = capfd.readouterr()
        assert '┌─ first line' in captured.out
        assert '└─ second line' in captured.out

    def test_console_handlers_are_not_duplicated(self):
        CONFIG.Logging.enable_console('INFO')
        CONFIG.Logging.enable_console('INFO')
        stream_handlers = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]
        assert len(stream_handlers) == 1

    def test_enable_file(self, tmp_path):
        """Test that WARNING level logs appear in the file."""
        log_file = tmp_path / 'logs' / 'test.log'
        CONFIG.Logging.enable_file('WARNING', log_file)
        test_message = 'test warning message 67890'
        logger.warning(test_message)
        logger.info('not written')
        for handler in logger.handlers:
            handler.flush()
        content = log_file.read_text()
        assert test_message in content
        assert 'not written' not in content

    def test_success_level(self, capfd):
        CONFIG.Logging.enable_console('SUCCESS')
        logger.info('hidden info')
        logger.success('solved it')
        captured = capfd.readouterr()
        assert 'solved it' in captured.out
        assert 'SUCCESS' in captured.out
        assert 'hidden info' not in captured.out

    def test_disable(self, capfd):
        CONFIG.Logging.enable_console('DEBUG')
        CONFIG.Logging.disable()
        logger.warning('should not appear')
        captured = capfd.readouterr()
        assert 'should not appear' not in captured.out
        assert all(isinstance(h, logging.NullHandler) for h in logger.handlers)

    def test_reset(self):
        CONFIG.Modeling.epsilon = 1
        CONFIG.Solving.mip_gap = 0.5
        CONFIG.Decomposition.max_iterations = 3
        CONFIG.Decomposition.multicut = False
        CONFIG.config_name = 'changed'
        CONFIG.reset()
        assert CONFIG.Modeling.epsilon == _DEFAULTS['modeling']['epsilon']
        assert CONFIG.Solving.mip_gap == _DEFAULTS['solving']['mip_gap']
        assert CONFIG.Decomposition.max_iterations == _DEFAULTS['decomposition']['max_iterations']
        assert CONFIG.Decomposition.multicut is True
        assert CONFIG.config_name == 'capexpand'

    def test_to_dict(self):
        CONFIG.Decomposition.gap_tolerance = 1e-6
        config_dict = CONFIG.to_dict()
        assert config_dict['config_name'] == 'capexpand'
        assert config_dict['decomposition']['gap_tolerance'] == 1e-6
        assert set(config_dict) == {'config_name', 'modeling', 'solving', 'decomposition'}
        assert set(config_dict['solving']) == set(_DEFAULTS['solving'])

    def test_presets(self, tmp_path):
        CONFIG.debug()
        assert logger.level == logging.DEBUG
        assert CONFIG.Solving.log_to_console is True

        CONFIG.silent()
        assert CONFIG.Solving.log_to_console is False
        assert CONFIG.Solving.log_main_results is False

        log_file = tmp_path / 'capexpand.log'
        CONFIG.production(log_file)
        assert logger.level == logging.INFO
        assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        assert not any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers
        )
        assert CONFIG.Solving.log_to_console is False

    def test_defaults_are_immutable(self):
        with pytest.raises(TypeError):
            _DEFAULTS['solving']['mip_gap'] = 0.5


class TestMultilineFormatter:
    def test_single_line(self):
        record = logging.LogRecord('capexpand', logging.INFO, __file__, 1, 'one line', None, None)
        assert MultilineFormatter().format(record).endswith('INFO     │ one line')

    def test_multiple_lines(self):
        record = logging.LogRecord('capexpand', logging.INFO, __file__, 1, 'a\nb\nc', None, None)
        lines = MultilineFormatter().format(record).split('\n')
        assert len(lines) == 3
        assert lines[0].endswith('┌─ a')
        assert lines[1].endswith('│  b')
        assert lines[2].endswith('└─ c')
