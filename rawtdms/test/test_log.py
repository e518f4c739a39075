"""Test log level management"""

import logging
import pytest

from rawtdms.log import LogManager, Timer


def test_set_level_applies_to_existing_and_new_loggers():
    manager = LogManager()
    existing = manager.get_logger('rawtdms.test.log_existing')

    manager.set_level(logging.DEBUG)
    new = manager.get_logger('rawtdms.test.log_new')

    assert existing.level == logging.DEBUG
    assert new.level == logging.DEBUG
    assert manager.console_handler.level == logging.DEBUG


def test_set_level_by_name():
    manager = LogManager()
    log = manager.get_logger('rawtdms.test.log_by_name')

    manager.set_level('info')

    assert log.level == logging.INFO


def test_set_unknown_level_name():
    manager = LogManager()

    with pytest.raises(ValueError):
        manager.set_level('LOUD')


def test_get_logger_is_cached():
    manager = LogManager()

    assert manager.get_logger('rawtdms.test.log_cached') is manager.get_logger('rawtdms.test.log_cached')


def test_timer_logs_at_info(caplog):
    log = logging.getLogger('rawtdms.test.timer')
    with caplog.at_level(logging.INFO, logger='rawtdms.test.timer'):
        with Timer(log, "Operation"):
            pass

    assert "Operation: Took" in caplog.text


def test_timer_is_silent_below_info(caplog):
    log = logging.getLogger('rawtdms.test.timer_quiet')
    with caplog.at_level(logging.WARNING, logger='rawtdms.test.timer_quiet'):
        with Timer(log, "Operation"):
            pass

    assert "Operation" not in caplog.text
