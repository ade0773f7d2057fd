"""
Tests for per-client logging.
"""

import logging

from veniceai import Venice
from veniceai._logging import CLIENT_LOGGER_NAME, client_logger
from veniceai.config import LogLevel


def registered_client_loggers():
    return {
        name
        for name in logging.Logger.manager.loggerDict
        if name == CLIENT_LOGGER_NAME or name.startswith(CLIENT_LOGGER_NAME + ".")
    }


def test_clients_share_one_registered_logger():
    before = registered_client_loggers()
    loggers = [client_logger(LogLevel.INFO) for _ in range(5)]
    with Venice(api_key="k") as client:
        loggers.append(client.logger)

    assert registered_client_loggers() == before == {CLIENT_LOGGER_NAME}
    assert len({logger.client_id for logger in loggers}) == len(loggers)
    assert all(logger.logger is loggers[0].logger for logger in loggers)


def test_threshold_is_per_client():
    quiet = client_logger(LogLevel.WARN)
    chatty = client_logger(LogLevel.DEBUG)
    silent = client_logger(LogLevel.NONE)

    assert not quiet.isEnabledFor(logging.INFO)
    assert quiet.isEnabledFor(logging.WARNING)
    assert chatty.isEnabledFor(logging.DEBUG)
    assert not silent.isEnabledFor(logging.CRITICAL)
    assert silent.getEffectiveLevel() > logging.CRITICAL

    silent.setLevel(logging.ERROR)
    assert silent.isEnabledFor(logging.ERROR)


def test_records_carry_client_id(caplog):
    info = client_logger(LogLevel.INFO)
    errors_only = client_logger(LogLevel.ERROR)

    with caplog.at_level(logging.DEBUG, logger=CLIENT_LOGGER_NAME):
        info.info("sent %s", "models.list")
        info.debug("dropped")
        errors_only.warning("dropped too")
        errors_only.error("failed")

    messages = [(record.client_id, record.getMessage()) for record in caplog.records]
    assert messages == [
        (info.client_id, f"[client {info.client_id}] sent models.list"),
        (errors_only.client_id, f"[client {errors_only.client_id}] failed"),
    ]
    assert all(record.name == CLIENT_LOGGER_NAME for record in caplog.records)
