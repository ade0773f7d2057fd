"""Per-client loggers."""

import itertools
import logging
from typing import Any, MutableMapping, Optional, Tuple, Union

from .config import LogLevel

CLIENT_LOGGER_NAME = "veniceai.client"

_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}

_client_ids = itertools.count(1)

# Every client logs through one shared logger; levels are filtered per client.
_shared = logging.getLogger(CLIENT_LOGGER_NAME)
_shared.setLevel(logging.DEBUG)


class ClientLogger(logging.LoggerAdapter):
    """
    A view of the shared ``veniceai.client`` logger for one client.

    Records carry ``client_id`` in their ``extra`` and are prefixed with
    ``[client N]``. The threshold lives on the adapter, so creating clients
    does not register new loggers.
    """

    def __init__(self, client_id: int, level: LogLevel) -> None:
        super().__init__(_shared, {"client_id": client_id})
        self.client_id = client_id
        self.threshold: Optional[int] = None if level == LogLevel.NONE else _LEVELS[level]

    def isEnabledFor(self, level: int) -> bool:
        return self.threshold is not None and level >= self.threshold

    def setLevel(self, level: int) -> None:
        self.threshold = level

    def getEffectiveLevel(self) -> int:
        return self.threshold if self.threshold is not None else logging.CRITICAL + 1

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return f"[client {self.client_id}] {msg}", kwargs


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def client_logger(level: LogLevel) -> ClientLogger:
    """
    Create the logger for one client instance.

    Records propagate to ``veniceai`` so handlers attached there see every
    client's output, while each client keeps its own level.
    """
    return ClientLogger(next(_client_ids), level)
