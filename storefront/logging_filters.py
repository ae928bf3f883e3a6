"""JSON logging with per-request correlation.

``RequestIdFilter`` injects the current request id into every log record
using the ContextVar set by the request-id middleware, so formatters can
reference ``%(request_id)s`` without modifying individual log statements.
``configure_logging`` installs a ``JsonStreamHandler``, a stream handler with a
``python-json-logger`` formatter, on the ``storefront`` logger hierarchy.
"""

import logging
from logging import Filter, LogRecord

from pythonjsonlogger import jsonlogger

from .middleware import REQUEST_ID_CTX

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    If no request is in flight a hyphen ("-") is used as a placeholder.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        return True


class JsonStreamHandler(logging.StreamHandler):
    """Stream handler emitting JSON records tagged with the request id."""

    def __init__(self, stream=None):
        super().__init__(stream)
        self.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        self.addFilter(RequestIdFilter())


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a ``JsonStreamHandler`` to the ``storefront`` logger once."""
    logger = logging.getLogger("storefront")
    if not any(isinstance(h, JsonStreamHandler) for h in logger.handlers):
        logger.addHandler(JsonStreamHandler())
    logger.setLevel(level)
    return logger
