"""
Structured logging for the rolling-average query service.

Module loggers come from `get_logger(__name__)`.  Code that runs on behalf of
a single query execution wraps its logger with `bind_query` so every line
carries the query id.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

from src.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


class QueryLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[query_id]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['query_id']}] {msg}", kwargs


def bind_query(logger: logging.Logger, query_id: str) -> QueryLogAdapter:
    return QueryLogAdapter(logger, {"query_id": query_id})
