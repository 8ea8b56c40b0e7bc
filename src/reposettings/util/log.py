# src/reposettings/util/log.py: Structured logging with repository context.
# This module provides the logging setup of the application. The repository
# currently being processed lives in a context variable and is injected into
# every log record as the 'repo' field, either rendered as JSON through
# python-json-logger or as a plain text column.

import contextvars
import logging
from contextlib import contextmanager
from logging.config import dictConfig

repo_context = contextvars.ContextVar('repo_context', default=None)

PLAIN_FORMAT = '%(asctime)s - %(levelname)s - [%(repo)s] %(message)s'
JSON_FORMAT = '%(asctime)s %(name)s %(levelname)s %(repo)s %(message)s'


class RepoContextFilter(logging.Filter):
    """Adds the repository being processed to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.repo = repo_context.get() or "-"
        return True


@contextmanager
def repository_scope(repo: str):
    """Binds ``repo`` as the logging context for the duration of the block."""
    token = repo_context.set(repo)
    try:
        yield
    finally:
        repo_context.reset(token)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure the root logger for the application."""
    dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'filters': {
            'repo': {
                '()': RepoContextFilter,
            },
        },
        'formatters': {
            'json': {
                '()': 'pythonjsonlogger.json.JsonFormatter',
                'format': JSON_FORMAT,
            },
            'plain': {
                'format': PLAIN_FORMAT,
            },
        },
        'handlers': {
            'default': {
                'class': 'logging.StreamHandler',
                'stream': 'ext://sys.stderr',
                'formatter': 'json' if json_format else 'plain',
                'filters': ['repo'],
            },
        },
        'loggers': {
            'reposettings': {
                'handlers': ['default'],
                'level': level.upper(),
                'propagate': False,
            },
            '': {
                'handlers': ['default'],
                'level': 'WARNING',
            },
        },
    })


def get_logger(name):
    logger = logging.getLogger(name)
    if not any(isinstance(f, RepoContextFilter) for f in logger.filters):
        logger.addFilter(RepoContextFilter())
    return logger
