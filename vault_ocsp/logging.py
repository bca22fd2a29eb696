from __future__ import annotations

import inspect
import logging
import logging.config
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Any, TypeVar

audit_logger = logging.getLogger("audit")
performance_logger = logging.getLogger("performance")
NO_MOUNT = "-"

correlation_id_var = ContextVar("correlation_id", default="")
mount_var = ContextVar("mount", default=NO_MOUNT)


class RequestContextFilter(logging.Filter):
    """Stamps records with the correlation id and PKI mount of the current request"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        record.mount = mount_var.get()
        return True


@contextmanager
def correlation_context() -> Iterator[str]:
    correlation_id = str(uuid.uuid4())
    id_token = correlation_id_var.set(correlation_id)
    mount_token = mount_var.set(NO_MOUNT)
    try:
        yield correlation_id
    finally:
        mount_var.reset(mount_token)
        correlation_id_var.reset(id_token)


@contextmanager
def mount_context(mount: str) -> Iterator[None]:
    token = mount_var.set(mount)
    try:
        yield
    finally:
        mount_var.reset(token)


def configure_logging(log_level: int, log_files: str | None) -> None:
    logging.config.dictConfig(get_log_config(log_level, log_files))


def _handler(level: int | str, formatter: str, log_files: str | None, name: str) -> dict:
    handler: dict[str, Any] = {
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
    }
    if log_files:
        handler["class"] = "logging.FileHandler"
        handler["filename"] = log_files.format(name)
    else:
        handler["class"] = "logging.StreamHandler"
    return handler


def get_log_config(log_level: int, log_files: str | None) -> dict:
    """
    Configure the logging.

    Standard out is used if no log files are specified. `log_files`
    is a pattern, where `{}` is replaced with the name of the handler,
    e.g. "/var/log/vault-ocsp/{}.log".

    The audit and performance logs are meant to be parsed, so they
    don't get the usual prefixes.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "handlers": {
            "app": _handler(log_level, "default", log_files, "app"),
            "access": _handler("INFO", "default", log_files, "access"),
            "audit": _handler("INFO", "bare", log_files, "audit"),
            "performance": _handler("INFO", "bare", log_files, "performance"),
        },
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s [%(mount)s] "
                "%(message)s (%(correlation_id)s)"
            },
            "bare": {"format": "%(asctime)s %(message)s"},
        },
        "loggers": {
            "": {"level": log_level, "handlers": ["app"], "propagate": True},
            # httpx logs every request to Vault at INFO
            "httpx": {"level": "WARNING"},
            "performance": {
                "level": "INFO",
                "handlers": ["performance"],
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["access"],
                "propagate": False,
            },
            "audit": {"level": "INFO", "handlers": ["audit"], "propagate": False},
        },
    }


F = TypeVar("F", bound=Callable[..., Any])


def _log_time_taken(
    func: Callable, args: tuple, id_param: int | None, start: float
) -> None:
    time_taken = (time.perf_counter() - start) * 1000
    id_arg = args[id_param] if id_param is not None else ".."

    performance_logger.info(
        "METHOD=%s(%s) MOUNT=%s TIME_TAKEN=%d CORRELATION_ID=%s",
        func.__qualname__,
        id_arg,
        mount_var.get(),
        time_taken,
        correlation_id_var.get(),
    )


def performance_log(id_param: int | None = None) -> Callable[[F], F]:
    """
    Logs how long calls to the decorated function take, successful or not.

    `id_param` is the index of a positional argument to include
    in the log line, e.g. the mount name.
    """

    def config_decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _log_time_taken(func, args, id_param, start)

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                _log_time_taken(func, args, id_param, start)

        return wrapper  # type: ignore[return-value]

    return config_decorator
