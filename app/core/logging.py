import copy
from logging.config import dictConfig
from typing import Any

from app.core.config import settings

# Uvicorn-compatible logging configuration. The "app" handler level is
# overridden from settings.log_level in setup_logging().
LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(levelprefix)s %(asctime)s [%(name)s] "%(request_line)s" %(status_code)s',
        },
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
            "level": "INFO",
        },
        "access": {
            "class": "logging.StreamHandler",
            "formatter": "access",
            "stream": "ext://sys.stdout",
            "level": "INFO",
        },
        "app": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
            "level": "DEBUG",
        },
    },
    "loggers": {
        "root": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        # Progress events are published several times per run; keep the
        # broadcaster and the HTTP client libraries quieter than the pipeline.
        "httpx": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        "openai": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        "app": {"handlers": ["app"], "level": "DEBUG", "propagate": False},
        "app.services.progress_broadcaster": {"handlers": ["app"], "level": "INFO", "propagate": False},
    },
}


def build_logging_config(level: str) -> dict[str, Any]:
    """Return a copy of LOGGING_CONFIG with the application loggers set to *level*."""
    config = copy.deepcopy(LOGGING_CONFIG)
    level = level.upper()
    config["handlers"]["app"]["level"] = level
    config["loggers"]["app"]["level"] = level
    return config


def setup_logging() -> None:
    """Configures application-wide logging using dictConfig."""
    dictConfig(build_logging_config(settings.log_level))
