"""
Structured logging for the DLQ service

All modules log through structlog. Connection strings carry shared access
keys, so every event passes through a masking processor before rendering.
"""

import logging
import re
import sys
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

import structlog
from structlog.types import EventDict, Processor

# Broker connection strings embed "SharedAccessKey=<secret>"
_SECRET_PATTERN = re.compile(r"(SharedAccessKey\s*=\s*)[^;\s\"']+", re.IGNORECASE)
_MASK = "***"

# Chatty libraries that would otherwise log every request or query at INFO
_QUIET_LOGGERS = ("uvicorn.access", "psycopg", "httpx")


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact shared access keys from every string value of an event"""
    for key, value in event_dict.items():
        if isinstance(value, str) and "=" in value:
            event_dict[key] = _SECRET_PATTERN.sub(lambda m: m.group(1) + _MASK, value)
    if "connection_string" in event_dict:
        event_dict["connection_string"] = _MASK
    return event_dict


def _build_processors(log_format: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        mask_secrets,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Route structlog through stdlib logging on stdout

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" for production, "console" for local runs
    """
    level = logging.getLevelName(log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_build_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def scan_log_context(namespace_id: str) -> Iterator[None]:
    """Tag every event logged inside a namespace scan with its namespace"""
    with structlog.contextvars.bound_contextvars(namespace_id=namespace_id):
        yield


@contextmanager
def replay_log_context(rule_id: int, rule_name: str) -> Iterator[None]:
    """Tag every event logged inside a replay-all run with its rule"""
    with structlog.contextvars.bound_contextvars(rule_id=rule_id, rule=rule_name):
        yield


def log_replay_outcome(
    logger: structlog.stdlib.BoundLogger,
    record_id: int,
    destination: str,
    outcome: str,
    error: Optional[str] = None,
) -> None:
    """
    Audit one replayed message

    Successes log at INFO; failures log at WARNING with the broker error.
    """
    audit = logger.bind(record_id=record_id, destination=destination, outcome=outcome)
    if outcome == "Success":
        audit.info("Message replayed")
    else:
        audit.warning("Message replay failed", error=error)
