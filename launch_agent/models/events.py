"""Bounded per-strategy event log."""

import logging
from enum import StrEnum

from pydantic import BaseModel

from launch_agent.models.common import now_ts


class EventKind(StrEnum):
    INFO = "info"
    BID = "bid"
    SELL = "sell"
    TRADE = "trade"
    ERROR = "error"


class LogEntry(BaseModel):
    time: float
    message: str
    kind: EventKind = EventKind.INFO


def append_event(
    log: list[LogEntry],
    message: str,
    kind: EventKind,
    limit: int,
    logger: logging.Logger,
    prefix: str,
) -> LogEntry:
    """Append to a rolling log, dropping the oldest entries past ``limit``."""
    entry = LogEntry(time=now_ts(), message=message, kind=kind)
    log.append(entry)
    if len(log) > limit:
        del log[: len(log) - limit]
    level = logging.WARNING if kind == EventKind.ERROR else logging.INFO
    logger.log(level, "[%s] %s", prefix, message)
    return entry
