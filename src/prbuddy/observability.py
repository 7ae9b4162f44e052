"""Structured ``event=... key=value`` logging for prbuddy.

Nothing here writes to stdout: when prbuddy runs as an MCP server the stdio
transport owns it.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
import json
import logging
import os
from pathlib import Path, PurePath
import sys
import time
from typing import Final, Literal, cast


_LOGGER_NAME: Final[str] = "prbuddy"
_MAX_VALUE_LEN: Final[int] = 120
_LINE_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"
_KEY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "server_started",
        "tool_call_failed",
        "comments_aggregated",
        "github_pr_created",
        "jira_ticket_created",
        "jira_ticket_transitioned",
        "highlight_created",
    }
)

VerboseMode = Literal["low", "high"]


def configure_logging(
    verbose: bool | str | None,
    *,
    log_dir: Path | None = None,
) -> None:
    """Route the ``prbuddy`` logger to stderr and optionally a daily file.

    ``verbose`` is ``None``/``False`` (silent), ``True``/``"high"`` (every
    event) or ``"low"`` (key events and warnings only). Calling this again
    replaces the previous handlers.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    mode = _parse_mode(verbose)
    if mode is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        handlers.append(_UtcDailyFileHandler(log_dir=log_dir))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(_LINE_FORMAT))
        if mode == "low":
            handler.addFilter(_EventAllowList(_KEY_EVENTS))
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.info(format_event(event, fields))


def log_warning_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.warning(format_event(event, fields))


@contextmanager
def timed_event(
    logger: logging.Logger, event: str, **fields: object
) -> Iterator[dict[str, object]]:
    """Log ``event`` with ``duration_ms`` once the block finishes.

    The yielded dict can be filled with fields only known at the end. A
    block that raises is logged with ``outcome=exception`` and re-raised.
    """
    extra: dict[str, object] = {}
    started = time.monotonic()
    outcome = "ok"
    try:
        yield extra
    except BaseException:
        outcome = "exception"
        raise
    finally:
        duration_ms = int((time.monotonic() - started) * 1000)
        merged = {**fields, **extra, "outcome": outcome, "duration_ms": duration_ms}
        log_event(logger, event, **merged)


def format_event(event: str, fields: dict[str, object]) -> str:
    rendered = " ".join(f"{key}={_render(fields[key])}" for key in sorted(fields))
    head = f"event={_render(event)}"
    return f"{head} {rendered}" if rendered else head


def _render(value: object) -> str:
    if value is None:
        text = "null"
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, int | float):
        text = str(value)
    elif isinstance(value, datetime | date):
        text = value.isoformat()
    elif isinstance(value, PurePath):
        text = value.as_posix()
    elif isinstance(value, str):
        text = _clip(" ".join(value.split())) or "<empty>"
    elif isinstance(value, tuple | list | frozenset | set):
        text = ",".join(_render(item) for item in value) or "<empty>"
    else:
        text = f"<{type(value).__name__}>"

    if "=" in text or any(ch.isspace() for ch in text):
        return json.dumps(text)
    return text


def _clip(text: str) -> str:
    if len(text) <= _MAX_VALUE_LEN:
        return text
    return text[:_MAX_VALUE_LEN] + "..."


def _parse_mode(verbose: bool | str | None) -> VerboseMode | None:
    if verbose is None or verbose is False:
        return None
    if verbose is True:
        return "high"
    mode = verbose.strip().lower()
    if mode not in ("low", "high"):
        raise ValueError(f"Unsupported verbose mode: {verbose!r}")
    return cast(VerboseMode, mode)


def _event_name(message: str) -> str | None:
    head, _, _ = message.partition(" ")
    name = head.removeprefix("event=")
    if name == head or not name:
        return None
    return name


class _EventAllowList(logging.Filter):
    """Pass warnings and above, plus INFO records whose event is allowed."""

    def __init__(self, events: frozenset[str]) -> None:
        super().__init__()
        self._events = events

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return _event_name(record.getMessage()) in self._events


class _UtcDailyFileHandler(logging.FileHandler):
    """Append to ``prbuddy-YYYY-MM-DD.log``, switching files at UTC midnight."""

    def __init__(self, *, log_dir: Path) -> None:
        self._log_dir = log_dir
        self._active_date = _utc_date_key()
        super().__init__(self._path_for(self._active_date), encoding="utf-8", delay=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_current_stream()
        except Exception:
            self.handleError(record)
            return
        super().emit(record)

    def _ensure_current_stream(self) -> None:
        date_key = _utc_date_key()
        if self.stream is not None and date_key == self._active_date:
            return
        if self.stream is not None:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._active_date = date_key
        self.baseFilename = os.path.abspath(self._path_for(date_key))
        self.stream = self._open()

    def _path_for(self, date_key: str) -> Path:
        return self._log_dir / f"prbuddy-{date_key}.log"


def _utc_date_key() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")
