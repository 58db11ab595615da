"""
Structured logging with chat-turn correlation.

Every primary turn gets a short turn id. It is carried in context variables
together with the session and user ids, so that log lines from the pipeline,
the retry controller and the persistence layer can be grouped per turn.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory

turn_id_var: ContextVar[Optional[str]] = ContextVar("turn_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# Client libraries that log every HTTP request at INFO
_NOISY_LOGGERS = ("openai", "httpx", "httpcore")


class StructuredLogger:
    """Structured logger for one component, tagged with the current turn."""

    def __init__(self, name: str, component: Optional[str] = None):
        self.name = name
        self.component = component or name.rsplit(".", 1)[-1]
        self.logger = structlog.get_logger(name)

    def _context(self) -> Dict[str, Any]:
        context: Dict[str, Any] = {"component": self.component}
        if turn_id := turn_id_var.get():
            context["turn_id"] = turn_id
        if session_id := session_id_var.get():
            context["session_id"] = session_id
        if user_id := user_id_var.get():
            context["user_id"] = user_id
        return context

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **self._context(), **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **self._context(), **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, **self._context(), **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **self._context(), **kwargs)

    def log_step(
        self, step: str, duration_ms: Optional[float] = None, **kwargs: Any
    ) -> None:
        """Log a named step of a turn, with its duration once finished."""
        if duration_ms is not None:
            kwargs["duration_ms"] = round(duration_ms, 1)
        self.logger.info(f"Step: {step}", step=step, **self._context(), **kwargs)


def get_logger(name: str, component: Optional[str] = None) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, component)


def new_turn_id() -> str:
    """Short id for correlating the log lines of one chat turn."""
    return uuid.uuid4().hex[:12]


def set_turn_context(
    turn_id: Optional[str] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Set the correlation fields that are given; others are left as they are."""
    if turn_id:
        turn_id_var.set(turn_id)
    if session_id:
        session_id_var.set(session_id)
    if user_id:
        user_id_var.set(user_id)


def clear_turn_context() -> None:
    """Forget the turn and session; the loaded user stays in context."""
    turn_id_var.set(None)
    session_id_var.set(None)


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the stdlib root logger for the application."""
    level = level.upper()

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.add_log_level,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )

    if level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


class StepTimer:
    """Context manager that logs the start and end of a turn step."""

    def __init__(self, logger: StructuredLogger, step: str, **kwargs: Any):
        self.logger = logger
        self.step = step
        self.kwargs = kwargs
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self) -> "StepTimer":
        self.start_time = time.perf_counter()
        self.logger.log_step(f"{self.step}_start", **self.kwargs)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.start_time is None:
            return
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        self.logger.log_step(
            f"{self.step}_end",
            duration_ms=self.duration_ms,
            status="success" if exc_type is None else "error",
            **self.kwargs,
        )
