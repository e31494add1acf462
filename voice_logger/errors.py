from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator


class VoiceLoggerError(Exception):
    category = "internal"


class MissingContextError(VoiceLoggerError):
    """Guild, member, presence or device data was not available."""

    category = "missing-context"


class InvalidTimestampError(VoiceLoggerError):
    category = "validation"


class PersistenceError(VoiceLoggerError):
    category = "persistence"


class NotificationError(VoiceLoggerError):
    category = "notification"


class ErrorReporter:
    """Default failure policy: log the error and carry on.

    Every handler failure is routed through ``report`` so a stricter policy
    can be swapped in without touching tracking logic.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("voice_logger.errors")

    def report(self, error: VoiceLoggerError, action: str, **context: Any) -> None:
        details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        # Only unexpected causes carry a traceback; expected aborts log one line.
        exc_info = error if error.__cause__ is not None else None
        self.logger.error(
            "%s failed [%s]: %s %s",
            action,
            error.category,
            error,
            details,
            exc_info=exc_info,
        )

    @contextmanager
    def guard(
        self,
        action: str,
        error_cls: type[VoiceLoggerError] = VoiceLoggerError,
        **context: Any,
    ) -> Iterator[None]:
        try:
            yield
        except VoiceLoggerError as exc:
            self.report(exc, action, **context)
        except Exception as exc:
            wrapped = error_cls(str(exc) or exc.__class__.__name__)
            wrapped.__cause__ = exc
            self.report(wrapped, action, **context)


class StrictErrorReporter(ErrorReporter):
    """Logs like the default reporter, then re-raises."""

    def report(self, error: VoiceLoggerError, action: str, **context: Any) -> None:
        super().report(error, action, **context)
        raise error
