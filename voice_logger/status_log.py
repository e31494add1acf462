from __future__ import annotations

import logging
from datetime import datetime

from .db import Database
from .errors import ErrorReporter, PersistenceError
from .models import ToggleEvent, ToggleKind


class StatusEventLogger:
    """Appends mute/deafen/stream/video toggles to each user's event document."""

    def __init__(
        self,
        db: Database,
        errors: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.errors = errors or ErrorReporter()
        self.logger = logger or logging.getLogger(__name__)

    def append(self, user_id: str, username: str, kind: ToggleKind, timestamp: datetime) -> None:
        with self.errors.guard("log voice event", PersistenceError, user_id=user_id, event=kind.value):
            self.db.push_voice_event(user_id, username, ToggleEvent(event=kind, timestamp=timestamp))
            self.logger.info("User %s %s at %s", username, kind.value, timestamp.isoformat())
