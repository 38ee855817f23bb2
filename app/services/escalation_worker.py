"""Background worker for the periodic approval escalation sweep."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.database import SessionLocal
from app.services.moderation_service import ModerationService, SweepResult, moderation_service

logger = logging.getLogger(__name__)


class EscalationWorker:
    """Runs ModerationService.sweep on a fixed interval in a daemon thread."""

    def __init__(
        self,
        moderation: ModerationService,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: float = 300,
    ) -> None:
        self.moderation = moderation
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._sweep_count: int = 0
        self._escalated_count: int = 0
        self._lock = threading.Lock()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="escalation-worker", daemon=True)
        self._thread.start()
        logger.info("Escalation worker started (interval=%ss)", self.interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Escalation worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "sweep_count": self._sweep_count,
            "escalated_count": self._escalated_count,
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Escalation sweep failed")
            self._heartbeat = time.time()
            self._stop_event.wait(max(1.0, self.interval_seconds))

    def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        db = self.session_factory()
        try:
            result = self.moderation.sweep(db, now=now)
        finally:
            db.close()
        with self._lock:
            self._sweep_count += 1
            self._escalated_count += result.escalated
        return result


escalation_worker = EscalationWorker(
    moderation_service, interval_seconds=settings.ESCALATION_SWEEP_INTERVAL_SECONDS
)
