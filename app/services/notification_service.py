"""Real-time notifications - session registry and lifecycle message dispatch."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from prometheus_client import Counter

logger = logging.getLogger(__name__)

NOTIFICATIONS_SENT = Counter(
    "notifications_sent_total",
    "Notification messages handed to connected sessions",
    ["kind"],
)

Sender = Callable[[Dict[str, Any]], None]

KIND_MESSAGES = {
    "event_submitted": "Your event has been submitted for approval",
    "event_approval_pending": "New event pending your approval",
    "event_approved": "Your event has been approved!",
    "mentor_assigned": "You've been assigned as mentor for \"{title}\"",
    "event_rejected": "Your event has been rejected",
    "event_escalated": "Event has been escalated to you for approval",
    "event_full": "Your event \"{title}\" has reached capacity",
}


@dataclass
class _Session:
    session_id: str
    user_id: str
    roles: tuple
    sender: Sender


class SessionRegistry:
    """
    Track live client sessions by user and role.

    Transports register a sender callable on connect and unregister it on
    disconnect. Senders must not block; the WebSocket adapter enqueues.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, _Session] = {}

    def register(self, user_id: str, roles: Iterable[str], sender: Sender) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._sessions[session_id] = _Session(
                session_id=session_id,
                user_id=user_id,
                roles=tuple(str(role).upper() for role in roles),
                sender=sender,
            )
        logger.info("User %s connected with session %s", user_id, session_id)
        return session_id

    def unregister(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session:
            logger.info("User %s disconnected session %s", session.user_id, session_id)

    def sessions_for_user(self, user_id: str) -> List[_Session]:
        with self._lock:
            return [s for s in self._sessions.values() if s.user_id == user_id]

    def sessions_for_role(self, role: str) -> List[_Session]:
        role = role.upper()
        with self._lock:
            return [s for s in self._sessions.values() if role in s.roles]

    def connected_users_count(self) -> int:
        with self._lock:
            return len({s.user_id for s in self._sessions.values()})

    def is_user_online(self, user_id: str) -> bool:
        return bool(self.sessions_for_user(user_id))


def event_summary(event) -> Dict[str, Any]:
    """Compact event payload embedded in notifications."""
    return {
        "id": event.id,
        "title": event.title,
        "college_id": event.college_id,
        "start_at": event.start_at.isoformat() if event.start_at else None,
        "moderation_status": event.moderation_status,
    }


class NotificationService:
    """
    Fire-and-forget lifecycle notifications.

    notify() never raises: a failing session is logged and skipped so the
    state transition that triggered it is unaffected.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def build_message(self, kind: str, event: Optional[Dict[str, Any]], **extra) -> Dict[str, Any]:
        template = KIND_MESSAGES.get(kind, kind)
        title = (event or {}).get("title", "")
        message = {
            "type": kind,
            "message": template.format(title=title),
            "event": event,
            "timestamp": datetime.utcnow().isoformat(),
        }
        message.update({k: v for k, v in extra.items() if v is not None})
        return message

    def notify(self, kind: str, recipients: Iterable[Optional[str]], payload: Dict[str, Any]) -> int:
        """Deliver a message to every session of each recipient; returns sessions reached."""
        delivered = 0
        try:
            event = payload.get("event")
            extra = {k: v for k, v in payload.items() if k != "event"}
            message = self.build_message(kind, event, **extra)
            for user_id in dict.fromkeys(r for r in recipients if r):
                for session in self.registry.sessions_for_user(user_id):
                    try:
                        session.sender(message)
                        delivered += 1
                    except Exception:
                        logger.exception("Failed to deliver %s to session %s", kind, session.session_id)
            if delivered:
                NOTIFICATIONS_SENT.labels(kind=kind).inc(delivered)
        except Exception:
            logger.exception("Notification dispatch failed for %s", kind)
        return delivered

    # Lifecycle helpers
    def event_submitted(self, author_id: str, event) -> int:
        return self.notify("event_submitted", [author_id], {"event": event_summary(event)})

    def approval_pending(self, admin_id: Optional[str], event) -> int:
        return self.notify("event_approval_pending", [admin_id], {"event": event_summary(event)})

    def event_approved(self, author_id: str, event, mentor: Optional[Dict[str, Any]] = None) -> int:
        return self.notify("event_approved", [author_id], {"event": event_summary(event), "mentor": mentor})

    def mentor_assigned(self, mentor_id: Optional[str], event) -> int:
        return self.notify("mentor_assigned", [mentor_id], {"event": event_summary(event)})

    def event_rejected(self, author_id: str, event, reason: Optional[str] = None) -> int:
        return self.notify("event_rejected", [author_id], {"event": event_summary(event), "reason": reason})

    def event_escalated(self, from_admin_id: Optional[str], to_admin_id: str, event) -> int:
        return self.notify(
            "event_escalated", [to_admin_id], {"event": event_summary(event), "escalated_from": from_admin_id}
        )

    def event_full(self, author_id: str, event) -> int:
        return self.notify("event_full", [author_id], {"event": event_summary(event)})


session_registry = SessionRegistry()
notification_service = NotificationService(session_registry)
