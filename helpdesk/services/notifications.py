"""
Notification intents.

The engine only decides *who* should hear about *what*; delivery belongs to
an external dispatcher. Dispatch failures are reported as values and never
reach the operation that produced the intent.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"


@dataclass(frozen=True)
class NotificationIntent:
    kind: str  # ticket_created/crisis_alert/ticket_assigned/new_response/status_changed/ticket_deleted
    recipient_id: str
    title: str
    message: str
    priority: str = PRIORITY_NORMAL
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DispatchResult:
    intent: NotificationIntent
    delivered: bool
    error: Optional[str] = None


class NotificationDispatcher(Protocol):
    def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        ...


class LoggingDispatcher:
    """Used when no delivery endpoint is configured."""

    def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        logger.info(
            "Notification %s -> %s (%s): %s",
            intent.kind,
            intent.recipient_id,
            intent.priority,
            intent.title,
        )
        return DispatchResult(intent=intent, delivered=True)


class WebhookDispatcher:
    """POSTs each intent as JSON to the delivery service."""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        try:
            response = self.session.post(self.url, json=intent.to_dict(), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            return DispatchResult(intent=intent, delivered=False, error=str(e))
        return DispatchResult(intent=intent, delivered=True)


def dispatch_all(dispatcher: NotificationDispatcher, intents: List[NotificationIntent]) -> List[DispatchResult]:
    """Fire every intent; failures are logged and dropped."""
    results: List[DispatchResult] = []
    for intent in intents:
        try:
            result = dispatcher.dispatch(intent)
        except Exception as e:  # operation is already committed
            logger.exception("Notification dispatcher raised for %s -> %s", intent.kind, intent.recipient_id)
            result = DispatchResult(intent=intent, delivered=False, error=str(e))
        if not result.delivered:
            logger.error(
                "Dropping notification %s -> %s: %s",
                intent.kind,
                intent.recipient_id,
                result.error,
            )
        results.append(result)
    return results


def create_dispatcher(cfg) -> NotificationDispatcher:
    if cfg.NOTIFICATION_WEBHOOK_URL:
        return WebhookDispatcher(cfg.NOTIFICATION_WEBHOOK_URL, timeout=cfg.NOTIFICATION_TIMEOUT_SECONDS)
    return LoggingDispatcher()
