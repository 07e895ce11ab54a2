"""
Ticket lifecycle: Open -> In Progress -> Resolved -> Closed.

Status only moves forward, except the explicit staff reopen edge
(Resolved | Closed -> In Progress). Resolution/closure timestamps are an
audit trail and are never cleared once stamped.
"""
from datetime import datetime
from enum import Enum
from typing import Iterable, List

from helpdesk.core.auth import Principal
from helpdesk.core.errors import Forbidden, StateConflict
from helpdesk.models.enums import TicketStatus

REOPEN_SOURCES = (TicketStatus.RESOLVED, TicketStatus.CLOSED)


class TagAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    SET = "set"


def _stamp(ticket, status: TicketStatus, now: datetime) -> None:
    if status == TicketStatus.RESOLVED and ticket.resolved_at is None:
        ticket.resolved_at = now
    if status == TicketStatus.CLOSED and ticket.closed_at is None:
        ticket.closed_at = now


def is_reopen(current: TicketStatus, target: TicketStatus) -> bool:
    return current in REOPEN_SOURCES and target == TicketStatus.IN_PROGRESS


def check_transition(current: TicketStatus, target: TicketStatus) -> None:
    if target.rank >= current.rank or is_reopen(current, target):
        return
    raise StateConflict(f"Cannot move a ticket from {current.value} back to {target.value}")


def apply_status(ticket, target: TicketStatus, actor: Principal, now: datetime) -> bool:
    """Explicit status change by staff. Returns False when nothing changed."""
    if not actor.is_staff:
        raise Forbidden("Only staff can change ticket status")

    current = TicketStatus(ticket.status)
    if target == current:
        return False
    check_transition(current, target)

    ticket.status = target.value
    _stamp(ticket, target, now)
    return True


def on_response(ticket, author: Principal) -> bool:
    """First staff response on an Open ticket moves it to In Progress."""
    if author.is_staff and ticket.status == TicketStatus.OPEN.value:
        ticket.status = TicketStatus.IN_PROGRESS.value
        return True
    return False


def reset_for_assignment(ticket, assigned: bool) -> None:
    """Manual (re)assignment puts the ticket back in the working queue; clearing it reopens the backlog."""
    ticket.status = (TicketStatus.IN_PROGRESS if assigned else TicketStatus.OPEN).value


def normalize_tags(tags: Iterable[str]) -> List[str]:
    cleaned = {t.strip() for t in tags if t and t.strip()}
    return sorted(cleaned)


def apply_tag_action(current: Iterable[str], action: TagAction, tags: Iterable[str]) -> List[str]:
    """Idempotent, order-insensitive tag mutation; result is a sorted, de-duplicated list."""
    existing = set(normalize_tags(current or []))
    incoming = set(normalize_tags(tags))

    if action == TagAction.ADD:
        result = existing | incoming
    elif action == TagAction.REMOVE:
        result = existing - incoming
    else:
        result = incoming
    return sorted(result)
