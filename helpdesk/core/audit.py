from datetime import datetime, timedelta, timezone
from typing import Optional

from helpdesk.core.auth import Principal
from helpdesk.models.audit_log import AuditLog
from helpdesk.models.enums import Priority, TicketStatus
from sqlalchemy.orm import Session


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def sla_deadline(ticket) -> Optional[datetime]:
    category = ticket.category
    if category is None or not category.sla_response_hours or ticket.created_at is None:
        return None
    return as_utc(ticket.created_at) + timedelta(hours=category.sla_response_hours)


def is_overdue(ticket, now: Optional[datetime] = None) -> bool:
    deadline = sla_deadline(ticket)
    if deadline is None:
        return False
    now = now or datetime.now(timezone.utc)
    return TicketStatus(ticket.status).is_active and deadline < now


def _compute_risk_level(ticket, explicit: Optional[str] = None) -> str:
    if explicit:
        return explicit
    if ticket is None:
        return "low"
    if ticket.crisis_flag or is_overdue(ticket):
        return "high"
    if ticket.priority in (Priority.URGENT.value, Priority.HIGH.value):
        return "medium"
    return "low"


def log_audit(
    db: Session,
    *,
    actor: Optional[Principal],
    action: str,
    entity_type: str,
    entity_id: str,
    source: str = "api",
    ticket=None,
    description: Optional[str] = None,
    risk_level: Optional[str] = None,
) -> AuditLog:
    """Add an audit row to the caller's unit of work (committed together with the change)."""
    log = AuditLog(
        actor_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        actor_role=actor.role.value if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        source=source if actor else "system",
        status=ticket.status if ticket is not None else None,
        description=description,
        risk_level=_compute_risk_level(ticket, risk_level),
    )
    db.add(log)
    return log
