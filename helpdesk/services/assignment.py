"""
Workload-balanced auto-assignment and manual assignment validation.

The category -> eligible role mapping is not hardcoded: it is read from the
category catalog into an AssignmentPolicy and handed to the engine.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from helpdesk.core.errors import NotFound, RoutingFailure, ValidationFailed
from helpdesk.models.assignment_history import TicketAssignmentHistory
from helpdesk.models.category import TicketCategory
from helpdesk.models.enums import ACTIVE_STATUSES, AssignmentType, AutoAssigned, Role
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User

logger = logging.getLogger(__name__)


def _parse_roles(values: Optional[Iterable[str]], context: str) -> Tuple[Role, ...]:
    roles: List[Role] = []
    for value in values or []:
        try:
            role = Role.parse(value)
        except ValueError:
            logger.warning("Ignoring unknown role %r in %s", value, context)
            continue
        if role == Role.STUDENT:
            logger.warning("Ignoring non-staff role %r in %s", value, context)
            continue
        if role not in roles:
            roles.append(role)
    return tuple(roles)


@dataclass(frozen=True)
class AssignmentPolicy:
    category_roles: Mapping[int, Tuple[Role, ...]]
    default_roles: Tuple[Role, ...] = (Role.COUNSELOR,)

    def eligible_roles(self, category_id: Optional[int]) -> Tuple[Role, ...]:
        roles = self.category_roles.get(category_id) if category_id is not None else None
        return roles or self.default_roles

    @classmethod
    def from_catalog(cls, db: Session, default_roles: Sequence[str]) -> "AssignmentPolicy":
        mapping: Dict[int, Tuple[Role, ...]] = {}
        for category in db.query(TicketCategory).all():
            mapping[category.id] = _parse_roles(category.eligible_roles, f"category {category.slug}")
        defaults = _parse_roles(default_roles, "DEFAULT_ASSIGNEE_ROLES") or (Role.COUNSELOR,)
        return cls(category_roles=mapping, default_roles=defaults)


@dataclass(frozen=True)
class Candidate:
    user_id: str
    role: str
    workload: int


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of an auto-assignment attempt; failure is a value, not an exception."""

    assignee: Optional[User] = None
    candidates: List[Candidate] = field(default_factory=list)
    skipped: bool = False
    failure: Optional[RoutingFailure] = None

    @property
    def assigned(self) -> bool:
        return self.assignee is not None


def open_workloads(db: Session, user_ids: Iterable[str]) -> Dict[str, int]:
    """Count Open / In Progress tickets currently assigned to each user."""
    ids = list(user_ids)
    if not ids:
        return {}
    rows = (
        db.query(Ticket.assigned_to, func.count(Ticket.id))
        .filter(Ticket.assigned_to.in_(ids))
        .filter(Ticket.status.in_(ACTIVE_STATUSES))
        .group_by(Ticket.assigned_to)
        .all()
    )
    counts = {user_id: 0 for user_id in ids}
    counts.update({user_id: int(count) for user_id, count in rows})
    return counts


def find_candidates(db: Session, roles: Sequence[Role]) -> List[Candidate]:
    """Active staff of the given roles, least loaded first (ties by id ascending)."""
    if not roles:
        return []
    staff = (
        db.query(User)
        .filter(User.role.in_([r.value for r in roles]))
        .filter(User.status == "active")
        .order_by(User.id.asc())
        .all()
    )
    workloads = open_workloads(db, [u.id for u in staff])
    candidates = [Candidate(user_id=u.id, role=u.role, workload=workloads[u.id]) for u in staff]
    return sorted(candidates, key=lambda c: (c.workload, c.user_id))


def _record_history(
    db: Session,
    ticket: Ticket,
    *,
    assigned_from: Optional[str],
    assigned_to: Optional[str],
    assigned_by: Optional[str],
    assignment_type: AssignmentType,
    reason: Optional[str],
    now: datetime,
    criteria: Optional[dict] = None,
) -> TicketAssignmentHistory:
    entry = TicketAssignmentHistory(
        ticket=ticket,
        assigned_from=assigned_from,
        assigned_to=assigned_to,
        assigned_by=assigned_by,
        assignment_type=assignment_type.value,
        reason=reason,
        assignment_criteria=criteria,
        assigned_at=now,
    )
    db.add(entry)
    return entry


def auto_assign(db: Session, ticket: Ticket, policy: AssignmentPolicy, now: datetime) -> AssignmentOutcome:
    """
    Pick the least-loaded active eligible staff member for a freshly persisted ticket.

    Runs inside the caller's transaction so the workload counts and the write
    of ``assigned_to`` see the same snapshot.
    """
    category = ticket.category
    if category is not None and not category.auto_assign:
        ticket.auto_assigned = AutoAssigned.NO.value
        return AssignmentOutcome(skipped=True)

    roles = policy.eligible_roles(ticket.category_id)
    candidates = find_candidates(db, roles)
    if not candidates:
        ticket.assigned_to = None
        ticket.auto_assigned = AutoAssigned.NO.value
        failure = RoutingFailure(
            f"No active staff with roles {[r.value for r in roles]} for ticket {ticket.ticket_number}"
        )
        return AssignmentOutcome(candidates=[], failure=failure)

    chosen = candidates[0]
    assignee = db.get(User, chosen.user_id)
    reason = f"Auto-assigned to {assignee.name or assignee.id} (open workload: {chosen.workload})"

    ticket.assigned_to = assignee.id
    ticket.assignee = assignee
    ticket.auto_assigned = AutoAssigned.YES.value
    ticket.assigned_at = now
    ticket.assignment_reason = reason

    _record_history(
        db,
        ticket,
        assigned_from=None,
        assigned_to=assignee.id,
        assigned_by=None,
        assignment_type=AssignmentType.AUTO,
        reason=reason,
        now=now,
        criteria={
            "roles": [r.value for r in roles],
            "workloads": {c.user_id: c.workload for c in candidates},
        },
    )
    return AssignmentOutcome(assignee=assignee, candidates=candidates)


def validate_manual_assignee(db: Session, ticket: Ticket, assignee_id: str, policy: AssignmentPolicy) -> User:
    """Target must exist, be active staff, and (unless admin) be eligible for the ticket's category."""
    assignee = db.get(User, assignee_id)
    if assignee is None:
        raise NotFound("Assignee not found")

    try:
        role = Role.parse(assignee.role)
    except ValueError:
        role = None
    if role is None or not role.is_staff:
        raise ValidationFailed.for_field("assigned_to", "Can only assign tickets to staff members")
    if assignee.status != "active":
        raise ValidationFailed.for_field("assigned_to", "Can only assign tickets to active staff members")
    if role != Role.ADMIN and role not in policy.eligible_roles(ticket.category_id):
        raise ValidationFailed.for_field(
            "assigned_to", "This staff member is not eligible for the ticket's category"
        )
    return assignee


def apply_manual_assignment(
    db: Session,
    ticket: Ticket,
    assignee: Optional[User],
    *,
    actor_id: str,
    reason: str,
    now: datetime,
) -> TicketAssignmentHistory:
    previous = ticket.assigned_to
    ticket.assigned_to = assignee.id if assignee else None
    ticket.assignee = assignee
    ticket.auto_assigned = AutoAssigned.MANUAL.value
    ticket.assignment_reason = reason
    ticket.assigned_at = now if assignee else None

    return _record_history(
        db,
        ticket,
        assigned_from=previous,
        assigned_to=ticket.assigned_to,
        assigned_by=actor_id,
        assignment_type=AssignmentType.MANUAL if assignee else AssignmentType.UNASSIGN,
        reason=reason,
        now=now,
    )
