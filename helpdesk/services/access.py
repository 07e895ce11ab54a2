"""
Access control for tickets.

Every (principal, ticket) pair is first classified into exactly one relation
(first match wins), and the relation is then looked up in CAPABILITY_TABLE.
Keeping the policy in one table makes it testable without a database.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Callable, Collection, Dict, Iterable, List

from helpdesk.core.auth import Principal
from helpdesk.core.errors import Forbidden
from helpdesk.models.enums import ResponseVisibility, Role, TicketStatus


@dataclass(frozen=True)
class Capabilities:
    view: bool = False
    modify: bool = False
    respond: bool = False
    assign: bool = False
    delete: bool = False
    manage_tags: bool = False

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)


NO_CAPABILITIES = Capabilities()
ALL_CAPABILITIES = Capabilities(True, True, True, True, True, True)


class Relation(str, Enum):
    ADMIN = "admin"
    ASSIGNED_STAFF = "assigned_staff"
    ELIGIBLE_STAFF = "eligible_staff"
    OWNER = "owner"
    OTHER = "other"


CAPABILITY_TABLE: Dict[Relation, Callable[[TicketStatus], Capabilities]] = {
    Relation.ADMIN: lambda status: ALL_CAPABILITIES,
    Relation.ASSIGNED_STAFF: lambda status: Capabilities(
        view=True,
        modify=status != TicketStatus.CLOSED,
        respond=True,
        manage_tags=True,
    ),
    Relation.ELIGIBLE_STAFF: lambda status: Capabilities(view=True, respond=True),
    Relation.OWNER: lambda status: Capabilities(
        view=True,
        modify=status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS),
        respond=status != TicketStatus.CLOSED,
    ),
    Relation.OTHER: lambda status: NO_CAPABILITIES,
}


def classify(principal: Principal, ticket, eligible_roles: Collection[Role]) -> Relation:
    if principal.role == Role.ADMIN:
        return Relation.ADMIN
    if principal.is_staff and ticket.assigned_to is not None and ticket.assigned_to == principal.id:
        return Relation.ASSIGNED_STAFF
    if principal.is_staff and principal.role in eligible_roles:
        return Relation.ELIGIBLE_STAFF
    if ticket.owner_id == principal.id:
        return Relation.OWNER
    return Relation.OTHER


def evaluate(principal: Principal, ticket, eligible_roles: Collection[Role]) -> Capabilities:
    """Capability set of ``principal`` on ``ticket``. Pure; inactive principals get nothing."""
    if not principal.is_active:
        return NO_CAPABILITIES
    relation = classify(principal, ticket, eligible_roles)
    return CAPABILITY_TABLE[relation](TicketStatus(ticket.status))


def check_response_flags(principal: Principal, is_internal: bool, visibility: ResponseVisibility, is_urgent: bool) -> None:
    """Students may only post plain public responses; anything else is rejected outright."""
    if principal.is_staff:
        return
    if is_internal:
        raise Forbidden("Only staff can add internal notes")
    if visibility != ResponseVisibility.ALL:
        raise Forbidden("Only staff can restrict response visibility")
    if is_urgent:
        raise Forbidden("Only staff can flag responses as urgent")


def _can_see(principal: Principal, response) -> bool:
    visibility = ResponseVisibility(response.visibility or ResponseVisibility.ALL.value)
    if principal.role == Role.ADMIN:
        return True
    if principal.is_staff:
        return visibility != ResponseVisibility.ADMINS
    return not response.is_internal and visibility == ResponseVisibility.ALL


def visible_responses(principal: Principal, responses: Iterable) -> List:
    """
    Filter and order a ticket's conversation for ``principal``.

    Students never see internal notes. Admins get the full thread in
    chronological order; other staff get public responses first, then
    internal notes, each chronological.
    """
    chronological = sorted(
        (r for r in responses if _can_see(principal, r)),
        key=lambda r: (r.created_at is None, r.created_at, r.id),
    )
    if principal.role == Role.ADMIN or not principal.is_staff:
        return chronological
    return [r for r in chronological if not r.is_internal] + [r for r in chronological if r.is_internal]
