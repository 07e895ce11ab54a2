from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from helpdesk.core.auth import Principal
from helpdesk.core.errors import Forbidden, StateConflict
from helpdesk.models.enums import TicketStatus
from helpdesk.services.lifecycle import (
    TagAction,
    apply_status,
    apply_tag_action,
    check_transition,
    on_response,
    reset_for_assignment,
)

STAFF = Principal("couns-a", "counselor")
STUDENT = Principal("stu-1", "student")
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_ticket(status=TicketStatus.OPEN):
    return SimpleNamespace(status=status.value, resolved_at=None, closed_at=None)


def test_forward_moves_allowed_including_skips():
    check_transition(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
    check_transition(TicketStatus.OPEN, TicketStatus.CLOSED)
    check_transition(TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED)


@pytest.mark.parametrize(
    "current,target",
    [
        (TicketStatus.IN_PROGRESS, TicketStatus.OPEN),
        (TicketStatus.RESOLVED, TicketStatus.OPEN),
        (TicketStatus.CLOSED, TicketStatus.RESOLVED),
    ],
)
def test_backward_moves_rejected(current, target):
    with pytest.raises(StateConflict):
        check_transition(current, target)


@pytest.mark.parametrize("current", [TicketStatus.RESOLVED, TicketStatus.CLOSED])
def test_reopen_edge(current):
    check_transition(current, TicketStatus.IN_PROGRESS)


def test_stamps_are_kept_on_reopen():
    ticket = make_ticket(TicketStatus.IN_PROGRESS)
    assert apply_status(ticket, TicketStatus.RESOLVED, STAFF, NOW)
    assert apply_status(ticket, TicketStatus.CLOSED, STAFF, NOW + timedelta(hours=1))
    assert apply_status(ticket, TicketStatus.IN_PROGRESS, STAFF, NOW + timedelta(hours=2))

    assert ticket.status == "In Progress"
    assert ticket.resolved_at == NOW
    assert ticket.closed_at == NOW + timedelta(hours=1)

    # resolving again does not move the original stamp
    apply_status(ticket, TicketStatus.RESOLVED, STAFF, NOW + timedelta(hours=3))
    assert ticket.resolved_at == NOW


def test_same_status_is_a_no_op():
    ticket = make_ticket(TicketStatus.OPEN)
    assert apply_status(ticket, TicketStatus.OPEN, STAFF, NOW) is False


def test_students_cannot_change_status():
    with pytest.raises(Forbidden):
        apply_status(make_ticket(), TicketStatus.RESOLVED, STUDENT, NOW)


def test_first_staff_response_moves_open_to_in_progress():
    ticket = make_ticket()
    assert on_response(ticket, STUDENT) is False
    assert ticket.status == "Open"
    assert on_response(ticket, STAFF) is True
    assert ticket.status == "In Progress"
    assert on_response(ticket, STAFF) is False


def test_reset_for_assignment():
    ticket = make_ticket(TicketStatus.RESOLVED)
    reset_for_assignment(ticket, assigned=True)
    assert ticket.status == "In Progress"
    reset_for_assignment(ticket, assigned=False)
    assert ticket.status == "Open"


def test_tag_add_is_idempotent():
    once = apply_tag_action([], TagAction.ADD, ["urgent"])
    twice = apply_tag_action(once, TagAction.ADD, ["urgent"])
    assert once == twice == ["urgent"]


def test_tag_remove_missing_is_no_op():
    assert apply_tag_action(["housing"], TagAction.REMOVE, ["visa"]) == ["housing"]


def test_tag_set_replaces_everything():
    assert apply_tag_action(["a", "b"], TagAction.SET, ["c", " c ", ""]) == ["c"]


def test_tag_order_insensitive():
    assert apply_tag_action(["b"], TagAction.ADD, ["c", "a"]) == apply_tag_action(["b"], TagAction.ADD, ["a", "c"])
