from datetime import datetime, timezone

import pytest

from helpdesk.core.errors import NotFound, ValidationFailed
from helpdesk.models.enums import Role
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.services.assignment import (
    AssignmentPolicy,
    apply_manual_assignment,
    auto_assign,
    find_candidates,
    open_workloads,
    validate_manual_assignee,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
_counter = iter(range(1, 10000))


def add_ticket(db, category, assigned_to=None, status="Open"):
    ticket = Ticket(
        ticket_number=f"T{next(_counter):05d}",
        owner_id="stu-1",
        category_id=category.id,
        subject="Housing question",
        description="Where do I pick up my room keys for next term?",
        priority="Medium",
        priority_score=50,
        status=status,
        assigned_to=assigned_to,
        detected_crisis_keywords=[],
        tags=[],
    )
    db.add(ticket)
    db.flush()
    return ticket


@pytest.fixture
def policy(db, users, categories):
    return AssignmentPolicy.from_catalog(db, ["counselor"])


def test_policy_reads_catalog(policy, categories):
    assert policy.eligible_roles(categories["academic"].id) == (Role.ADVISOR,)
    assert policy.eligible_roles(categories["general"].id) == (Role.COUNSELOR, Role.ADVISOR)
    assert policy.eligible_roles(999) == (Role.COUNSELOR,)


def test_policy_ignores_unknown_and_student_roles(db, categories):
    categories["walk-in"].eligible_roles = ["janitor", "student"]
    db.commit()
    policy = AssignmentPolicy.from_catalog(db, ["advisor"])
    assert policy.eligible_roles(categories["walk-in"].id) == (Role.ADVISOR,)


def test_workloads_count_only_active_tickets(db, categories):
    general = categories["general"]
    add_ticket(db, general, "couns-a")
    add_ticket(db, general, "couns-a", status="In Progress")
    add_ticket(db, general, "couns-a", status="Resolved")
    add_ticket(db, general, "couns-b", status="Closed")

    assert open_workloads(db, ["couns-a", "couns-b"]) == {"couns-a": 2, "couns-b": 0}


def test_candidates_exclude_inactive_staff_and_sort_by_load(db, users, categories):
    add_ticket(db, categories["general"], "couns-a")
    candidates = find_candidates(db, [Role.COUNSELOR])
    assert [c.user_id for c in candidates] == ["couns-b", "couns-a"]
    assert [c.workload for c in candidates] == [0, 1]


def test_auto_assign_picks_least_loaded(db, categories, policy):
    crisis = categories["crisis"]
    add_ticket(db, crisis, "couns-b")
    add_ticket(db, crisis, "couns-b")
    add_ticket(db, crisis, "couns-a")
    ticket = add_ticket(db, crisis)

    outcome = auto_assign(db, ticket, policy, NOW)
    db.flush()

    assert outcome.assigned
    assert ticket.assigned_to == "couns-a"
    assert ticket.auto_assigned == "yes"
    assert ticket.assigned_at == NOW
    history = ticket.assignment_history[-1]
    assert history.assignment_type == "auto"
    assert history.assigned_by is None
    assert history.assignment_criteria["workloads"] == {"couns-a": 1, "couns-b": 2}


def test_ties_break_on_lowest_id(db, categories, policy):
    ticket = add_ticket(db, categories["crisis"])
    auto_assign(db, ticket, policy, NOW)
    assert ticket.assigned_to == "couns-a"


def test_no_eligible_staff_is_not_fatal(db, users, categories, policy):
    users["adv-1"].status = "inactive"
    db.commit()
    ticket = add_ticket(db, categories["academic"])

    outcome = auto_assign(db, ticket, policy, NOW)

    assert not outcome.assigned
    assert outcome.failure is not None
    assert ticket.assigned_to is None
    assert ticket.auto_assigned == "no"


def test_auto_assign_switch_off_skips_routing(db, categories, policy):
    ticket = add_ticket(db, categories["walk-in"])
    outcome = auto_assign(db, ticket, policy, NOW)
    assert outcome.skipped
    assert outcome.failure is None
    assert ticket.assigned_to is None


def test_manual_assignee_validation(db, categories, policy):
    ticket = add_ticket(db, categories["crisis"])

    with pytest.raises(NotFound):
        validate_manual_assignee(db, ticket, "ghost", policy)
    with pytest.raises(ValidationFailed) as e:
        validate_manual_assignee(db, ticket, "stu-2", policy)
    assert "assigned_to" in e.value.field_errors
    with pytest.raises(ValidationFailed):
        validate_manual_assignee(db, ticket, "couns-z", policy)
    with pytest.raises(ValidationFailed):
        validate_manual_assignee(db, ticket, "adv-1", policy)

    assert validate_manual_assignee(db, ticket, "couns-b", policy).id == "couns-b"
    # admins are eligible everywhere
    assert validate_manual_assignee(db, ticket, "admin-1", policy).id == "admin-1"


def test_manual_assignment_and_unassignment_history(db, users, categories):
    ticket = add_ticket(db, categories["general"], "couns-a")
    counselor = db.get(User, "couns-b")

    apply_manual_assignment(db, ticket, counselor, actor_id="admin-1", reason="Specialist", now=NOW)
    assert ticket.assigned_to == "couns-b"
    assert ticket.auto_assigned == "manual"
    assert ticket.assignment_reason == "Specialist"

    apply_manual_assignment(db, ticket, None, actor_id="admin-1", reason="Back to queue", now=NOW)
    db.flush()
    assert ticket.assigned_to is None
    assert ticket.assigned_at is None
    assert [(h.assigned_from, h.assigned_to, h.assignment_type) for h in ticket.assignment_history] == [
        ("couns-a", "couns-b", "manual"),
        ("couns-b", None, "unassign"),
    ]
