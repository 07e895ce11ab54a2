import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from helpdesk.models.category import TicketCategory
from helpdesk.models.enums import Priority
from helpdesk.services.crisis import CrisisResult

logger = logging.getLogger(__name__)

BASE_PRIORITY_SCORES = {
    Priority.URGENT: 100,
    Priority.HIGH: 75,
    Priority.MEDIUM: 50,
    Priority.LOW: 25,
}
CRISIS_BONUS = 50


def compute_priority_score(priority: Priority, crisis_flag: bool) -> Decimal:
    score = BASE_PRIORITY_SCORES.get(priority, BASE_PRIORITY_SCORES[Priority.LOW])
    if crisis_flag:
        score += CRISIS_BONUS
    return Decimal(score).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class Escalation:
    category: TicketCategory
    priority: Priority
    priority_score: Decimal
    crisis_flag: bool
    escalated: bool  # category or priority was overridden


def escalate(
    category: TicketCategory,
    priority: Priority,
    crisis: CrisisResult,
    crisis_category: Optional[TicketCategory],
) -> Escalation:
    """
    Apply the crisis signal to the submitter's category/priority choice.

    A detected crisis forces Urgent priority and moves the ticket into the
    crisis category (unless it is already there). Runs once, before the
    ticket is first persisted.
    """
    if not crisis.detected:
        return Escalation(
            category=category,
            priority=priority,
            priority_score=compute_priority_score(priority, False),
            crisis_flag=False,
            escalated=False,
        )

    target = category
    if crisis_category is None:
        logger.warning(
            "Crisis detected but no active crisis category is configured; keeping category %s",
            category.slug,
        )
    elif category.id != crisis_category.id:
        target = crisis_category

    return Escalation(
        category=target,
        priority=Priority.URGENT,
        priority_score=compute_priority_score(Priority.URGENT, True),
        crisis_flag=True,
        escalated=target is not category or priority != Priority.URGENT,
    )
