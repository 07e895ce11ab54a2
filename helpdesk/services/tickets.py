"""
Ticket orchestration.

Each public operation is one unit of work: check capabilities, validate,
mutate ticket/response/attachment rows (plus attachment bytes) in a single
transaction, commit, then hand notification intents to the dispatcher.
Attachment bytes written before a later database failure are not rolled
back; the gateway only cleans up when the metadata row itself fails.
"""
import logging
import mimetypes
import random
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from helpdesk.core.audit import is_overdue, log_audit, sla_deadline
from helpdesk.core.auth import Principal
from helpdesk.core.errors import Forbidden, HelpdeskError, NotFound, StateConflict, ValidationFailed
from helpdesk.models.category import TicketCategory
from helpdesk.models.enums import AutoAssigned, Priority, Role, TicketStatus
from helpdesk.models.ticket import Ticket, TicketAttachment, TicketResponse
from helpdesk.models.user import User
from helpdesk.schemas.ticket import ResponseCreate, TagsUpdate, TicketAssign, TicketCreate, TicketDelete, TicketUpdate
from helpdesk.services import access, assignment, lifecycle
from helpdesk.services.crisis import CrisisDetector
from helpdesk.services.escalation import compute_priority_score, escalate
from helpdesk.services.notifications import (
    PRIORITY_HIGH,
    NotificationDispatcher,
    NotificationIntent,
    dispatch_all,
)
from helpdesk.services.storage import AttachmentStoreGateway, StoredObject, build_attachment_path

logger = logging.getLogger(__name__)

TICKET_NUMBER_ATTEMPTS = 50
STUDENT_EDITABLE_FIELDS = {"subject"}


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass
class TicketView:
    ticket: Ticket
    responses: List[TicketResponse]
    attachments: List[TicketAttachment]
    capabilities: access.Capabilities
    sla_deadline: Optional[datetime] = None
    is_overdue: bool = False


@dataclass
class TicketFilters:
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None
    category_id: Optional[int] = None
    assigned: Optional[str] = None  # "assigned" / "unassigned"
    search: Optional[str] = None
    limit: int = 20
    offset: int = 0


@dataclass
class DeletionResult:
    ticket_id: int
    ticket_number: str
    purge_failures: List[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    def __init__(
        self,
        db: Session,
        gateway: AttachmentStoreGateway,
        dispatcher: NotificationDispatcher,
        detector: CrisisDetector,
        cfg,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.detector = detector
        self.cfg = cfg
        self.clock = clock
        self._policy: Optional[assignment.AssignmentPolicy] = None

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    @property
    def policy(self) -> assignment.AssignmentPolicy:
        if self._policy is None:
            self._policy = assignment.AssignmentPolicy.from_catalog(self.db, self.cfg.default_assignee_roles)
        return self._policy

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except HelpdeskError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception("%s failed; transaction rolled back", operation)
            raise

    def _notify(self, intents: List[NotificationIntent]) -> None:
        if intents:
            dispatch_all(self.dispatcher, intents)

    def _get_ticket(self, ticket_id: int) -> Ticket:
        ticket = self.db.get(Ticket, ticket_id)
        if ticket is None:
            raise NotFound("Ticket not found")
        return ticket

    def capabilities(self, principal: Principal, ticket: Ticket) -> access.Capabilities:
        return access.evaluate(principal, ticket, self.policy.eligible_roles(ticket.category_id))

    def _require(self, principal: Principal, ticket: Ticket, capability: str) -> access.Capabilities:
        caps = self.capabilities(principal, ticket)
        if getattr(caps, capability):
            return caps

        logger.warning(
            "Denied %s on ticket %s to %s (%s)", capability, ticket.ticket_number, principal.id, principal.role.value
        )
        # Owner/assignee who would hold the capability on a live ticket: the ticket state is the problem
        if principal.is_active:
            relation = access.classify(principal, ticket, self.policy.eligible_roles(ticket.category_id))
            if getattr(access.CAPABILITY_TABLE[relation](TicketStatus.OPEN), capability):
                raise StateConflict(f"Ticket is {ticket.status}; this action is no longer allowed")
        raise Forbidden()

    def _generate_ticket_number(self) -> str:
        for _ in range(TICKET_NUMBER_ATTEMPTS):
            number = f"T{random.randint(1, 99999):05d}"
            exists = self.db.query(Ticket.id).filter(Ticket.ticket_number == number).first()
            if not exists:
                return number
        raise RuntimeError("Could not generate a unique ticket number")

    def _active_admins(self) -> List[User]:
        return (
            self.db.query(User)
            .filter(User.role == Role.ADMIN.value)
            .filter(User.status == "active")
            .order_by(User.id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # attachments
    # ------------------------------------------------------------------
    def _validate_files(self, files: Sequence[IncomingFile]) -> List[Tuple[IncomingFile, str]]:
        errors = {}
        if len(files) > self.cfg.MAX_ATTACHMENTS:
            raise ValidationFailed.for_field("attachments", f"Maximum {self.cfg.MAX_ATTACHMENTS} attachments allowed")

        allowed = set(self.cfg.allowed_attachment_types)
        max_bytes = self.cfg.MAX_ATTACHMENT_MB * 1024 * 1024
        checked = []
        for index, f in enumerate(files):
            key = f"attachments.{index}"
            content_type = f.content_type or mimetypes.guess_type(f.filename or "")[0] or ""
            if not f.data:
                errors.setdefault(key, []).append("File is empty")
            if len(f.data) > max_bytes:
                errors.setdefault(key, []).append(f"Each file must be under {self.cfg.MAX_ATTACHMENT_MB}MB")
            if content_type not in allowed:
                errors.setdefault(key, []).append(f"Invalid file type: {content_type or 'unknown'}")
            checked.append((f, content_type))

        if errors:
            raise ValidationFailed("Invalid attachments", errors)
        return checked

    def _store_files(
        self, ticket: Ticket, files: List[Tuple[IncomingFile, str]], response: Optional[TicketResponse] = None
    ) -> List[TicketAttachment]:
        stored_rows = []
        for f, content_type in files:
            path = build_attachment_path(ticket.id, f.filename, response.id if response is not None else None)

            def record(stored: StoredObject, f=f, content_type=content_type) -> TicketAttachment:
                row = TicketAttachment(
                    ticket_id=ticket.id,
                    response_id=response.id if response is not None else None,
                    original_name=f.filename or "attachment",
                    file_path=stored.path,
                    storage_tier=stored.tier,
                    file_type=content_type,
                    file_size=stored.size,
                )
                self.db.add(row)
                self.db.flush()
                return row

            stored_rows.append(self.gateway.store_with_metadata(f.data, path, content_type, record))
        return stored_rows

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def build_view(self, principal: Principal, ticket: Ticket) -> TicketView:
        responses = access.visible_responses(principal, ticket.responses)
        visible_ids = {r.id for r in responses}
        attachments = [a for a in ticket.attachments if a.response_id is None or a.response_id in visible_ids]
        return TicketView(
            ticket=ticket,
            responses=responses,
            attachments=attachments,
            capabilities=self.capabilities(principal, ticket),
            sla_deadline=sla_deadline(ticket),
            is_overdue=is_overdue(ticket, self.clock()),
        )

    def get_ticket(self, principal: Principal, ticket_id: int) -> TicketView:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "view")
        return self.build_view(principal, ticket)

    def list_tickets(self, principal: Principal, filters: TicketFilters) -> List[Ticket]:
        if not principal.is_active:
            raise Forbidden()

        q = self.db.query(Ticket)
        if principal.role == Role.STUDENT:
            q = q.filter(Ticket.owner_id == principal.id)
        elif principal.role in (Role.COUNSELOR, Role.ADVISOR):
            q = q.filter(Ticket.assigned_to == principal.id)

        if filters.status:
            q = q.filter(Ticket.status == filters.status.value)
        if filters.priority:
            q = q.filter(Ticket.priority == filters.priority.value)
        if filters.category_id:
            q = q.filter(Ticket.category_id == filters.category_id)
        if filters.assigned == "unassigned":
            q = q.filter(Ticket.assigned_to.is_(None))
        elif filters.assigned == "assigned":
            q = q.filter(Ticket.assigned_to.isnot(None))
        if filters.search:
            escaped = filters.search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            like = f"%{escaped}%"
            q = q.filter(
                or_(
                    Ticket.ticket_number.ilike(like, escape="\\"),
                    Ticket.subject.ilike(like, escape="\\"),
                    Ticket.description.ilike(like, escape="\\"),
                )
            )


        q = q.order_by(Ticket.priority_score.desc(), Ticket.created_at.desc(), Ticket.id.desc())
        return q.offset(filters.offset).limit(filters.limit).all()

    def download_attachment(self, principal: Principal, attachment_id: int) -> Tuple[TicketAttachment, bytes]:
        attachment = self.db.get(TicketAttachment, attachment_id)
        if attachment is None or attachment.ticket is None:
            raise NotFound("Attachment not found")

        self._require(principal, attachment.ticket, "view")
        if attachment.response is not None and not access.visible_responses(principal, [attachment.response]):
            raise Forbidden()

        data = self.gateway.resolve(attachment.file_path, attachment.storage_tier)
        return attachment, data

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create_ticket(self, principal: Principal, payload: TicketCreate, files: Sequence[IncomingFile] = ()) -> Ticket:
        if not principal.is_active:
            raise Forbidden()

        owner_id = payload.owner_id or principal.id
        if owner_id != principal.id and not principal.is_staff:
            raise Forbidden("You can only create tickets for yourself")

        category = self.db.get(TicketCategory, payload.category_id)
        if category is None or not category.is_active:
            raise ValidationFailed.for_field("category_id", "Selected category is not available")
        owner = self.db.get(User, owner_id)
        if owner is None:
            raise ValidationFailed.for_field("owner_id", "Ticket owner does not exist")
        if owner.role != Role.STUDENT.value:
            raise ValidationFailed.for_field("owner_id", "Tickets can only be filed for students")
        checked_files = self._validate_files(files)

        now = self.clock()
        crisis = self.detector.scan(payload.subject, payload.description)
        crisis_category = (
            self.db.query(TicketCategory)
            .filter(TicketCategory.slug == self.cfg.CRISIS_CATEGORY_SLUG)
            .filter(TicketCategory.is_active.is_(True))
            .first()
            if crisis.detected
            else None
        )

        escalation = escalate(category, payload.priority, crisis, crisis_category)

        with self._unit_of_work("Ticket creation"):
            ticket = Ticket(
                ticket_number=self._generate_ticket_number(),
                owner_id=owner_id,
                category=escalation.category,
                subject=payload.subject,
                description=payload.description,
                priority=escalation.priority.value,
                priority_score=escalation.priority_score,
                crisis_flag=escalation.crisis_flag,
                detected_crisis_keywords=list(crisis.keywords),
                status=TicketStatus.OPEN.value,
                auto_assigned=AutoAssigned.NO.value,
                tags=[],
            )
            self.db.add(ticket)
            self.db.flush()

            attachments = self._store_files(ticket, checked_files)

            routed = assignment.auto_assign(self.db, ticket, self.policy, now)
            if routed.failure is not None:
                logger.warning("Routing failure: %s", routed.failure)

            log_audit(
                self.db,
                actor=principal,
                action="created",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"Ticket created: {ticket.ticket_number}",
            )
            intents = self._creation_intents(ticket, routed)

        logger.info(
            "Ticket %s created by %s (crisis=%s, keywords=%s, assigned_to=%s, attachments=%d)",
            ticket.ticket_number,
            principal.id,
            ticket.crisis_flag,
            ticket.detected_crisis_keywords,
            ticket.assigned_to,
            len(attachments),
        )
        self._notify(intents)
        self.db.refresh(ticket)
        return ticket

    def _creation_intents(self, ticket: Ticket, routed: assignment.AssignmentOutcome) -> List[NotificationIntent]:
        payload = {"ticket_id": ticket.id, "ticket_number": ticket.ticket_number}
        intents = []
        for admin in self._active_admins():
            intents.append(
                NotificationIntent(
                    kind="ticket_created",
                    recipient_id=admin.id,
                    title=f"New ticket {ticket.ticket_number}",
                    message=f"A new {ticket.priority} priority ticket was submitted.",
                    payload=dict(payload, assigned_to=ticket.assigned_to),
                )
            )
            if ticket.crisis_flag:
                intents.append(
                    NotificationIntent(
                        kind="crisis_alert",
                        recipient_id=admin.id,
                        title=f"Crisis ticket {ticket.ticket_number}",
                        message="Crisis keywords were detected in a new ticket. Immediate attention required.",
                        priority=PRIORITY_HIGH,
                        payload=dict(payload, keywords=list(ticket.detected_crisis_keywords)),
                    )
                )
        if routed.assigned:
            intents.extend(self._assignment_intents(ticket))
        return intents

    def _assignment_intents(self, ticket: Ticket) -> List[NotificationIntent]:
        payload = {"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "assigned_to": ticket.assigned_to}
        priority = PRIORITY_HIGH if ticket.crisis_flag else "normal"
        intents = [
            NotificationIntent(
                kind="ticket_assigned",
                recipient_id=ticket.assigned_to,
                title=f"Ticket {ticket.ticket_number} assigned to you",
                message=f"You have been assigned a {ticket.priority} priority ticket.",
                priority=priority,
                payload=payload,
            )
        ]
        if ticket.owner_id != ticket.assigned_to:
            intents.append(
                NotificationIntent(
                    kind="ticket_assigned",
                    recipient_id=ticket.owner_id,
                    title=f"Your ticket {ticket.ticket_number} has been assigned",
                    message="A staff member will respond to your ticket.",
                    payload=payload,
                )
            )
        return intents

    # ------------------------------------------------------------------
    # responses
    # ------------------------------------------------------------------
    def add_response(
        self,
        principal: Principal,
        ticket_id: int,
        payload: ResponseCreate,
        files: Sequence[IncomingFile] = (),
    ) -> TicketResponse:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "respond")
        access.check_response_flags(principal, payload.is_internal, payload.visibility, payload.is_urgent)
        checked_files = self._validate_files(files)

        crisis_keywords: List[str] = []
        if not principal.is_staff and ticket.category is not None and ticket.category.crisis_detection_enabled:
            crisis = self.detector.scan(payload.message)
            crisis_keywords = list(crisis.keywords)

        with self._unit_of_work("Response creation"):
            response = TicketResponse(
                ticket=ticket,
                author_id=principal.id,
                message=payload.message,
                is_internal=payload.is_internal,
                visibility=payload.visibility.value,
                is_urgent=payload.is_urgent or bool(crisis_keywords),
            )
            self.db.add(response)
            self.db.flush()

            self._store_files(ticket, checked_files, response=response)
            status_changed = lifecycle.on_response(ticket, principal)

            log_audit(
                self.db,
                actor=principal,
                action="responded",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"{'Internal note' if response.is_internal else 'Response'} added to {ticket.ticket_number}",
            )
            intents = self._response_intents(principal, ticket, response, crisis_keywords)

        logger.info(
            "Response %s added to %s by %s (internal=%s, status_changed=%s)",
            response.id,
            ticket.ticket_number,
            principal.id,
            response.is_internal,
            status_changed,
        )
        self._notify(intents)
        self.db.refresh(response)
        return response

    def _response_intents(
        self, author: Principal, ticket: Ticket, response: TicketResponse, crisis_keywords: List[str]
    ) -> List[NotificationIntent]:
        payload = {"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "response_id": response.id}
        intents = []

        if crisis_keywords:
            recipients = [admin.id for admin in self._active_admins()]
            if ticket.assigned_to and ticket.assigned_to not in recipients:
                recipients.append(ticket.assigned_to)
            for recipient in recipients:
                intents.append(
                    NotificationIntent(
                        kind="crisis_alert",
                        recipient_id=recipient,
                        title=f"Crisis keywords in a reply on {ticket.ticket_number}",
                        message="A student reply matched crisis keywords. Immediate attention required.",
                        priority=PRIORITY_HIGH,
                        payload=dict(payload, keywords=crisis_keywords),
                    )
                )

        if response.is_internal:
            return intents

        if author.id == ticket.owner_id:
            if ticket.assigned_to and ticket.assigned_to != author.id:
                intents.append(
                    NotificationIntent(
                        kind="new_response",
                        recipient_id=ticket.assigned_to,
                        title=f"New reply on {ticket.ticket_number}",
                        message="The student replied to a ticket assigned to you.",
                        priority=PRIORITY_HIGH if response.is_urgent else "normal",
                        payload=payload,
                    )
                )
        elif author.is_staff:
            intents.append(
                NotificationIntent(
                    kind="new_response",
                    recipient_id=ticket.owner_id,
                    title=f"New reply on your ticket {ticket.ticket_number}",
                    message="A staff member responded to your ticket.",
                    payload=payload,
                )
            )
        return intents

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------
    def update_ticket(self, principal: Principal, ticket_id: int, payload: TicketUpdate) -> Ticket:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "modify")

        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationFailed("No changes supplied")
        nulls = [name for name, value in changes.items() if value is None]
        if nulls:
            raise ValidationFailed("Fields cannot be cleared", {name: ["This field cannot be null"] for name in nulls})
        if not principal.is_staff:
            restricted = sorted(set(changes) - STUDENT_EDITABLE_FIELDS)
            if restricted:
                raise Forbidden(f"Only staff can change: {', '.join(restricted)}")

        crisis_flag = changes.get("crisis_flag", ticket.crisis_flag)
        priority = changes.get("priority", Priority(ticket.priority))
        if crisis_flag and priority != Priority.URGENT:
            if "priority" in changes:
                raise ValidationFailed.for_field("priority", "Crisis tickets must stay Urgent")
            priority = Priority.URGENT

        now = self.clock()
        with self._unit_of_work("Ticket update"):
            status_changed = False
            if "status" in changes:
                status_changed = lifecycle.apply_status(ticket, changes["status"], principal, now)
            if "subject" in changes:
                ticket.subject = changes["subject"]
            if "description" in changes:
                ticket.description = changes["description"]
            if priority.value != ticket.priority or crisis_flag != ticket.crisis_flag:
                ticket.priority = priority.value
                ticket.crisis_flag = crisis_flag
                ticket.priority_score = compute_priority_score(priority, crisis_flag)

            log_audit(
                self.db,
                actor=principal,
                action="updated",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"Ticket {ticket.ticket_number} updated: {', '.join(sorted(changes))}",
            )

        intents = []
        if status_changed and principal.id != ticket.owner_id:
            intents.append(
                NotificationIntent(
                    kind="status_changed",
                    recipient_id=ticket.owner_id,
                    title=f"Ticket {ticket.ticket_number} is now {ticket.status}",
                    message=f"The status of your ticket changed to {ticket.status}.",
                    payload={"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "status": ticket.status},
                )
            )
        logger.info("Ticket %s updated by %s: %s", ticket.ticket_number, principal.id, sorted(changes))
        self._notify(intents)
        self.db.refresh(ticket)
        return ticket

    # ------------------------------------------------------------------
    # assignment
    # ------------------------------------------------------------------
    def assign_ticket(self, principal: Principal, ticket_id: int, payload: TicketAssign) -> Ticket:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "assign")

        assignee = None
        if payload.assigned_to:
            assignee = assignment.validate_manual_assignee(self.db, ticket, payload.assigned_to, self.policy)
        reason = payload.reason or ("Manually assigned by admin" if assignee else "Unassigned by admin")

        now = self.clock()
        with self._unit_of_work("Ticket assignment"):
            assignment.apply_manual_assignment(self.db, ticket, assignee, actor_id=principal.id, reason=reason, now=now)
            lifecycle.reset_for_assignment(ticket, assigned=assignee is not None)
            log_audit(
                self.db,
                actor=principal,
                action="assigned" if assignee else "unassigned",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"Ticket {ticket.ticket_number} {'assigned to ' + assignee.id if assignee else 'unassigned'}",
            )

        logger.info("Ticket %s assignment set to %s by %s", ticket.ticket_number, ticket.assigned_to, principal.id)
        if assignee is not None:
            self._notify(self._assignment_intents(ticket))
        self.db.refresh(ticket)
        return ticket

    # ------------------------------------------------------------------
    # tags
    # ------------------------------------------------------------------
    def manage_tags(self, principal: Principal, ticket_id: int, payload: TagsUpdate) -> Ticket:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "manage_tags")

        with self._unit_of_work("Tag management"):
            ticket.tags = lifecycle.apply_tag_action(ticket.tags or [], payload.action, payload.tags)
            log_audit(
                self.db,
                actor=principal,
                action="tagged",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"Tags {payload.action.value}: {', '.join(payload.tags)}",
            )

        logger.info("Ticket %s tags %s by %s", ticket.ticket_number, payload.action.value, principal.id)
        self.db.refresh(ticket)
        return ticket

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------
    def delete_ticket(self, principal: Principal, ticket_id: int, payload: TicketDelete) -> DeletionResult:
        ticket = self._get_ticket(ticket_id)
        self._require(principal, ticket, "delete")

        paths = [a.file_path for a in ticket.attachments]
        result = DeletionResult(ticket_id=ticket.id, ticket_number=ticket.ticket_number)
        owner_id = ticket.owner_id

        with self._unit_of_work("Ticket deletion"):
            log_audit(
                self.db,
                actor=principal,
                action="deleted",
                entity_type="ticket",
                entity_id=str(ticket.id),
                ticket=ticket,
                description=f"Ticket {ticket.ticket_number} deleted: {payload.reason}",
            )
            self.db.delete(ticket)

        for path in paths:
            for tier in self.gateway.purge(path):
                result.purge_failures.append(f"{tier}:{path}")

        logger.info(
            "Ticket %s deleted by %s (%d attachments purged, %d failures)",
            result.ticket_number,
            principal.id,
            len(paths),
            len(result.purge_failures),
        )
        if payload.notify_user and owner_id != principal.id:
            self._notify(
                [
                    NotificationIntent(
                        kind="ticket_deleted",
                        recipient_id=owner_id,
                        title=f"Ticket {result.ticket_number} was removed",
                        message=f"Your ticket was removed by an administrator. Reason: {payload.reason}",
                        payload={"ticket_number": result.ticket_number},
                    )
                ]
            )
        return result
