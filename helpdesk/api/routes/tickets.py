import io
import re
from typing import List, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from helpdesk.api.deps import get_current_principal, get_ticket_service
from helpdesk.core.auth import Principal
from helpdesk.core.errors import ValidationFailed
from helpdesk.models.enums import Priority, TicketStatus
from helpdesk.schemas.ticket import (
    AssignmentHistoryOut,
    AttachmentOut,
    ResponseCreate,
    ResponseOut,
    TagsUpdate,
    TicketAssign,
    TicketCreate,
    TicketDelete,
    TicketDeleted,
    TicketDetailOut,
    TicketOut,
    TicketUpdate,
    UserSummary,
)
from helpdesk.services.tickets import IncomingFile, TicketFilters, TicketService, TicketView

router = APIRouter(prefix="/tickets", tags=["tickets"])

M = TypeVar("M", bound=BaseModel)


def _parse_payload(model: Type[M], raw: str) -> M:
    """Multipart requests carry the JSON body in a ``payload`` form field."""
    try:
        return model.model_validate_json(raw or "{}")
    except ValidationError as e:
        errors = {}
        for err in e.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "payload"
            errors.setdefault(field, []).append(err.get("msg", "Invalid value"))
        raise ValidationFailed("Please check your input and try again", errors)


def _read_files(files: Optional[List[UploadFile]]) -> List[IncomingFile]:
    incoming = []
    for f in files or []:
        data = f.file.read()
        incoming.append(IncomingFile(filename=f.filename or "attachment", content_type=f.content_type, data=data))
    return incoming


def _detail(view: TicketView) -> TicketDetailOut:
    ticket = view.ticket
    base = TicketOut.model_validate(ticket).model_dump()
    return TicketDetailOut(
        **base,
        owner=UserSummary.model_validate(ticket.owner) if ticket.owner else None,
        assignee=UserSummary.model_validate(ticket.assignee) if ticket.assignee else None,
        responses=[ResponseOut.model_validate(r) for r in view.responses],
        attachments=[AttachmentOut.model_validate(a) for a in view.attachments],
        assignment_history=[AssignmentHistoryOut.model_validate(h) for h in ticket.assignment_history],
        sla_deadline=view.sla_deadline,
        is_overdue=view.is_overdue,
        permissions=view.capabilities.as_dict(),
    )


def _safe_filename(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name or "").strip("._")
    return cleaned or "attachment"


@router.get("", response_model=List[TicketOut])
def list_tickets(
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
    status: Optional[TicketStatus] = Query(None),
    priority: Optional[Priority] = Query(None),
    category_id: Optional[int] = Query(None),
    assigned: Optional[str] = Query(None, pattern="^(assigned|unassigned)$"),
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    filters = TicketFilters(
        status=status,
        priority=priority,
        category_id=category_id,
        assigned=assigned,
        search=search,
        limit=limit,
        offset=offset,
    )
    return service.list_tickets(principal, filters)


@router.post("", response_model=TicketDetailOut, status_code=201)
def create_ticket(
    payload: str = Form(..., description="TicketCreate as JSON"),
    attachments: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    data = _parse_payload(TicketCreate, payload)
    files = _read_files(attachments)
    ticket = service.create_ticket(principal, data, files)
    return _detail(service.build_view(principal, ticket))


@router.get("/attachments/{attachment_id}/download")
def download_attachment(
    attachment_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    attachment, data = service.download_attachment(principal, attachment_id)
    return StreamingResponse(
        io.BytesIO(data),
        media_type=attachment.file_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{_safe_filename(attachment.original_name)}"'},
    )


@router.get("/{ticket_id}", response_model=TicketDetailOut)
def get_ticket(
    ticket_id: int,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    return _detail(service.get_ticket(principal, ticket_id))


@router.patch("/{ticket_id}", response_model=TicketDetailOut)
def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.update_ticket(principal, ticket_id, payload)
    return _detail(service.build_view(principal, ticket))


@router.post("/{ticket_id}/responses", response_model=ResponseOut, status_code=201)
def add_response(
    ticket_id: int,
    payload: str = Form(..., description="ResponseCreate as JSON"),
    attachments: Optional[List[UploadFile]] = File(None),
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    data = _parse_payload(ResponseCreate, payload)
    files = _read_files(attachments)
    return service.add_response(principal, ticket_id, data, files)


@router.post("/{ticket_id}/assign", response_model=TicketDetailOut)
def assign_ticket(
    ticket_id: int,
    payload: TicketAssign,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.assign_ticket(principal, ticket_id, payload)
    return _detail(service.build_view(principal, ticket))


@router.post("/{ticket_id}/tags", response_model=TicketOut)
def manage_tags(
    ticket_id: int,
    payload: TagsUpdate,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    return service.manage_tags(principal, ticket_id, payload)


@router.delete("/{ticket_id}", response_model=TicketDeleted)
def delete_ticket(
    ticket_id: int,
    payload: TicketDelete,
    principal: Principal = Depends(get_current_principal),
    service: TicketService = Depends(get_ticket_service),
):
    result = service.delete_ticket(principal, ticket_id, payload)
    return TicketDeleted(ticket_number=result.ticket_number, purge_failures=result.purge_failures)
