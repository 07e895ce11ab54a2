from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from helpdesk.models.enums import Priority, ResponseVisibility, TicketStatus
from helpdesk.services.lifecycle import TagAction

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


def _strip(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _check_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    if len(tags) > MAX_TAGS:
        raise ValueError(f"At most {MAX_TAGS} tags are allowed")
    for tag in tags:
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must not exceed {MAX_TAG_LENGTH} characters")
    return tags


class TicketCreate(BaseModel):
    subject: str = Field(min_length=5, max_length=255)
    description: str = Field(min_length=20, max_length=5000)
    category_id: int
    priority: Priority = Priority.MEDIUM
    owner_id: Optional[str] = None  # file on behalf of a student (staff/admin only)

    @field_validator('subject', 'description', 'owner_id', mode='before')
    @classmethod
    def strip_strings(cls, v):
        return _strip(v)


class TicketUpdate(BaseModel):
    subject: Optional[str] = Field(default=None, min_length=5, max_length=255)
    description: Optional[str] = Field(default=None, min_length=20, max_length=5000)
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None
    crisis_flag: Optional[bool] = None

    @field_validator('subject', 'description', mode='before')
    @classmethod
    def strip_strings(cls, v):
        return _strip(v)


class ResponseCreate(BaseModel):
    message: str = Field(min_length=5, max_length=5000)
    is_internal: bool = False
    visibility: ResponseVisibility = ResponseVisibility.ALL
    is_urgent: bool = False

    @field_validator('message', mode='before')
    @classmethod
    def strip_message(cls, v):
        return _strip(v)


class TicketAssign(BaseModel):
    assigned_to: Optional[str] = None  # null clears the assignment
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator('assigned_to', 'reason', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        v = _strip(v)
        return v or None


class TagsUpdate(BaseModel):
    action: TagAction
    tags: List[str]

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v):
        return _check_tags(v)


class TicketDelete(BaseModel):
    reason: str = Field(min_length=10, max_length=500)
    notify_user: bool = True

    @field_validator('reason', mode='before')
    @classmethod
    def strip_reason(cls, v):
        return _strip(v)


class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str

    class Config:
        from_attributes = True


class CategorySummary(BaseModel):
    id: int
    name: str
    slug: str
    sla_response_hours: Optional[int] = None

    class Config:
        from_attributes = True


class AttachmentOut(BaseModel):
    id: int
    ticket_id: int
    response_id: Optional[int]
    original_name: str
    file_type: str
    file_size: int
    created_at: datetime

    class Config:
        from_attributes = True


class ResponseOut(BaseModel):
    id: int
    ticket_id: int
    author_id: str
    author: Optional[UserSummary] = None
    message: str
    is_internal: bool
    visibility: str
    is_urgent: bool
    attachments: List[AttachmentOut] = []
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentHistoryOut(BaseModel):
    id: int
    assigned_from: Optional[str]
    assigned_to: Optional[str]
    assigned_by: Optional[str]
    assignment_type: str
    reason: Optional[str]
    assigned_at: datetime

    class Config:
        from_attributes = True


class TicketOut(BaseModel):
    id: int
    ticket_number: str
    owner_id: str
    assigned_to: Optional[str]
    category_id: int
    category: Optional[CategorySummary] = None
    subject: str
    description: str
    priority: str
    priority_score: Decimal
    crisis_flag: bool
    detected_crisis_keywords: List[str]
    status: str
    auto_assigned: str
    assignment_reason: Optional[str]
    tags: List[str]
    assigned_at: Optional[datetime]
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TicketDetailOut(TicketOut):
    owner: Optional[UserSummary] = None
    assignee: Optional[UserSummary] = None
    responses: List[ResponseOut] = []
    attachments: List[AttachmentOut] = []
    assignment_history: List[AssignmentHistoryOut] = []
    sla_deadline: Optional[datetime] = None
    is_overdue: bool = False
    permissions: Dict[str, bool] = {}


class TicketDeleted(BaseModel):
    ok: bool = True
    ticket_number: str
    purge_failures: List[str] = []


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str]
    eligible_roles: List[str]
    crisis_detection_enabled: bool
    sla_response_hours: Optional[int]
    auto_assign: bool

    class Config:
        from_attributes = True
