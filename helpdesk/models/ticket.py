from sqlalchemy import Column, String, DateTime, Integer, BigInteger, ForeignKey, Boolean, Numeric, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from helpdesk.core.database import Base
from helpdesk.models.user import User  # noqa: F401
from helpdesk.models.category import TicketCategory  # noqa: F401
from helpdesk.models.assignment_history import TicketAssignmentHistory  # noqa: F401


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String, nullable=False, unique=True, index=True)  # "T04217"

    # The student the ticket is about (may differ from whoever filed it)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    owner = relationship("User", foreign_keys=[owner_id])

    assigned_to = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    assignee = relationship("User", foreign_keys=[assigned_to])

    category_id = Column(Integer, ForeignKey("ticket_categories.id"), nullable=False, index=True)
    category = relationship("TicketCategory")

    subject = Column(String, nullable=False)
    description = Column(Text, nullable=False)

    priority = Column(String, nullable=False, default="Medium")  # Low/Medium/High/Urgent
    priority_score = Column(Numeric(6, 2), nullable=False, default=50)
    crisis_flag = Column(Boolean, nullable=False, default=False, index=True)
    detected_crisis_keywords = Column(JSON, nullable=False, default=list)

    status = Column(String, nullable=False, default="Open", index=True)  # Open/In Progress/Resolved/Closed
    auto_assigned = Column(String, nullable=False, default="no")  # yes/no/manual
    assignment_reason = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    assigned_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    responses = relationship(
        "TicketResponse",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketResponse.id",
    )
    attachments = relationship(
        "TicketAttachment",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketAttachment.id",
    )
    assignment_history = relationship(
        "TicketAssignmentHistory",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketAssignmentHistory.id",
    )

    # timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now(), nullable=False)


class TicketResponse(Base):
    __tablename__ = "ticket_responses"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket = relationship("Ticket", back_populates="responses")

    author_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    author = relationship("User")

    message = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False)  # staff-only note
    visibility = Column(String, nullable=False, default="all")  # all/counselors/admins
    is_urgent = Column(Boolean, nullable=False, default=False)

    attachments = relationship(
        "TicketAttachment",
        back_populates="response",
        order_by="TicketAttachment.id",
        passive_deletes=True,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TicketAttachment(Base):
    __tablename__ = "ticket_attachments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket = relationship("Ticket", back_populates="attachments")

    # Set when the file was uploaded with a specific response
    response_id = Column(Integer, ForeignKey("ticket_responses.id", ondelete="CASCADE"), nullable=True, index=True)
    response = relationship("TicketResponse", back_populates="attachments")

    original_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)  # opaque, only the attachment gateway resolves it
    storage_tier = Column(String, nullable=False)  # tier that accepted the write
    file_type = Column(String, nullable=False, default="application/octet-stream")
    file_size = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
