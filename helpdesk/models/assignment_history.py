from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from helpdesk.core.database import Base


class TicketAssignmentHistory(Base):
    __tablename__ = "ticket_assignment_history"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket = relationship("Ticket", back_populates="assignment_history")

    assigned_from = Column(String, nullable=True)  # previous assignee
    assigned_to = Column(String, nullable=True, index=True)  # new assignee, null on unassign
    assigned_by = Column(String, nullable=True)  # null for system (auto) assignments
    assignment_type = Column(String, nullable=False, default="manual")  # auto/manual/unassign
    reason = Column(String, nullable=True)
    assignment_criteria = Column(JSON, nullable=True)  # workloads considered by auto-assignment

    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
