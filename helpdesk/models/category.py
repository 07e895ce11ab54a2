from sqlalchemy import Column, String, DateTime, Integer, Boolean, JSON
from sqlalchemy.sql import func
from helpdesk.core.database import Base


class TicketCategory(Base):
    __tablename__ = "ticket_categories"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)  # e.g. "crisis", "mental-health"
    description = Column(String, nullable=True)

    # Staff roles that may pick up tickets in this category, e.g. ["counselor"]
    eligible_roles = Column(JSON, nullable=False, default=list)

    crisis_detection_enabled = Column(Boolean, nullable=False, default=False)
    sla_response_hours = Column(Integer, nullable=True)
    auto_assign = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
