from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from helpdesk.core.database import Base


class User(Base):
    """Local mirror of the identity provider's directory (read-only to the triage core)."""

    __tablename__ = "users"

    # Supabase auth user id ("sub" claim)
    id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)

    role = Column(String, nullable=False, default="student", index=True)  # student/counselor/advisor/admin
    status = Column(String, nullable=False, default="active", index=True)  # active/inactive/suspended

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
