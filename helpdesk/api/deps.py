from typing import Generator

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from helpdesk.core.auth import Principal, get_token_subject
from helpdesk.core.config import settings
from helpdesk.core.database import SessionLocal
from helpdesk.models.enums import Role
from helpdesk.models.user import User
from helpdesk.services.crisis import CrisisDetector
from helpdesk.services.notifications import create_dispatcher
from helpdesk.services.storage import create_gateway
from helpdesk.services.tickets import TicketService


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_principal(
    user_id: str = Depends(get_token_subject),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the verified token subject against the user directory."""
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
            headers={"WWW-Authenticate": "Bearer"},
        )
    principal = Principal.from_user(user)
    if not principal.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")
    return principal


def require_roles(*roles: Role):
    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return checker


_gateway = None
_dispatcher = None


def get_ticket_service(db: Session = Depends(get_db)) -> TicketService:
    global _gateway, _dispatcher

    if _gateway is None:
        _gateway = create_gateway(settings)
    if _dispatcher is None:
        _dispatcher = create_dispatcher(settings)
    return TicketService(
        db=db,
        gateway=_gateway,
        dispatcher=_dispatcher,
        detector=CrisisDetector(settings.crisis_keywords or None),
        cfg=settings,
    )
