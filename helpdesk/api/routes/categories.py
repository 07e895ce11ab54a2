from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from helpdesk.api.deps import get_current_principal, get_db
from helpdesk.core.auth import Principal
from helpdesk.models.category import TicketCategory
from helpdesk.schemas.ticket import CategoryOut

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=List[CategoryOut])
def list_categories(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return (
        db.query(TicketCategory)
        .filter(TicketCategory.is_active.is_(True))
        .order_by(TicketCategory.sort_order.asc(), TicketCategory.name.asc())
        .all()
    )
