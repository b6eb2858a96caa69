from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_db
from app.models.user import ROLE_CLIENT
from app.schemas.works import BookingCreate
from app.services.booking_ledger import book_technician

router = APIRouter()


@router.post("", status_code=201)
def book(payload: BookingCreate, db: Session = Depends(get_db), client: dict = Depends(require_role(ROLE_CLIENT))):
    return book_technician(db, client, payload)
