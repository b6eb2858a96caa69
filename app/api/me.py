from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal
from app.db.session import get_db
from app.schemas.works import LocationUpdate
from app.services.work_lifecycle import get_location, save_location

router = APIRouter()


@router.post("/location")
def store_location(payload: LocationUpdate, db: Session = Depends(get_db), principal: dict = Depends(get_current_principal)):
    return save_location(db, principal, payload)


@router.get("/location")
def read_location(db: Session = Depends(get_db), principal: dict = Depends(get_current_principal)):
    return get_location(db, principal)
