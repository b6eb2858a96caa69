from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_principal, require_role
from app.db.session import get_db
from app.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_TECHNICIAN
from app.schemas.works import ClientPayment, RouteSelect, WorkCreate, WorkMatchCreate
from app.services.billing_flow import confirm_payment, record_client_payment
from app.services.work_lifecycle import create_work, find_matching_technicians, select_route
from app.services.work_queries import get_client_work_status, list_routes_for_work, track_technician

router = APIRouter()


@router.post("", status_code=201)
def create(payload: WorkCreate, db: Session = Depends(get_db), client: dict = Depends(require_role(ROLE_CLIENT))):
    return create_work(db, client, payload)


@router.post("/match", status_code=201)
def match(payload: WorkMatchCreate, db: Session = Depends(get_db), client: dict = Depends(require_role(ROLE_CLIENT))):
    return find_matching_technicians(db, client, payload)


@router.get("/{work_id}/status")
def work_status(work_id: str, db: Session = Depends(get_db), client: dict = Depends(require_role(ROLE_CLIENT))):
    return {"workStatus": get_client_work_status(db, client, work_id)}


@router.post("/{work_id}/pay")
def pay(
    work_id: str,
    payload: ClientPayment,
    db: Session = Depends(get_db),
    client: dict = Depends(require_role(ROLE_CLIENT)),
):
    return record_client_payment(db, client, work_id, payload)


@router.post("/{work_id}/confirm-payment")
def confirm(
    work_id: str,
    payload: ClientPayment,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_role(ROLE_CLIENT, ROLE_TECHNICIAN)),
):
    return confirm_payment(db, principal, work_id, payload)


@router.get("/{work_id}/routes")
def routes(work_id: str, db: Session = Depends(get_db), principal: dict = Depends(get_current_principal)):
    return list_routes_for_work(db, principal, work_id)


@router.post("/{work_id}/route")
def choose_route(
    work_id: str,
    payload: RouteSelect,
    db: Session = Depends(get_db),
    principal: dict = Depends(require_role(ROLE_CLIENT, ROLE_TECHNICIAN, ROLE_ADMIN)),
):
    return select_route(db, principal, work_id, payload)


@router.get("/{work_id}/track")
def track(work_id: str, db: Session = Depends(get_db), principal: dict = Depends(get_current_principal)):
    return track_technician(db, principal, work_id)
