from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_db
from app.models.user import ROLE_TECHNICIAN
from app.schemas.works import ClientPayment, IssueReport, LocationUpdate, ResumeWork, WorkComplete, WorkStart
from app.services.billing_flow import complete_work, confirm_payment
from app.services.work_lifecycle import approve_work, report_issue, resume_work, start_work, update_location
from app.services.work_queries import list_available_jobs, technician_summary

router = APIRouter()
technician_only = require_role(ROLE_TECHNICIAN)


@router.get("/jobs")
def available_jobs(db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return {"jobs": list_available_jobs(db, tech)}


@router.get("/summary")
def summary(db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return technician_summary(db, tech)


@router.post("/location")
def location(payload: LocationUpdate, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return update_location(db, tech, payload)


@router.post("/works/{work_id}/approve")
def approve(work_id: str, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return approve_work(db, tech, work_id)


@router.post("/works/{work_id}/start")
def start(work_id: str, payload: WorkStart, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return start_work(db, tech, work_id, payload)


@router.post("/works/{work_id}/issue")
def issue(work_id: str, payload: IssueReport, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return report_issue(db, tech, work_id, payload)


@router.post("/works/{work_id}/resume")
def resume(work_id: str, payload: ResumeWork, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return resume_work(db, tech, work_id, payload)


@router.post("/works/{work_id}/complete")
def complete(work_id: str, payload: WorkComplete, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return complete_work(db, tech, work_id, payload)


@router.post("/works/{work_id}/confirm-payment")
def confirm(work_id: str, payload: ClientPayment, db: Session = Depends(get_db), tech: dict = Depends(technician_only)):
    return confirm_payment(db, tech, work_id, payload)
