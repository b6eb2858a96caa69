from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_db
from app.models.user import ROLE_ADMIN
from app.schemas.works import ResumeWork
from app.services.work_lifecycle import resume_work

router = APIRouter()


@router.post("/{work_id}/resume")
def resume(work_id: str, payload: ResumeWork, db: Session = Depends(get_db), admin: dict = Depends(require_role(ROLE_ADMIN))):
    return resume_work(db, admin, work_id, payload)
