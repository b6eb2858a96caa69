from fastapi import APIRouter
from app.api.admin import notifications, works

router = APIRouter()
router.include_router(notifications.router, prefix="/notifications", tags=["AdminNotifications"])
router.include_router(works.router, prefix="/works", tags=["AdminWorks"])
