from fastapi import APIRouter
from app.api import bookings, me, notifications, technician, works
from app.api.admin.router import router as admin_router

router = APIRouter()
router.include_router(works.router, prefix="/works", tags=["Works"])
router.include_router(technician.router, prefix="/technician", tags=["Technician"])
router.include_router(bookings.router, prefix="/bookings", tags=["Bookings"])
router.include_router(me.router, prefix="/me", tags=["Me"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(admin_router, prefix="/admin")
