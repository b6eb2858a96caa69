from celery import Celery
from app.core.config import settings

celery_app = Celery(
    "field_service_dispatch",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.workers.tasks.billing"],
)

celery_app.conf.task_always_eager = settings.CELERY_TASK_ALWAYS_EAGER
celery_app.conf.task_acks_late = True
celery_app.conf.timezone = "Asia/Kolkata"
