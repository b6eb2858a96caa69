import uuid

from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.models.common import TimestampMixin, UUIDMixin


class AdminNotification(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "admin_notifications"

    type: Mapped[str] = mapped_column(String(40), index=True, nullable=False)  # work_issue
    message: Mapped[str] = mapped_column(Text, nullable=False)
    work_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    technician_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    issue_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
