from datetime import date, datetime
import uuid

from sqlalchemy import Date, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import MONEY, UUIDMixin, TimestampMixin

class WorkRequest(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "work_requests"
    token: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    assigned_technician_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    booking_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    service_type: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    specialization: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True, default="open")
    service_charge: Mapped[float] = mapped_column(MONEY, nullable=False, default=0)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_photo: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    after_photo: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    selected_route_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    bill_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
