from datetime import date
import uuid

from sqlalchemy import Date, Float, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.models.common import MONEY, TimestampMixin, UUIDMixin


class Booking(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "bookings"

    work_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    technician_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    service_type: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    service_charge: Mapped[float] = mapped_column(MONEY, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # Mirrors work_requests.status; never consulted for lifecycle decisions.
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True, default="taken")
