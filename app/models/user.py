from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import UUIDMixin, TimestampMixin

ROLE_CLIENT = "CLIENT"
ROLE_TECHNICIAN = "TECHNICIAN"
ROLE_ADMIN = "ADMIN"
ALLOWED_ROLES = {ROLE_CLIENT, ROLE_TECHNICIAN, ROLE_ADMIN}

class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # CLIENT|TECHNICIAN|ADMIN
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True, index=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    specialization: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_location_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Informational only; busy/available is always computed from work_requests.
    on_duty: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duty_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
