import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, Text, event, inspect
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.models.common import MONEY, MONEY_TOTAL, TimestampMixin, UUIDMixin


class Bill(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "bills"

    work_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), unique=True, index=True, nullable=False)
    technician_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    bill_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    service_charge: Mapped[float] = mapped_column(MONEY, nullable=False, default=0)
    total_amount: Mapped[float] = mapped_column(MONEY_TOTAL, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    payment_method: Mapped[str] = mapped_column(String(10), nullable=False)  # cash|upi
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, index=True, default="sent")
    upi_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivery_error: Mapped[str | None] = mapped_column(Text, nullable=True)


class BillAmountLockedError(ValueError):
    pass


_LOCKED_FIELDS = ("work_id", "items", "service_charge", "total_amount", "currency", "payment_method")


@event.listens_for(Bill, "before_update")
def _reject_monetary_changes(mapper, connection, target: Bill) -> None:
    state = inspect(target)
    changed = [name for name in _LOCKED_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise BillAmountLockedError(f"bill {target.id} is immutable in: {', '.join(changed)}")
