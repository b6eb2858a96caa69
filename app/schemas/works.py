from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class Coordinates(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None


class PhotoPayload(BaseModel):
    file_name: str = "photo.jpg"
    mime_type: str = "image/jpeg"
    content_base64: str


class WorkCreate(BaseModel):
    service_type: Optional[str] = None
    specialization: Optional[Union[List[str], str]] = None
    description: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    date: Optional[str] = None
    time: Optional[str] = None
    service_charge: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    technician_id: Optional[str] = None


class WorkMatchCreate(BaseModel):
    service_type: Optional[str] = None
    specialization: Optional[Union[List[str], str]] = None
    description: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None


class BookingCreate(BaseModel):
    work_id: Optional[str] = None
    technician_id: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    date: Optional[str] = None
    time: Optional[str] = None
    service_type: Optional[str] = None
    service_charge: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    description: Optional[str] = None
    address: Optional[str] = None


class LocationUpdate(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None


class WorkStart(BaseModel):
    before_photo: Optional[PhotoPayload] = None


class IssueReport(BaseModel):
    issue_type: Optional[str] = None
    remarks: Optional[str] = None


class ResumeWork(BaseModel):
    comment: Optional[str] = None


class BillItem(BaseModel):
    name: str
    price: Decimal = Field(ge=0, decimal_places=2)
    qty: int = Field(default=1, ge=0)


class WorkComplete(BaseModel):
    items: List[BillItem] = Field(default_factory=list)
    service_charge: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    payment_method: Optional[str] = None
    after_photo: Optional[PhotoPayload] = None


class ClientPayment(BaseModel):
    method: Optional[str] = None
    status: Optional[str] = None


class RouteSelect(BaseModel):
    route_index: Optional[int] = None


class NotificationsReadPayload(BaseModel):
    notification_id: Optional[str] = None
