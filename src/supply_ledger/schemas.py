"""Pydantic schemas used by the API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .values import (
    Building,
    EntryKind,
    Location,
    MaterialType,
    RequestingArea,
    Role,
    UnitOfMeasure,
)

T = TypeVar("T")


class APIModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _upper(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


class LocationIn(APIModel):
    building: Building = Building.ADM
    shelf: str = Field(..., min_length=1, max_length=32)
    level: int = Field(..., ge=1)
    notes: Optional[str] = None

    @field_validator("building", mode="before")
    @classmethod
    def _upper_building(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("shelf")
    @classmethod
    def _upper_shelf(cls, value: str) -> str:
        shelf = _upper(value)
        if not shelf:
            raise ValueError("Shelf is required")
        return shelf

    @field_validator("notes")
    @classmethod
    def _upper_notes(cls, value: Optional[str]) -> Optional[str]:
        return _upper(value)

    def to_location(self) -> Location:
        return Location(
            building=self.building, shelf=self.shelf, level=self.level, notes=self.notes
        )


class LocationOut(APIModel):
    building: Building
    shelf: str
    level: int
    notes: Optional[str] = None


class AuditStampOut(APIModel):
    user_id: int = Field(validation_alias=AliasChoices("actor_id", "userId", "user_id"))
    username: str = Field(validation_alias=AliasChoices("actor_name", "username"))
    date: datetime = Field(validation_alias=AliasChoices("timestamp", "date"))


class DemandMetricsOut(APIModel):
    total_exits: int
    cumulative_removed: int
    last_exit_at: Optional[datetime] = None
    monthly_frequency: float
    exits_this_month: int
    rotation_ratio: float


class ItemBase(APIModel):
    material_type: MaterialType
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    unit_of_measure: UnitOfMeasure
    unit_price: float = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0)


class ItemCreate(ItemBase):
    quantity: int = Field(0, ge=0)
    location: LocationIn
    location_code: Optional[str] = Field(default=None, max_length=96)


class ItemUpdate(APIModel):
    """Quantity is deliberately absent: it only moves through entries and exits."""

    material_type: Optional[MaterialType] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit_of_measure: Optional[UnitOfMeasure] = None
    unit_price: Optional[float] = Field(default=None, ge=0)
    minimum_stock: Optional[int] = Field(default=None, ge=0)
    location: Optional[LocationIn] = None


class EntryCreate(APIModel):
    quantity: int = Field(..., gt=0)
    supplier: Optional[str] = None
    date: Optional[datetime] = None


class ExitCreate(APIModel):
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)
    area: RequestingArea
    requester: str = Field(..., min_length=1)
    releaser: str = Field(..., min_length=1)
    time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


class EntryOut(APIModel):
    id: int
    kind: EntryKind
    date: datetime
    quantity: int
    supplier: Optional[str] = None
    previous_location: Optional[LocationOut] = None
    new_location: Optional[LocationOut] = None
    recorded_by: AuditStampOut


class ExitOut(APIModel):
    id: int
    date: datetime
    time: str
    quantity: int
    reason: str
    area: RequestingArea
    requester: str
    releaser: str
    recorded_by: AuditStampOut


class ItemOut(ItemBase):
    id: int
    quantity: int
    location: LocationOut
    location_code: str
    created_by: AuditStampOut
    modified_by: Optional[AuditStampOut] = None
    entries: List[EntryOut]
    exits: List[ExitOut]
    demand_metrics: DemandMetricsOut
    created_at: datetime
    updated_at: datetime


class AuditEventOut(APIModel):
    action: str
    date: datetime
    user_id: int
    username: str
    details: Dict[str, Any] = Field(default_factory=dict)


class LowStockItem(APIModel):
    id: int
    name: str
    location_code: str
    quantity: int
    minimum_stock: int


class Pagination(APIModel):
    page: int
    page_size: int
    total: int
    pages: int


class SuccessEnvelope(APIModel, Generic[T]):
    status: Literal["success"] = "success"
    data: T


class PageEnvelope(APIModel, Generic[T]):
    status: Literal["success"] = "success"
    data: List[T]
    pagination: Pagination


class MessageEnvelope(APIModel):
    status: Literal["success"] = "success"
    message: str


class LoginRequest(APIModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(APIModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=6)
    role: Role = Role.USER


class RefreshRequest(APIModel):
    refresh_token: Optional[str] = None


class UserOut(APIModel):
    id: int
    username: str
    role: Role


class LoginResponse(APIModel):
    status: Literal["success"] = "success"
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    user: UserOut


class RefreshResponse(APIModel):
    status: Literal["success"] = "success"
    access_token: str
    refresh_token: str
    expires_at: datetime


class HealthStatus(APIModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "AuditEventOut",
    "EntryCreate",
    "ExitCreate",
    "HealthStatus",
    "ItemCreate",
    "ItemOut",
    "ItemUpdate",
    "LocationIn",
    "LoginRequest",
    "LoginResponse",
    "LowStockItem",
    "MessageEnvelope",
    "PageEnvelope",
    "Pagination",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "SuccessEnvelope",
    "UserOut",
]
