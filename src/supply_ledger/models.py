"""Database models for the supply ledger."""
from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .values import (
    AuditStamp,
    Building,
    DemandMetrics,
    EntryKind,
    Location,
    MaterialType,
    RequestingArea,
    Role,
    UnitOfMeasure,
    as_utc,
    utcnow,
)


def _enum_column(enum_cls: type[PyEnum], length: int = 32) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=length,
    )


class TimestampMixin:
    """Mixin providing created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(_enum_column(Role, 16), default=Role.USER, nullable=False)


class InventoryItem(Base, TimestampMixin):
    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_positive"),
        CheckConstraint("level >= 1", name="ck_inventory_items_level_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    material_type: Mapped[MaterialType] = mapped_column(_enum_column(MaterialType), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_of_measure: Mapped[UnitOfMeasure] = mapped_column(
        _enum_column(UnitOfMeasure), nullable=False
    )
    unit_price: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), default=0)
    minimum_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    building: Mapped[Building] = mapped_column(
        _enum_column(Building, 8), default=Building.ADM, nullable=False
    )
    shelf: Mapped[str] = mapped_column(String(32), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    location_notes: Mapped[Optional[str]] = mapped_column(Text)
    location_code: Mapped[str] = mapped_column(String(96), unique=True, nullable=False)

    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_by_name: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    modified_by_id: Mapped[Optional[int]] = mapped_column(Integer)
    modified_by_name: Mapped[Optional[str]] = mapped_column(String(64))
    modified_by_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    total_exits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cumulative_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_exit_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    monthly_frequency: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    exits_this_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rotation_ratio: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    entries: Mapped[list["StockEntry"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockEntry.id",
    )
    exits: Mapped[list["StockExit"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockExit.id",
    )

    @property
    def location(self) -> Location:
        return Location(
            building=Building(self.building),
            shelf=self.shelf,
            level=self.level,
            notes=self.location_notes,
        )

    @location.setter
    def location(self, value: Location) -> None:
        self.building = Building(value.building)
        self.shelf = value.shelf
        self.level = value.level
        self.location_notes = value.notes

    @property
    def created_by(self) -> AuditStamp:
        return AuditStamp(self.created_by_id, self.created_by_name, as_utc(self.created_by_at))

    @property
    def modified_by(self) -> Optional[AuditStamp]:
        if self.modified_by_id is None:
            return None
        return AuditStamp(self.modified_by_id, self.modified_by_name, as_utc(self.modified_by_at))

    def stamp_created(self, stamp: AuditStamp) -> None:
        self.created_by_id = stamp.actor_id
        self.created_by_name = stamp.actor_name
        self.created_by_at = stamp.timestamp
        self.stamp_modified(stamp)

    def stamp_modified(self, stamp: AuditStamp) -> None:
        self.modified_by_id = stamp.actor_id
        self.modified_by_name = stamp.actor_name
        self.modified_by_at = stamp.timestamp

    @property
    def demand_metrics(self) -> DemandMetrics:
        return DemandMetrics(
            total_exits=self.total_exits or 0,
            cumulative_removed=self.cumulative_removed or 0,
            last_exit_at=as_utc(self.last_exit_at),
            monthly_frequency=self.monthly_frequency or 0.0,
            exits_this_month=self.exits_this_month or 0,
            rotation_ratio=self.rotation_ratio or 0.0,
        )

    @demand_metrics.setter
    def demand_metrics(self, value: DemandMetrics) -> None:
        self.total_exits = value.total_exits
        self.cumulative_removed = value.cumulative_removed
        self.last_exit_at = value.last_exit_at
        self.monthly_frequency = value.monthly_frequency
        self.exits_this_month = value.exits_this_month
        self.rotation_ratio = value.rotation_ratio


class _RecordedByMixin:
    recorded_by_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    recorded_by_name: Mapped[str] = mapped_column(String(64), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def recorded_by(self) -> AuditStamp:
        return AuditStamp(self.recorded_by_id, self.recorded_by_name, as_utc(self.recorded_at))

    def stamp_recorded(self, stamp: AuditStamp) -> None:
        self.recorded_by_id = stamp.actor_id
        self.recorded_by_name = stamp.actor_name
        self.recorded_at = stamp.timestamp


class StockEntry(Base, _RecordedByMixin):
    __tablename__ = "stock_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[EntryKind] = mapped_column(
        _enum_column(EntryKind, 24), default=EntryKind.RESTOCK, nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    supplier: Mapped[Optional[str]] = mapped_column(String(255))
    previous_location_record: Mapped[Optional[dict]] = mapped_column(JSON)
    new_location_record: Mapped[Optional[dict]] = mapped_column(JSON)

    item: Mapped[InventoryItem] = relationship(back_populates="entries")

    @property
    def previous_location(self) -> Optional[Location]:
        return Location.from_record(self.previous_location_record)

    @property
    def new_location(self) -> Optional[Location]:
        return Location.from_record(self.new_location_record)


class StockExit(Base, _RecordedByMixin):
    __tablename__ = "stock_exits"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_exits_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    time: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    area: Mapped[RequestingArea] = mapped_column(_enum_column(RequestingArea, 96), nullable=False)
    requester: Mapped[str] = mapped_column(String(255), nullable=False)
    releaser: Mapped[str] = mapped_column(String(255), nullable=False)

    item: Mapped[InventoryItem] = relationship(back_populates="exits")


__all__ = [
    "User",
    "InventoryItem",
    "StockEntry",
    "StockExit",
]
