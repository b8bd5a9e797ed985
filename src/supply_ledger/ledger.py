"""Stock entry/exit bookkeeping on a single inventory item.

Every function here mutates an already loaded :class:`InventoryItem` in
memory; persisting the result is the caller's job.  ``item.quantity`` always
equals the sum of restock entries minus the sum of exits and never drops
below zero.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from .errors import InsufficientStockError, ValidationError
from .models import InventoryItem, StockEntry, StockExit
from .values import (
    AuditStamp,
    DemandMetrics,
    EntryKind,
    Location,
    RequestingArea,
    as_utc,
    utcnow,
)

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _require_positive(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError.for_field("quantity", "Quantity must be an integer")
    if quantity <= 0:
        raise ValidationError.for_field("quantity", "Quantity must be greater than zero")
    return quantity


def _months_between(start: datetime, end: datetime) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def apply_entry(
    item: InventoryItem,
    *,
    quantity: int,
    stamp: AuditStamp,
    date: Optional[datetime] = None,
    supplier: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StockEntry:
    quantity = _require_positive(quantity)
    now = now or utcnow()
    entry = StockEntry(
        kind=EntryKind.RESTOCK,
        date=date or now,
        quantity=quantity,
        supplier=supplier or None,
    )
    entry.stamp_recorded(stamp)
    item.entries.append(entry)
    item.quantity = (item.quantity or 0) + quantity
    item.updated_at = now
    item.stamp_modified(stamp)
    return entry


def record_location_change(
    item: InventoryItem,
    *,
    previous: Location,
    new: Location,
    stamp: AuditStamp,
    now: Optional[datetime] = None,
) -> StockEntry:
    """Keep the old slot on record; the quantity is a snapshot, not a delta."""

    now = now or utcnow()
    entry = StockEntry(
        kind=EntryKind.LOCATION_CHANGE,
        date=now,
        quantity=item.quantity or 0,
        previous_location_record=previous.to_record(),
        new_location_record=new.to_record(),
    )
    entry.stamp_recorded(stamp)
    item.entries.append(entry)
    return entry


def apply_exit(
    item: InventoryItem,
    *,
    quantity: int,
    reason: Optional[str],
    area: Optional[str],
    requester: Optional[str],
    releaser: Optional[str],
    time: Optional[str],
    stamp: AuditStamp,
    now: Optional[datetime] = None,
) -> StockExit:
    quantity = _require_positive(quantity)
    errors: List[dict] = []
    for field_name, value in (
        ("reason", reason),
        ("area", area),
        ("requester", requester),
        ("releaser", releaser),
        ("time", time),
    ):
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append({"field": field_name, "message": f"{field_name} is required"})
    if area and not errors:
        try:
            area = RequestingArea(area)
        except ValueError:
            errors.append({"field": "area", "message": f"Unknown area: {area}"})
    if time and not _TIME_PATTERN.match(time.strip()):
        errors.append({"field": "time", "message": "Time must be HH:MM or HH:MM:SS"})
    if errors:
        raise ValidationError(errors)

    available = item.quantity or 0
    if quantity > available:
        raise InsufficientStockError(available=available, requested=quantity)

    now = now or utcnow()
    exit_record = StockExit(
        date=now,
        time=time.strip(),
        quantity=quantity,
        reason=reason.strip(),
        area=RequestingArea(area),
        requester=requester.strip(),
        releaser=releaser.strip(),
    )
    exit_record.stamp_recorded(stamp)
    prior_exits = list(item.exits)
    item.exits.append(exit_record)
    item.quantity = available - quantity
    item.updated_at = now
    item.stamp_modified(stamp)
    item.demand_metrics = compute_demand_metrics(
        item,
        prior_exits=prior_exits,
        quantity=quantity,
        quantity_before=available,
        now=now,
    )
    return exit_record


def compute_demand_metrics(
    item: InventoryItem,
    *,
    prior_exits: List[StockExit],
    quantity: int,
    quantity_before: int,
    now: datetime,
) -> DemandMetrics:
    """Recompute rotation and frequency after an exit of ``quantity`` units.

    ``item.exits`` must already contain the new exit.
    """

    now = as_utc(now)
    total_exits = len(item.exits)
    cumulative_removed = (item.cumulative_removed or 0) + quantity

    if prior_exits:
        start = min(as_utc(record.date) for record in prior_exits)
    else:
        start = as_utc(item.created_at or item.created_by_at) or now
    months = max(1, _months_between(start, now))

    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    exits_this_month = sum(1 for record in item.exits if as_utc(record.date) >= month_start)

    quantity_after = quantity_before - quantity
    average_stock = (quantity_after + quantity_before) / 2
    rotation_ratio = cumulative_removed / average_stock if average_stock else 0.0

    return DemandMetrics(
        total_exits=total_exits,
        cumulative_removed=cumulative_removed,
        last_exit_at=now,
        monthly_frequency=total_exits / months,
        exits_this_month=exits_this_month,
        rotation_ratio=rotation_ratio,
    )


__all__ = ["apply_entry", "apply_exit", "compute_demand_metrics", "record_location_change"]
