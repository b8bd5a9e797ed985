"""Business logic for interacting with the database."""
from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Optional, Tuple

from pydantic.alias_generators import to_camel
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import ledger, schemas
from .audit import build_audit_stamp
from .errors import ConflictError, ItemNotFound, SupplyLedgerError, ValidationError
from .locations import LocationCodeGenerator
from .models import InventoryItem, StockEntry, StockExit
from .values import AuditStamp, Identity, Location

logger = logging.getLogger(__name__)

_SORT_FIELDS = {
    "name": InventoryItem.name,
    "quantity": InventoryItem.quantity,
    "materialType": InventoryItem.material_type,
    "locationCode": InventoryItem.location_code,
    "createdAt": InventoryItem.created_at,
    "updatedAt": InventoryItem.updated_at,
}

_CONSTRAINT_FIELDS = {
    "ck_inventory_items_quantity_positive": "quantity",
    "ck_inventory_items_level_positive": "location.level",
    "ck_stock_exits_quantity_positive": "quantity",
}
_COLUMN_PATTERN = re.compile(r'(?:\.|column ")(\w+)"?')

# columns that cannot be cleared through an update
_REQUIRED_FIELDS = {"material_type", "name", "unit_of_measure", "unit_price", "minimum_stock"}


def _translate_integrity_error(exc: IntegrityError) -> SupplyLedgerError:
    """Map a storage constraint failure onto the service error taxonomy."""

    detail = str(exc.orig)
    lowered = detail.lower()
    if "unique" in lowered or "duplicate" in lowered:
        if "location_code" in lowered:
            return ConflictError("Duplicate value for locationCode")
        return ConflictError()

    field = next(
        (name for constraint, name in _CONSTRAINT_FIELDS.items() if constraint in detail),
        None,
    )
    if field is None and ("not null" in lowered or "null value" in lowered):
        match = _COLUMN_PATTERN.search(detail)
        if match:
            field = to_camel(match.group(1))
    return ValidationError.for_field(field or "request", "Value violates a storage constraint")


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise _translate_integrity_error(exc) from exc


async def location_code_exists(
    session: AsyncSession, code: str, *, exclude_id: Optional[int] = None
) -> bool:
    stmt = select(InventoryItem.id).where(InventoryItem.location_code == code)
    if exclude_id is not None:
        stmt = stmt.where(InventoryItem.id != exclude_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def _assign_location_code(
    session: AsyncSession,
    codes: LocationCodeGenerator,
    location: Location,
    *,
    exclude_id: Optional[int] = None,
) -> str:
    async def exists(code: str) -> bool:
        return await location_code_exists(session, code, exclude_id=exclude_id)

    return await codes.generate(location, exists)


async def create_item(
    session: AsyncSession,
    data: schemas.ItemCreate,
    identity: Optional[Identity],
    codes: LocationCodeGenerator,
) -> InventoryItem:
    stamp = await build_audit_stamp(session, identity)
    location = data.location.to_location()

    code = data.location_code.strip() if data.location_code else None
    if not code or await location_code_exists(session, code):
        code = await _assign_location_code(session, codes, location)

    item = InventoryItem(
        material_type=data.material_type,
        name=data.name.strip(),
        description=data.description,
        quantity=0,
        unit_of_measure=data.unit_of_measure,
        unit_price=data.unit_price,
        minimum_stock=data.minimum_stock,
        location_code=code,
        created_at=stamp.timestamp,
        updated_at=stamp.timestamp,
        entries=[],
        exits=[],
    )
    item.location = location
    item.stamp_created(stamp)
    if data.quantity:
        ledger.apply_entry(item, quantity=data.quantity, stamp=stamp, now=stamp.timestamp)
    session.add(item)
    await _flush(session)
    logger.info("Inventory item %s created as %s by %s", item.id, code, stamp.actor_name)
    return item


async def get_item(session: AsyncSession, item_id: int) -> InventoryItem:
    stmt = select(InventoryItem).where(InventoryItem.id == item_id)
    result = await session.execute(stmt)
    item = result.scalar_one_or_none()
    if item is None:
        raise ItemNotFound(f"Inventory item {item_id} not found")
    return item


def _order_by(sort: Optional[str]):
    if not sort:
        return [InventoryItem.name.asc(), InventoryItem.id.asc()]
    descending = sort.startswith("-")
    key = sort.lstrip("-+")
    column = _SORT_FIELDS.get(key)
    if column is None:
        allowed = ", ".join(sorted(_SORT_FIELDS))
        raise ValidationError.for_field("sort", f"Unknown sort field '{key}'; use one of {allowed}")
    return [column.desc() if descending else column.asc(), InventoryItem.id.asc()]


async def list_items(
    session: AsyncSession,
    *,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
    sort: Optional[str] = None,
) -> Tuple[Sequence[InventoryItem], int]:
    order_by = _order_by(sort)
    filters = []
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(
            or_(
                InventoryItem.name.ilike(pattern),
                cast(InventoryItem.material_type, String).ilike(pattern),
                InventoryItem.location_code.ilike(pattern),
            )
        )

    count_stmt = select(func.count()).select_from(InventoryItem).where(*filters)
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        select(InventoryItem)
        .where(*filters)
        .order_by(*order_by)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await session.execute(stmt)
    return result.scalars().all(), total


async def update_item(
    session: AsyncSession,
    item: InventoryItem,
    data: schemas.ItemUpdate,
    identity: Optional[Identity],
    codes: LocationCodeGenerator,
) -> InventoryItem:
    stamp = await build_audit_stamp(session, identity)
    changes = data.model_dump(exclude_unset=True, exclude={"location"})
    cleared = [
        {"field": to_camel(field), "message": f"{to_camel(field)} cannot be null"}
        for field, value in changes.items()
        if value is None and field in _REQUIRED_FIELDS
    ]
    if cleared:
        raise ValidationError(cleared)
    for field, value in changes.items():
        setattr(item, field, value)

    if data.location is not None:
        previous = item.location
        new = data.location.to_location()
        if not previous.same_slot(new):
            ledger.record_location_change(
                item, previous=previous, new=new, stamp=stamp, now=stamp.timestamp
            )
            item.location_code = await _assign_location_code(
                session, codes, new, exclude_id=item.id
            )
            logger.info(
                "Inventory item %s moved to %s (%s)", item.id, item.location_code, stamp.actor_name
            )
        item.location = new

    item.updated_at = stamp.timestamp
    item.stamp_modified(stamp)
    await _flush(session)
    logger.info("Inventory item %s updated by %s", item.id, stamp.actor_name)
    return item


async def delete_item(session: AsyncSession, item: InventoryItem) -> None:
    await session.delete(item)
    await session.flush()
    logger.info("Inventory item %s deleted", item.id)


async def record_entry(
    session: AsyncSession,
    item: InventoryItem,
    data: schemas.EntryCreate,
    identity: Optional[Identity],
) -> StockEntry:
    stamp: AuditStamp = await build_audit_stamp(session, identity)
    entry = ledger.apply_entry(
        item,
        quantity=data.quantity,
        stamp=stamp,
        date=data.date,
        supplier=data.supplier,
        now=stamp.timestamp,
    )
    await _flush(session)
    logger.info(
        "Entry of %d recorded on item %s by %s", data.quantity, item.id, stamp.actor_name
    )
    return entry


async def record_exit(
    session: AsyncSession,
    item: InventoryItem,
    data: schemas.ExitCreate,
    identity: Optional[Identity],
) -> StockExit:
    stamp = await build_audit_stamp(session, identity)
    exit_record = ledger.apply_exit(
        item,
        quantity=data.quantity,
        reason=data.reason,
        area=data.area,
        requester=data.requester,
        releaser=data.releaser,
        time=data.time,
        stamp=stamp,
        now=stamp.timestamp,
    )
    await _flush(session)
    logger.info(
        "Exit of %d recorded on item %s by %s", data.quantity, item.id, stamp.actor_name
    )
    return exit_record


async def list_low_stock_items(session: AsyncSession) -> Sequence[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .where(
            InventoryItem.minimum_stock > 0,
            InventoryItem.quantity <= InventoryItem.minimum_stock,
        )
        .order_by(InventoryItem.name)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


__all__ = [name for name in globals() if not name.startswith("_")]
