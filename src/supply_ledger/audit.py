"""Audit stamps for mutations and the per-item audit trail."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ActorNotFound, AuthenticationRequired
from .models import InventoryItem, User
from .values import AuditStamp, EntryKind, Identity, RequestingArea, utcnow


async def build_audit_stamp(
    session: AsyncSession,
    identity: Optional[Identity],
    *,
    now: Optional[datetime] = None,
) -> AuditStamp:
    """Resolve the caller to ``{id, username}`` and stamp the current time.

    Build one stamp per mutating operation and reuse it for every record the
    operation touches.
    """

    if identity is None:
        raise AuthenticationRequired()
    result = await session.execute(
        select(User.id, User.username).where(User.id == identity.user_id)
    )
    row = result.one_or_none()
    if row is None:
        raise ActorNotFound(f"User {identity.user_id} not found")
    return AuditStamp(actor_id=row.id, actor_name=row.username, timestamp=now or utcnow())


@dataclass
class AuditEvent:
    action: str
    date: datetime
    user_id: int
    username: str
    details: Dict[str, Any] = field(default_factory=dict)


def build_audit_trail(item: InventoryItem) -> List[AuditEvent]:
    """Return creation, modification, entry and exit events, newest first."""

    events: List[AuditEvent] = []
    created = item.created_by
    events.append(
        AuditEvent(
            action="creation",
            date=created.timestamp,
            user_id=created.actor_id,
            username=created.actor_name,
            details={"name": item.name, "locationCode": item.location_code},
        )
    )
    covered_stamps = {created.timestamp}

    for entry in item.entries:
        stamp = entry.recorded_by
        if entry.kind == EntryKind.LOCATION_CHANGE:
            details = {
                "quantity": entry.quantity,
                "previousLocation": entry.previous_location_record,
                "newLocation": entry.new_location_record,
            }
            action = "location_change"
        else:
            details = {"quantity": entry.quantity, "supplier": entry.supplier}
            action = "entry"
            covered_stamps.add(stamp.timestamp)
        events.append(
            AuditEvent(action, stamp.timestamp, stamp.actor_id, stamp.actor_name, details)
        )

    for exit_record in item.exits:
        stamp = exit_record.recorded_by
        covered_stamps.add(stamp.timestamp)
        events.append(
            AuditEvent(
                "exit",
                stamp.timestamp,
                stamp.actor_id,
                stamp.actor_name,
                {
                    "quantity": exit_record.quantity,
                    "reason": exit_record.reason,
                    "area": RequestingArea(exit_record.area).value,
                    "requester": exit_record.requester,
                    "releaser": exit_record.releaser,
                },
            )
        )

    # the last-modified stamp repeats a creation, restock or exit event unless it
    # came from an edit; a move is an edit too, so its stamp is not covered
    modified = item.modified_by
    if modified is not None and modified.timestamp not in covered_stamps:
        events.append(
            AuditEvent("modification", modified.timestamp, modified.actor_id, modified.actor_name)
        )

    # ties list the most recently recorded event first
    events.reverse()
    events.sort(key=lambda event: event.date, reverse=True)
    return events


__all__ = ["AuditEvent", "build_audit_stamp", "build_audit_trail"]
