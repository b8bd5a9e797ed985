"""Enumerations and value objects shared across the service."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class Building(str, Enum):
    ADM = "ADM"
    TI = "TI"


class MaterialType(str, Enum):
    OFICINA = "oficina"
    LIMPIEZA = "limpieza"
    VARIOS = "varios"


class UnitOfMeasure(str, Enum):
    PIEZA = "pieza"
    LITRO = "litro"
    KILOGRAMO = "kilogramo"
    METRO = "metro"
    GRAMO = "gramo"
    MILILITRO = "mililitro"
    UNIDAD = "unidad"
    CAJA = "caja"
    PAQUETE = "paquete"
    ROLLO = "rollo"
    OTRO = "otro"


class RequestingArea(str, Enum):
    """Organisational areas allowed to request stock."""

    CONSEJERO_JURIDICO = "CONSEJERO JURÍDICO"
    SECRETARIA_PARTICULAR = "SECRETARIA PARTICULAR Y DE COMUNICACIÓN SOCIAL"
    COORDINACION_Y_CONTROL = "DIRECCIÓN DE COORDINACIÓN Y CONTROL DE GESTIÓN"
    CONTENCIOSO = "DIRECCIÓN GENERAL DE LO CONTENCIOSO"
    ASISTENCIA_TECNICA = "DIRECCIÓN DE ASISTENCIA TÉCNICA Y COMBATE A LA CORRUPCIÓN"
    SERVICIOS_LEGALES = "DIRECCIÓN DE SERVICIOS LEGALES"
    CONSULTIVA = "DIRECCIÓN GENERAL CONSULTIVA"
    ESTUDIOS_LEGISLATIVOS = "DIRECCIÓN DE ESTUDIOS LEGISLATIVOS"
    ESTUDIOS_JURIDICOS = "DIRECCIÓN DE ESTUDIOS JURÍDICOS"
    COMPILACION_NORMATIVA = "DIRECCIÓN DE COMPILACIÓN NORMATIVA, ARCHIVO E IGUALDAD DE GÉNERO"
    ADMINISTRATIVA = "DIRECCIÓN ADMINISTRATIVA"
    TRANSPARENCIA = "UNIDAD DE TRANSPARENCIA"
    LIMPIEZA = "LIMPIEZA"


class EntryKind(str, Enum):
    RESTOCK = "restock"
    LOCATION_CHANGE = "location_change"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the database."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Location:
    """Physical storage slot of an item."""

    building: Building
    shelf: str
    level: int
    notes: Optional[str] = None

    def same_slot(self, other: "Location") -> bool:
        return (
            self.building == other.building
            and self.shelf == other.shelf
            and self.level == other.level
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "building": Building(self.building).value,
            "shelf": self.shelf,
            "level": self.level,
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> Optional["Location"]:
        if not record:
            return None
        return cls(
            building=Building(record.get("building") or Building.ADM.value),
            shelf=str(record.get("shelf") or ""),
            level=int(record.get("level") or 1),
            notes=record.get("notes"),
        )


@dataclass(frozen=True)
class AuditStamp:
    """Who performed a mutation, and when."""

    actor_id: int
    actor_name: str
    timestamp: datetime


@dataclass(frozen=True)
class Identity:
    """Verified caller extracted from an access token."""

    user_id: int
    role: Role


@dataclass(frozen=True)
class DemandMetrics:
    total_exits: int = 0
    cumulative_removed: int = 0
    last_exit_at: Optional[datetime] = None
    monthly_frequency: float = 0.0
    exits_this_month: int = 0
    rotation_ratio: float = 0.0


__all__ = [
    "AuditStamp",
    "Building",
    "DemandMetrics",
    "EntryKind",
    "Identity",
    "Location",
    "MaterialType",
    "RequestingArea",
    "Role",
    "UnitOfMeasure",
    "as_utc",
    "utcnow",
]
