"""Human readable, store-unique location codes."""
from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from .errors import LocationCodeGenerationError
from .values import Building, Location

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

CodeExists = Callable[[str], Awaitable[bool]]


def _random_suffix(length: int = 3) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


class LocationCodeGenerator:
    """Builds ``{building}-A{shelf}-N{level}-{stamp}{random}`` codes.

    The time component is the last four digits of the epoch second at which
    generation started; only the random component changes between retries.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.time,
        random_suffix: Optional[Callable[[], str]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._clock = clock
        self._random_suffix = random_suffix or _random_suffix

    @staticmethod
    def prefix(location: Location) -> str:
        building = Building(location.building).value
        return f"{building}-A{location.shelf}-N{location.level}"

    def _time_component(self) -> str:
        return f"{int(self._clock()) % 10000:04d}"

    async def generate(self, location: Location, exists: CodeExists) -> str:
        prefix = self.prefix(location)
        stamp = self._time_component()
        for attempt in range(1, self.max_attempts + 1):
            candidate = f"{prefix}-{stamp}{self._random_suffix()}"
            if not await exists(candidate):
                return candidate
            logger.warning(
                "Location code %s already taken (attempt %d/%d)",
                candidate,
                attempt,
                self.max_attempts,
            )
        raise LocationCodeGenerationError(
            f"Could not generate a unique location code for {prefix} "
            f"after {self.max_attempts} attempts"
        )


__all__ = ["CodeExists", "LocationCodeGenerator"]
