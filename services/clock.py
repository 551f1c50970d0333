# path: services/clock.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """UTC naive: es lo que guarda la DB."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    def now(self) -> datetime:
        return utcnow()


class FrozenClock(Clock):
    """Reloj fijo para tests y para reprocesar con una hora dada."""

    def __init__(self, at: datetime):
        self._at = at

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = at

    def advance(self, **delta) -> datetime:
        self._at = self._at + timedelta(**delta)
        return self._at


_system_clock = Clock()


def get_clock() -> Clock:
    return _system_clock
