from __future__ import annotations

from threading import Lock
from typing import Generic, TypeVar

from referral_market.core.clock import Clock, system_clock

T = TypeVar("T")


class SettingsCache(Generic[T]):
    """Single-slot cache whose entry goes stale ``ttl_seconds`` after loading."""

    def __init__(self, ttl_seconds: float, clock: Clock = system_clock) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._value: T | None = None
        self._loaded_at: float | None = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self) -> T | None:
        with self._lock:
            if self._loaded_at is None:
                return None
            if self._clock.monotonic() - self._loaded_at >= self._ttl:
                self._value = None
                self._loaded_at = None
                return None
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._loaded_at = self._clock.monotonic()

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None
