import asyncio


class HealthGauge:
    """
    Readiness signal driven by recent server errors.

    Every unexpected server error (a persistence or gateway failure, not a validation or
    rate-limit rejection) increments the gauge, and a background task decrements it as time
    passes. A burst of errors pushes the value over the threshold and the readiness probe
    starts failing until the burst has decayed.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    async def womp(self, d: int = 1) -> int:
        """Record `d` server errors and return the new value."""
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self) -> None:
        async with self._lock:
            if self._value > 0:
                self._value -= 1

    async def value(self) -> int:
        async with self._lock:
            return self._value

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._health_threshold
