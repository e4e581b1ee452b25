"""Reconnection delay that doubles per failure up to a ceiling."""


class Backoff:
    def __init__(self, floor: float = 1.0, ceiling: float = 30.0):
        if floor <= 0:
            raise ValueError("backoff floor must be positive")
        if ceiling < floor:
            raise ValueError("backoff ceiling must not be below the floor")
        self.floor = floor
        self.ceiling = ceiling
        self.failures = 0

    @property
    def delay(self) -> float:
        """Wait before the next attempt: ``min(floor * 2**failures, ceiling)``."""
        # exponent is clamped so long outages never overflow the float
        return min(self.floor * (2 ** min(self.failures, 64)), self.ceiling)

    def fail(self) -> float:
        self.failures += 1
        return self.delay

    def reset(self) -> None:
        self.failures = 0

    def __repr__(self) -> str:
        return f"Backoff(floor={self.floor}, ceiling={self.ceiling}, failures={self.failures})"
