"""
Exponential backoff for installation token generation retries.
Owned by the refresh loop; doubles on each failure up to a ceiling, resets on success.
"""

# Starting delay (seconds) before the first retry
INITIAL_BACKOFF = 1.0

# Ceiling (seconds) so a long GitHub outage never pushes retries past 5 minutes apart
MAX_BACKOFF = 300.0

BACKOFF_MULTIPLIER = 2


class Backoff:
    """Retry delay state: current() for the next sleep, advance() after it, reset() on success."""

    def __init__(
        self,
        initial: float = INITIAL_BACKOFF,
        maximum: float = MAX_BACKOFF,
        multiplier: float = BACKOFF_MULTIPLIER,
    ):
        if initial <= 0 or maximum < initial or multiplier < 1:
            raise ValueError("Backoff requires 0 < initial <= maximum and multiplier >= 1")
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self._current = initial

    def current(self) -> float:
        return self._current

    def advance(self) -> None:
        self._current = min(self._current * self.multiplier, self.maximum)

    def reset(self) -> None:
        self._current = self.initial
