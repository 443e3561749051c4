import logging
import time
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class PoolExhausted(Exception):
    """Raised when every credential has been evicted."""


def mask_key(key: str) -> str:
    """Render an API key for logs without exposing it."""
    if not key:
        return "<none>"
    return f"...{key[-4:]}" if len(key) > 4 else "..."


class KeyHealth:
    def __init__(self) -> None:
        self.successes = 0
        self.failures = 0
        self.last_failure: Optional[str] = None
        self.last_good_at = 0.0


class CredentialPool:
    """Round-robin pool of API keys with permanent eviction.

    Rotation is for transient failures (the key stays in the cycle);
    eviction is for keys the provider reports as invalid or expired.
    Membership only ever shrinks.
    """

    def __init__(self, keys: Iterable[str]):
        self._keys: List[str] = []
        for key in keys:
            if key and key not in self._keys:
                self._keys.append(key)
        if not self._keys:
            raise ValueError("No API credentials configured")

        self._index = 0
        self._health: Dict[str, KeyHealth] = {k: KeyHealth() for k in self._keys}
        self._evicted: List[str] = []
        self.rotations = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> tuple:
        return tuple(self._keys)

    def current(self) -> str:
        if not self._keys:
            raise PoolExhausted("All API credentials have been evicted")
        return self._keys[self._index]

    def rotate(self) -> None:
        if not self._keys:
            return
        self._index = (self._index + 1) % len(self._keys)
        self.rotations += 1
        logger.debug("Rotated to key %s", mask_key(self._keys[self._index]))

    def evict(self, key: str) -> None:
        # Another turn may already have evicted it
        if key not in self._keys:
            return

        position = self._keys.index(key)
        self._keys.pop(position)
        self._evicted.append(key)
        self.evictions += 1

        if position < self._index:
            self._index -= 1
        if self._index >= len(self._keys):
            self._index = 0

        logger.warning(
            "Evicted key %s, %d credential(s) remaining", mask_key(key), len(self._keys)
        )

    def record_success(self, key: str) -> None:
        health = self._health.get(key)
        if health:
            health.successes += 1
            health.last_failure = None
            health.last_good_at = time.time()

    def record_failure(self, key: str, reason: str) -> None:
        health = self._health.get(key)
        if health:
            health.failures += 1
            health.last_failure = reason

    def snapshot(self) -> List[Dict[str, Any]]:
        """Masked status of every key, live ones first."""
        result = []
        active = self._keys[self._index] if self._keys else None
        for key in self._keys + self._evicted:
            health = self._health[key]
            if key in self._evicted:
                status = "evicted"
            elif key == active:
                status = "current"
            else:
                status = "standby"
            result.append({
                "key": mask_key(key),
                "status": status,
                "successes": health.successes,
                "failures": health.failures,
                "last_failure": health.last_failure,
                "last_good": (
                    time.strftime("%H:%M:%S", time.localtime(health.last_good_at))
                    if health.last_good_at > 0 else "never"
                ),
            })
        return result
