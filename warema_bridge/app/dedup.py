from __future__ import annotations

import time
from typing import Callable


class RawMessageDeduplicator:
    """Drop identical raw stick notifications repeated within ``spacing_s``.

    The transceiver tends to deliver one physical broadcast several times. An
    entry is kept per (snr, raw tag); entries older than ten spacings are
    evicted on every call and by the periodic housekeeping tick.
    """

    def __init__(self, spacing_s: float = 1.0, *, clock: Callable[[], float] = time.monotonic):
        self._spacing_s = max(0.0, float(spacing_s))
        self._horizon_s = self._spacing_s * 10
        self._clock = clock
        self._seen: dict[tuple[str, str], float] = {}

    def __len__(self) -> int:
        return len(self._seen)

    def is_duplicate(self, snr: str, raw_tag: str) -> bool:
        now = self._clock()
        key = (str(snr), str(raw_tag))
        last = self._seen.get(key)
        if last is not None and now - last < self._spacing_s:
            return True
        self._seen[key] = now
        self.evict(now)
        return False

    def evict(self, now: float | None = None) -> int:
        if now is None:
            now = self._clock()
        stale = [k for k, ts in self._seen.items() if now - ts > self._horizon_s]
        for k in stale:
            del self._seen[k]
        return len(stale)
