from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Union


@dataclass(frozen=True)
class Stable:
    committed: bool


@dataclass(frozen=True)
class Pending:
    committed: bool
    proposed: bool
    since: float


RainState = Union[Stable, Pending]


class RainHysteresis:
    """Debounce the rain flag with separate onset and cessation delays.

    A reading that returns to the committed value cancels a pending change;
    repeated readings of the proposed value never restart its timer.
    """

    def __init__(
        self,
        on_delay_s: float = 10.0,
        off_delay_s: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._on_delay_s = max(0.0, float(on_delay_s))
        self._off_delay_s = max(0.0, float(off_delay_s))
        self._clock = clock
        self._states: dict[str, RainState] = {}

    def state(self, snr: str) -> RainState | None:
        return self._states.get(str(snr))

    def committed(self, snr: str) -> bool | None:
        st = self._states.get(str(snr))
        return None if st is None else st.committed

    def delay(self, proposed: bool) -> float:
        return self._on_delay_s if proposed else self._off_delay_s

    def observe(self, snr: str, raining: bool) -> bool | None:
        """Feed one reading; returns the newly committed value on a transition."""
        key = str(snr)
        raining = bool(raining)
        now = self._clock()
        st = self._states.get(key)

        if st is None:
            self._states[key] = Stable(raining)
            return raining

        if raining == st.committed:
            if isinstance(st, Pending):
                self._states[key] = Stable(st.committed)
            return None

        if isinstance(st, Stable):
            st = Pending(committed=st.committed, proposed=raining, since=now)
            self._states[key] = st

        if now - st.since >= self.delay(raining):
            self._states[key] = Stable(raining)
            return raining
        return None
