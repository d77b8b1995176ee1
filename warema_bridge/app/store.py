from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from typing import Any, Callable

_LOGGER = logging.getLogger("store")


class SnapshotStore:
    """Best-effort device snapshot on disk.

    Writes are debounced on the event loop and performed in the default
    executor, so event processing never waits on the filesystem. A crash
    between a mutation and the write simply loses that mutation.
    """

    def __init__(
        self,
        path: str = "/data/devices.json",
        *,
        debounce_s: float = 2.0,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._path = path
        self._debounce_s = max(0.0, float(debounce_s))
        self._loop = loop
        self._pending: Callable[[], dict[str, Any]] | None = None
        self._handle: asyncio.TimerHandle | None = None
        # Executor writes and the shutdown flush share one tmp file.
        self._write_lock = threading.Lock()
        self._seq = 0
        self._written_seq = 0

    @property
    def path(self) -> str:
        return self._path

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def read_raw(self) -> dict[str, Any]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, ValueError):
            # Keep the corrupt file around for inspection and start fresh.
            try:
                ts = time.strftime("%Y%m%d-%H%M%S")
                os.replace(self._path, f"{self._path}.corrupt.{ts}")
            except OSError:
                pass
            _LOGGER.warning("Snapshot %s is corrupt, starting with an empty registry", self._path)
            return {}
        except OSError as e:
            _LOGGER.warning("Snapshot %s unreadable: %s", self._path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return raw

    def write_raw(self, state: dict[str, Any]) -> None:
        with self._write_lock:
            self._write_locked(state)

    def _write_locked(self, state: dict[str, Any]) -> None:
        folder = os.path.dirname(self._path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        tmp = self._path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(state, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self._path)

    def _write_quietly(self, state: dict[str, Any], seq: int) -> None:
        try:
            with self._write_lock:
                # A newer snapshot (e.g. the shutdown flush) already landed.
                if seq <= self._written_seq:
                    return
                self._write_locked(state)
                self._written_seq = seq
        except OSError as e:
            _LOGGER.warning("Failed to save snapshot %s: %s", self._path, e)

    def request_save(self, factory: Callable[[], dict[str, Any]]) -> None:
        """Schedule a write of ``factory()``; repeated requests collapse into one."""
        self._pending = factory
        if self._loop is None:
            self.flush()
            return
        if self._handle is not None:
            return
        self._handle = self._loop.call_later(self._debounce_s, self._fire)

    def _fire(self) -> None:
        self._handle = None
        factory = self._pending
        self._pending = None
        if factory is None or self._loop is None:
            return
        # Build the state on the loop thread; only the file I/O leaves it.
        state = factory()
        self._seq += 1
        self._loop.run_in_executor(None, self._write_quietly, state, self._seq)

    def flush(self) -> None:
        """Write any pending snapshot synchronously (used at shutdown)."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        factory = self._pending
        self._pending = None
        if factory is not None:
            self._seq += 1
            self._write_quietly(factory(), self._seq)
