from __future__ import annotations

import asyncio
import json

from app.store import SnapshotStore


def test_missing_file_reads_empty(tmp_path) -> None:
    store = SnapshotStore(str(tmp_path / "devices.json"))
    assert store.read_raw() == {}


def test_corrupt_file_is_quarantined(tmp_path) -> None:
    path = tmp_path / "devices.json"
    path.write_text("{not json", encoding="utf-8")
    store = SnapshotStore(str(path))
    assert store.read_raw() == {}
    assert not path.exists()
    assert len(list(tmp_path.glob("devices.json.corrupt.*"))) == 1


def test_save_without_loop_writes_immediately(tmp_path) -> None:
    path = tmp_path / "sub" / "devices.json"
    store = SnapshotStore(str(path))
    store.request_save(lambda: {"1001": {"kind": "actuator", "position": 30}})
    assert json.loads(path.read_text(encoding="utf-8")) == {"1001": {"kind": "actuator", "position": 30}}


def test_debounced_saves_collapse(tmp_path) -> None:
    path = tmp_path / "devices.json"
    calls: list[int] = []

    def factory() -> dict:
        calls.append(1)
        return {"n": len(calls)}

    async def scenario() -> None:
        store = SnapshotStore(str(path), debounce_s=0.05, loop=asyncio.get_running_loop())
        store.request_save(factory)
        store.request_save(factory)
        store.request_save(factory)
        assert not path.exists()
        await asyncio.sleep(0.3)

    asyncio.run(scenario())
    assert calls == [1]
    assert json.loads(path.read_text(encoding="utf-8")) == {"n": 1}


def test_flush_writes_pending(tmp_path) -> None:
    path = tmp_path / "devices.json"

    async def scenario() -> None:
        store = SnapshotStore(str(path), debounce_s=60, loop=asyncio.get_running_loop())
        store.request_save(lambda: {"x": 1})
        store.flush()

    asyncio.run(scenario())
    assert json.loads(path.read_text(encoding="utf-8")) == {"x": 1}


def test_older_write_does_not_replace_newer(tmp_path) -> None:
    path = tmp_path / "devices.json"
    store = SnapshotStore(str(path))
    store._write_quietly({"v": "new"}, 2)
    store._write_quietly({"v": "old"}, 1)
    assert json.loads(path.read_text(encoding="utf-8")) == {"v": "new"}


def test_flush_wins_over_queued_executor_write(tmp_path) -> None:
    path = tmp_path / "devices.json"
    state = {"v": 1}

    async def scenario() -> None:
        store = SnapshotStore(str(path), debounce_s=0, loop=asyncio.get_running_loop())
        store.request_save(lambda: dict(state))
        await asyncio.sleep(0.01)
        state["v"] = 2
        store.request_save(lambda: dict(state))
        store.flush()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert json.loads(path.read_text(encoding="utf-8")) == {"v": 2}


def test_concurrent_writes_leave_valid_json(tmp_path) -> None:
    import threading

    path = tmp_path / "devices.json"
    store = SnapshotStore(str(path))
    payload = {str(i): {"kind": "actuator", "position": i} for i in range(200)}

    threads = [threading.Thread(target=store.write_raw, args=(payload,)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert json.loads(path.read_text(encoding="utf-8")) == payload
