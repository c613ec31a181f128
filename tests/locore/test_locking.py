"""Tests for the review write lock."""

import asyncio
from pathlib import Path

import pytest

from locore.locking import LockTimeout, ReviewLock


@pytest.mark.asyncio
async def test_basic_hold_and_release(tmp_path: Path) -> None:
    lock = ReviewLock(tmp_path)

    async with lock.hold():
        assert lock.locked()

    assert not lock.locked()


@pytest.mark.asyncio
async def test_released_on_error(tmp_path: Path) -> None:
    lock = ReviewLock(tmp_path)

    with pytest.raises(RuntimeError):
        async with lock.hold():
            raise RuntimeError("boom")

    assert not lock.locked()


@pytest.mark.asyncio
async def test_timeout_while_held(tmp_path: Path) -> None:
    lock = ReviewLock(tmp_path, timeout=0.05)

    async with lock.hold():
        with pytest.raises(LockTimeout, match="Failed to acquire review lock"):
            async with lock.hold():
                pass

    # Still usable after a timeout
    async with lock.hold(timeout=0.05):
        pass


@pytest.mark.asyncio
async def test_serializes_critical_sections(tmp_path: Path) -> None:
    lock = ReviewLock(tmp_path)
    counter = {"value": 0}
    seen: list[int] = []

    async def bump() -> None:
        async with lock.hold():
            current = counter["value"]
            await asyncio.sleep(0)
            counter["value"] = current + 1
            seen.append(counter["value"])

    await asyncio.gather(*(bump() for _ in range(20)))

    assert counter["value"] == 20
    assert seen == list(range(1, 21))
