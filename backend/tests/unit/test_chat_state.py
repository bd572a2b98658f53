import pytest

from app.domain.chatrooms import state
from app.domain.chatrooms.kick_ledger import MemoryKickLedger, RedisKickLedger
from app.domain.chatrooms.rate_tracker import MemoryRateTracker, RedisRateTracker


def test_configure_selects_backend():
    state.configure("redis")
    assert isinstance(state.kick_ledger(), RedisKickLedger)
    assert isinstance(state.rate_tracker(), RedisRateTracker)

    state.configure("memory")
    assert isinstance(state.kick_ledger(), MemoryKickLedger)
    assert isinstance(state.rate_tracker(), MemoryRateTracker)


def test_configure_rejects_unknown_backend():
    with pytest.raises(ValueError):
        state.configure("etcd")


@pytest.mark.asyncio
async def test_sweep_once_reports_removed_entries():
    now = [1_000.0]
    state._kick_ledger = MemoryKickLedger(block_seconds=60, clock=lambda: now[0])
    state._rate_tracker = MemoryRateTracker(max_messages=10, window_seconds=10, clock=lambda: now[0])

    await state.kick_ledger().record("room", "alice")
    await state.rate_tracker().record_and_check("room", "bob")
    assert await state.sweep_once() == 0

    now[0] += 61
    assert await state.sweep_once() == 2
    assert len(state.kick_ledger()) == 0
    assert len(state.rate_tracker()) == 0
