import asyncio

import pytest

from errors import RemoteServiceError
from llm.local_backend import LocalAssistantBackend
from sessions.registry import SessionRegistry


class FailingThreadBackend(LocalAssistantBackend):
    async def create_thread(self) -> str:
        raise RemoteServiceError("thread creation failed: boom")


@pytest.mark.asyncio
async def test_concurrent_first_requests_create_one_thread():
    backend = LocalAssistantBackend(latency=0.01)
    registry = SessionRegistry(backend)

    sessions = await asyncio.gather(*[registry.get_or_create("caller-1") for _ in range(10)])

    assert len(backend.threads) == 1
    assert len({s.thread_id for s in sessions}) == 1
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_existing_session_is_reused(registry, backend):
    first = await registry.get_or_create("s1")
    second = await registry.get_or_create("s1")
    other = await registry.get_or_create("s2")

    assert first is second
    assert other.thread_id != first.thread_id
    assert len(backend.threads) == 2


@pytest.mark.asyncio
async def test_failed_thread_creation_registers_nothing():
    registry = SessionRegistry(FailingThreadBackend())

    with pytest.raises(RemoteServiceError):
        await registry.get_or_create("s1")

    assert registry.get("s1") is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_failed_thread_creation_drops_its_lock():
    registry = SessionRegistry(FailingThreadBackend())

    for session_id in ("s1", "s2", "s3"):
        with pytest.raises(RemoteServiceError):
            await registry.get_or_create(session_id)

    assert registry._creating == {}


@pytest.mark.asyncio
async def test_try_activate_is_single_winner(registry):
    session = await registry.get_or_create("s1")

    first = registry.try_activate(session.thread_id)
    second = registry.try_activate(session.thread_id)

    assert first is not None
    assert second is None
    assert registry.is_active(session.thread_id)


@pytest.mark.asyncio
async def test_lease_releases_once(registry):
    session = await registry.get_or_create("s1")
    lease = registry.try_activate(session.thread_id)
    lease.attach_run("run_1")
    assert session.run_id == "run_1"

    assert lease.release() is True
    assert lease.release() is False
    assert not registry.is_active(session.thread_id)
    assert session.run_id is None


@pytest.mark.asyncio
async def test_stale_lease_does_not_clear_newer_run(registry):
    session = await registry.get_or_create("s1")
    stale = registry.try_activate(session.thread_id)
    registry.force_clear(session.thread_id)
    fresh = registry.try_activate(session.thread_id)

    assert stale.release() is False
    assert registry.is_active(session.thread_id)
    assert fresh.release() is True
    assert not registry.is_active(session.thread_id)


@pytest.mark.asyncio
async def test_set_active_round_trip(registry):
    session = await registry.get_or_create("s1")

    registry.set_active(session.thread_id, True)
    assert registry.is_active(session.thread_id)
    registry.set_active(session.thread_id, False)
    assert not registry.is_active(session.thread_id)


@pytest.mark.asyncio
async def test_reconcile_skips_when_released_and_reacquired(registry):
    session = await registry.get_or_create("s1")
    registry.try_activate(session.thread_id)
    observed = session.generation

    registry.force_clear(session.thread_id)
    registry.try_activate(session.thread_id)

    assert registry.reconcile(session.thread_id, observed) is False
    assert registry.is_active(session.thread_id)


@pytest.mark.asyncio
async def test_evict_idle_keeps_active_sessions(registry):
    idle = await registry.get_or_create("idle")
    busy = await registry.get_or_create("busy")
    registry.try_activate(busy.thread_id)
    idle.last_used_at -= 100
    busy.last_used_at -= 100

    assert registry.evict_idle(10) == 1
    assert registry.get("idle") is None
    assert registry.get("busy") is busy
    assert not registry.is_active(idle.thread_id)
