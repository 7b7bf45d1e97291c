import anyio
import pytest

from marquee_core.errors import AlreadyRunning
from marquee_core.types import UserRecord
from marquee_watching.poller import ContinueWatchingPoller


def _users(n):
    return [UserRecord(id=f"u{i}", provider_user_id=f"p{i}", username=f"user{i}") for i in range(n)]


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _poller(ctx, users, process=None, clock=None, interval=60.0):
    ctx.settings.continue_watching_poll_interval_s = interval
    seen = []

    async def list_users():
        return list(users)

    async def default_process(user):
        seen.append(user.id)

    poller = ContinueWatchingPoller(
        ctx,
        process_user=process or default_process,
        list_users=list_users,
        clock=clock or _Clock(),
    )
    return poller, seen


@pytest.mark.anyio
async def test_interval_is_spread_over_users(ctx):
    poller, _ = _poller(ctx, _users(4), interval=60)
    await poller.refresh_users(force=True)
    assert poller.per_user_interval() == pytest.approx(15.0)

    many, _ = _poller(ctx, _users(500), interval=60)
    await many.refresh_users(force=True)
    assert many.per_user_interval() == 1.0

    empty, _ = _poller(ctx, [], interval=60)
    await empty.refresh_users(force=True)
    assert empty.per_user_interval() == 60.0
    assert await empty.tick() is False


@pytest.mark.anyio
async def test_round_robin_over_users(ctx):
    poller, seen = _poller(ctx, _users(3))
    for _ in range(7):
        assert await poller.tick()
    assert seen == ["u0", "u1", "u2", "u0", "u1", "u2", "u0"]
    assert poller.status()["ticks"] == 7


@pytest.mark.anyio
async def test_user_list_refresh_is_throttled(ctx):
    users = _users(2)
    clock = _Clock()
    poller, seen = _poller(ctx, users, clock=clock)
    await poller.tick()
    users.append(UserRecord(id="late", provider_user_id="plate", username="late"))

    await poller.tick()
    assert len(poller.users) == 2

    clock.now = 301.0
    await poller.tick()
    assert len(poller.users) == 3


@pytest.mark.anyio
async def test_tick_skipped_while_previous_in_flight(ctx):
    started = anyio.Event()
    release = anyio.Event()

    async def slow(user):
        started.set()
        await release.wait()

    poller, _ = _poller(ctx, _users(2), process=slow)
    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.tick)
        await started.wait()
        assert await poller.tick() is False
        release.set()

    status = poller.status()
    assert status["skipped"] == 1
    assert status["ticks"] == 1
    assert status["in_flight"] is False


@pytest.mark.anyio
async def test_errors_are_counted_and_polling_continues(ctx):
    calls = []

    async def flaky(user):
        calls.append(user.id)
        if user.id == "u0":
            raise RuntimeError("server down")
        if user.id == "u1":
            raise AlreadyRunning("busy")

    poller, _ = _poller(ctx, _users(3), process=flaky)
    results = [await poller.tick() for _ in range(3)]
    assert results == [True, False, True]
    status = poller.status()
    assert status["errors"] == 1
    assert status["skipped"] == 1
    assert status["last_error"] is None
    assert calls == ["u0", "u1", "u2"]


@pytest.mark.anyio
async def test_disabled_poller_returns_immediately(ctx):
    ctx.settings.continue_watching_enabled = False
    poller, seen = _poller(ctx, _users(1))
    await poller.run()
    assert seen == []
    assert poller.status()["running"] is False


@pytest.mark.anyio
async def test_run_until_stopped(ctx):
    poller, seen = _poller(ctx, _users(2), interval=1)

    async def stop_later():
        await anyio.sleep(0.05)
        poller.stop()

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(stop_later)
            await poller.run()
    assert seen == ["u0"]
    assert poller.status()["running"] is False


def _flaky_user_source(users, fail_on):
    calls = {"n": 0}

    async def list_users():
        calls["n"] += 1
        if calls["n"] in fail_on:
            raise RuntimeError("db briefly unavailable")
        return list(users)

    return list_users, calls


@pytest.mark.anyio
async def test_user_refresh_failure_keeps_previous_users(ctx):
    clock = _Clock()
    list_users, _ = _flaky_user_source(_users(2), fail_on={2})
    seen = []

    async def process(user):
        seen.append(user.id)

    poller = ContinueWatchingPoller(ctx, process_user=process, list_users=list_users, clock=clock)
    assert await poller.tick()

    clock.now = 301.0
    assert await poller.tick() is False
    status = poller.status()
    assert status["errors"] == 1
    assert status["last_error"] == "db briefly unavailable"
    assert status["users"] == 2

    assert await poller.tick()
    assert seen == ["u0", "u1"]
    assert poller.status()["last_error"] is None


@pytest.mark.anyio
async def test_run_survives_user_refresh_failures(ctx):
    ctx.settings.continue_watching_poll_interval_s = 2
    clock = _Clock()
    list_users, calls = _flaky_user_source(_users(2), fail_on={1, 3})
    seen = []

    async def process(user):
        seen.append(user.id)
        clock.now += 301.0

    poller = ContinueWatchingPoller(ctx, process_user=process, list_users=list_users, clock=clock)
    with anyio.move_on_after(3.5):
        await poller.run()

    assert calls["n"] >= 3
    assert poller.status()["errors"] >= 1
    assert seen
