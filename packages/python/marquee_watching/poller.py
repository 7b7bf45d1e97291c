from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

import anyio

from marquee_core.config import POLLER_USER_REFRESH_S
from marquee_core.context import PipelineContext
from marquee_core.errors import AlreadyRunning
from marquee_core.guard import UserRunGuard
from marquee_core.types import UserRecord
from marquee_user.users_repo import SqlUserRepo

from .jobs import process_continue_watching_for_user

log = logging.getLogger(__name__)

ProcessUser = Callable[[UserRecord], Awaitable[Any]]
ListUsers = Callable[[], Awaitable[list[UserRecord]]]


class ContinueWatchingPoller:
    """
    Keeps continue-watching libraries fresh by visiting one user per tick.

    Ticks are spread so a full round over all users takes about
    `interval_s` (never faster than one per second). A tick that finds the
    previous one still running is skipped rather than queued.
    """

    def __init__(
        self,
        ctx: PipelineContext,
        *,
        guard: UserRunGuard | None = None,
        process_user: ProcessUser | None = None,
        list_users: ListUsers | None = None,
        user_refresh_s: float = POLLER_USER_REFRESH_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ctx = ctx
        self.guard = guard or UserRunGuard()
        self.interval_s = float(ctx.settings.continue_watching_poll_interval_s)
        self.user_refresh_s = user_refresh_s
        self._process_user = process_user or self._default_process
        self._list_users = list_users or SqlUserRepo(ctx.engine).list_enabled
        self._clock = clock

        self.users: list[UserRecord] = []
        self._cursor = 0
        self._users_loaded_at: float | None = None
        self._in_flight = False
        self._running = False
        self._cancel_scope: anyio.CancelScope | None = None
        self.ticks = 0
        self.skipped = 0
        self.errors = 0
        self.last_user_id: str | None = None
        self.last_error: str | None = None

    async def _default_process(self, user: UserRecord) -> Any:
        return await process_continue_watching_for_user(self.ctx, user, guard=self.guard)

    # ---------- scheduling ----------
    def per_user_interval(self) -> float:
        return max(1.0, self.interval_s / max(len(self.users), 1))

    async def refresh_users(self, *, force: bool = False) -> None:
        now = self._clock()
        if not force and self._users_loaded_at is not None and now - self._users_loaded_at < self.user_refresh_s:
            return
        self.users = await self._list_users()
        self._users_loaded_at = now
        if self._cursor >= len(self.users):
            self._cursor = 0
        log.debug("poller tracking %d users, %.1fs per user", len(self.users), self.per_user_interval())

    def next_user(self) -> UserRecord | None:
        if not self.users:
            return None
        user = self.users[self._cursor]
        self._cursor = (self._cursor + 1) % len(self.users)
        return user

    async def tick(self) -> bool:
        """Process the next user; False when skipped or there is nobody to process."""
        if self._in_flight:
            self.skipped += 1
            log.debug("previous continue-watching tick still running, skipping")
            return False
        self._in_flight = True
        try:
            try:
                await self.refresh_users()
            except Exception as e:
                # the previous user list is kept and the next tick retries
                self.errors += 1
                self.last_error = str(e)
                log.exception("could not refresh continue-watching users")
                return False
            user = self.next_user()
            if user is None:
                return False
            self.last_user_id = user.id
            try:
                await self._process_user(user)
                self.last_error = None
            except AlreadyRunning:
                self.skipped += 1
                return False
            except Exception as e:
                self.errors += 1
                self.last_error = str(e)
                log.exception("continue-watching tick failed for %s", user.label)
            self.ticks += 1
            return True
        finally:
            self._in_flight = False

    # ---------- lifecycle ----------
    async def run(self) -> None:
        if not self.ctx.settings.continue_watching_enabled:
            log.info("continue watching disabled, poller not started")
            return
        self._running = True
        try:
            await self.refresh_users(force=True)
        except Exception as e:
            self.errors += 1
            self.last_error = str(e)
            log.exception("could not load continue-watching users, retrying on the next tick")
        log.info("continue-watching poller started: %d users, every %.1fs", len(self.users), self.per_user_interval())
        try:
            async with anyio.create_task_group() as tg:
                self._cancel_scope = tg.cancel_scope
                while self._running:
                    tg.start_soon(self.tick)
                    await anyio.sleep(self.per_user_interval())
        finally:
            self._running = False
            self._cancel_scope = None
            log.info("continue-watching poller stopped")

    def stop(self) -> None:
        """Stop after the current sleep; call from the poller's event loop."""
        self._running = False
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "users": len(self.users),
            "per_user_interval_s": self.per_user_interval(),
            "cursor": self._cursor,
            "in_flight": self._in_flight,
            "ticks": self.ticks,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_user_id": self.last_user_id,
            "last_error": self.last_error,
        }
