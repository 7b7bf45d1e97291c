from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from marquee_core.config import CONTINUE_WATCHING_LIBRARY
from marquee_core.context import PipelineContext
from marquee_core.errors import DomainError
from marquee_core.guard import UserRunGuard
from marquee_core.types import UserRecord
from marquee_library.types import LibraryItem
from marquee_library.virtual_library import LibrarySpec, PublishResult, publish_library
from marquee_library.writer import WriterOptions
from marquee_logging.job_progress import JobProgress
from marquee_user.users_repo import SqlUserRepo

from .repo import SqlContinueWatchingRepo
from .sync import SyncResult, sync_continue_watching_for_user

log = logging.getLogger(__name__)

JOB_NAME = "continue-watching"


def continue_watching_spec(ctx: PipelineContext) -> LibrarySpec:
    return LibrarySpec(
        library_type=CONTINUE_WATCHING_LIBRARY,
        name_template=ctx.settings.continue_watching_library_name,
        folder="continue-watching",
        collection_type="movies",
        writer=WriterOptions(layout="flat"),
    )


@dataclass
class ContinueWatchingRun:
    user_id: str
    sync: SyncResult | None = None
    publish: PublishResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _source_for(ctx: PipelineContext, row: dict[str, Any]) -> str | None:
    if ctx.settings.use_streaming_url:
        return ctx.media.stream_url(row["provider_item_id"])
    if row.get("path"):
        return row["path"]
    try:
        return await ctx.media.get_item_path(row["provider_item_id"])
    except DomainError as e:
        log.warning("could not resolve path for %s: %s", row["provider_item_id"], e)
        return None


async def build_continue_watching_items(ctx: PipelineContext, user: UserRecord) -> list[LibraryItem]:
    """Stored rows as library items, most recently played first (rank 1)."""
    rows = await SqlContinueWatchingRepo(ctx.engine).list_for_user(user.id)
    items: list[LibraryItem] = []
    for rank, row in enumerate(rows, start=1):
        items.append(
            LibraryItem(
                provider_item_id=row["provider_item_id"],
                title=row["title"],
                kind="episode" if row["media_type"] == "episode" else "movie",
                source=await _source_for(ctx, row),
                rank=rank,
                year=row["year"],
                series_name=row["series_name"],
                season_number=row["season_number"],
                episode_number=row["episode_number"],
                tmdb_id=row["tmdb_id"],
                imdb_id=row["imdb_id"],
            )
        )
    return items


async def process_continue_watching_for_user(
    ctx: PipelineContext,
    user: UserRecord,
    *,
    guard: UserRunGuard,
    now: datetime | None = None,
) -> ContinueWatchingRun:
    """sync -> write library -> refresh if changed -> permissions, for one user."""
    with guard.hold((JOB_NAME, user.id)):
        run = ContinueWatchingRun(user_id=user.id)
        run.sync = await sync_continue_watching_for_user(ctx, user)
        items = await build_continue_watching_items(ctx, user)
        run.publish = await publish_library(ctx, user, continue_watching_spec(ctx), items, now=now)
        return run


async def process_continue_watching_for_all_users(
    ctx: PipelineContext,
    *,
    guard: UserRunGuard,
    job: JobProgress | None = None,
) -> list[ContinueWatchingRun]:
    """One pass over every enabled user; a failing user does not stop the sweep."""
    users = await SqlUserRepo(ctx.engine).list_enabled()
    if job:
        job.set_step(1, "continue watching", total=len(users))
    runs: list[ContinueWatchingRun] = []
    for idx, user in enumerate(users, start=1):
        if job and job.cancel_requested:
            break
        try:
            runs.append(await process_continue_watching_for_user(ctx, user, guard=guard))
        except Exception as e:
            log.exception("continue watching failed for %s", user.label)
            runs.append(ContinueWatchingRun(user_id=user.id, error=str(e)))
        if job:
            job.update(idx, message=f"{user.label}: {'ok' if runs[-1].ok else runs[-1].error}")
    return runs
