from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Collection

from marquee_core.context import PipelineContext
from marquee_core.types import UserRecord
from marquee_library.virtual_library import SqlVirtualLibraryRepo

from .dedup import filter_and_deduplicate
from .repo import SqlContinueWatchingRepo

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    user_id: str
    fetched: int = 0
    synced: int = 0
    removed: int = 0


async def sync_continue_watching_for_user(
    ctx: PipelineContext,
    user: UserRecord,
    *,
    auto_library_ids: Collection[str] | None = None,
) -> SyncResult:
    """
    Mirror the server's resume list into continue_watching for one user.

    The fetch is authoritative: rows for items the server no longer reports
    are deleted.
    """
    if auto_library_ids is None:
        auto_library_ids = await SqlVirtualLibraryRepo(ctx.engine).provider_library_ids()
    libraries = await ctx.media.get_libraries()
    names = {lib.id: lib.name for lib in libraries}

    raw = await ctx.media.get_resume_items(user.provider_user_id)
    items = filter_and_deduplicate(
        raw,
        auto_library_ids,
        ctx.settings.continue_watching_excluded_library_ids,
        names,
    )

    repo = SqlContinueWatchingRepo(ctx.engine)
    existing = await repo.existing_ids(user.id)
    synced = await repo.upsert_items(user.id, items)
    stale = sorted(existing - {it.id for it in items})
    removed = await repo.delete_ids(user.id, stale)

    log.info(
        "continue watching for %s: %d fetched, %d kept, %d removed",
        user.label, len(raw), synced, removed,
    )
    return SyncResult(user_id=user.id, fetched=len(raw), synced=synced, removed=removed)
