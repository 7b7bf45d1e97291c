from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Sequence

from anyio import to_thread
from sqlalchemy import select
from sqlalchemy.engine import Engine

from marquee_core.context import PipelineContext
from marquee_core.types import UserRecord
from marquee_media.provider import CollectionType
from marquee_store.db import upsert, utcnow
from marquee_store.tables import virtual_libraries as t_libs

from .filenames import apply_merge_tags, user_folder_name
from .images import download_images
from .types import LibraryItem, WriteResult
from .writer import WriterOptions, write_library

log = logging.getLogger(__name__)


@dataclass
class VirtualLibrary:
    user_id: str
    library_type: str
    name: str
    path: str  # as the media server sees it
    provider_library_id: str | None = None
    provider_library_guid: str | None = None


@dataclass(frozen=True)
class LibrarySpec:
    """Static description of one kind of per-user library."""

    library_type: str  # movie-recs | series-recs | continue-watching
    name_template: str  # supports {{username}} and {{userid}}
    folder: str  # subfolder of strm_root / library_path_prefix
    collection_type: CollectionType
    writer: WriterOptions = field(default_factory=WriterOptions)


@dataclass
class PublishResult:
    library: VirtualLibrary
    write: WriteResult
    refreshed: bool = False
    access_granted: bool = False
    images_downloaded: int = 0


class SqlVirtualLibraryRepo:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def get(self, user_id: str, library_type: str) -> VirtualLibrary | None:
        return await to_thread.run_sync(self._get_sync, user_id, library_type)

    async def save(self, lib: VirtualLibrary) -> None:
        await to_thread.run_sync(self._save_sync, lib)

    async def provider_library_ids(self) -> set[str]:
        return await to_thread.run_sync(self._provider_library_ids_sync)

    def _get_sync(self, user_id: str, library_type: str) -> VirtualLibrary | None:
        stmt = select(t_libs).where(t_libs.c.user_id == user_id, t_libs.c.library_type == library_type)
        with self.engine.connect() as conn:
            r = conn.execute(stmt).mappings().first()
        if r is None:
            return None
        return VirtualLibrary(
            user_id=r["user_id"],
            library_type=r["library_type"],
            name=r["name"],
            path=r["path"],
            provider_library_id=r["provider_library_id"],
            provider_library_guid=r["provider_library_guid"],
        )

    def _save_sync(self, lib: VirtualLibrary) -> None:
        row = {**lib.__dict__, "created_at": utcnow()}
        with self.engine.begin() as conn:
            upsert(
                conn,
                t_libs,
                [row],
                conflict_cols=["user_id", "library_type"],
                update_cols=["name", "path", "provider_library_id", "provider_library_guid"],
            )

    def _provider_library_ids_sync(self) -> set[str]:
        stmt = select(t_libs.c.provider_library_id, t_libs.c.provider_library_guid)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return {v for r in rows for v in r if v}


def library_paths(ctx: PipelineContext, spec: LibrarySpec, user: UserRecord) -> tuple[Path, str]:
    """(local path we write to, path the media server sees)."""
    folder = user_folder_name(user.label, user.provider_user_id)
    local = Path(ctx.settings.strm_root) / spec.folder / folder
    server = posixpath.join(ctx.settings.library_path_prefix, spec.folder, folder)
    return local, server


async def ensure_user_library(ctx: PipelineContext, user: UserRecord, spec: LibrarySpec) -> VirtualLibrary:
    """Find the user's library by name, creating it (and its folder) when missing."""
    local, server_path = library_paths(ctx, spec, user)
    # folder first: an empty folder makes the server keep our collection type
    await to_thread.run_sync(lambda: local.mkdir(parents=True, exist_ok=True))

    name = apply_merge_tags(spec.name_template, username=user.label, user_id=user.provider_user_id)
    existing = next((lib for lib in await ctx.media.get_libraries() if lib.name == name), None)
    if existing is None:
        existing = await ctx.media.create_virtual_library(name, server_path, spec.collection_type)
        log.info("created library %r (%s) for %s", name, existing.id, user.label)

    record = VirtualLibrary(
        user_id=user.id,
        library_type=spec.library_type,
        name=name,
        path=server_path,
        provider_library_id=existing.id,
        provider_library_guid=existing.guid,
    )
    await SqlVirtualLibraryRepo(ctx.engine).save(record)
    return record


async def refresh_user_library(ctx: PipelineContext, lib: VirtualLibrary, result: WriteResult) -> bool:
    """Ask the server to rescan, only when the writer changed the entry set."""
    if not result.has_changes or not lib.provider_library_id:
        return False
    await ctx.media.refresh_library(lib.provider_library_id)
    return True


async def grant_library_access(ctx: PipelineContext, user: UserRecord, lib: VirtualLibrary) -> bool:
    """
    Append the library to the user's enabled folders (all-folders users already see it).

    Libraries that become visible also get a DateCreated-descending default
    sort, so the per-rank date-added stamps show in rank order.
    """
    guid = lib.provider_library_guid or lib.provider_library_id
    if not guid:
        return False
    access = await ctx.media.get_user_library_access(user.provider_user_id)
    granted = False
    if not access.enable_all_folders:
        if guid in access.enabled_folders:
            return False
        await ctx.media.update_user_library_access(user.provider_user_id, [*access.enabled_folders, guid])
        log.info("granted %s access to %r", user.label, lib.name)
        granted = True
    if lib.provider_library_id:
        await ctx.media.set_library_sort_preference(
            user.provider_user_id, lib.provider_library_id, "DateCreated", "Descending"
        )
    return granted


async def publish_library(
    ctx: PipelineContext,
    user: UserRecord,
    spec: LibrarySpec,
    items: Sequence[LibraryItem],
    *,
    now: datetime | None = None,
) -> PublishResult:
    """ensure -> write -> images -> refresh (if changed) -> permissions."""
    lib = await ensure_user_library(ctx, user, spec)
    local, _ = library_paths(ctx, spec, user)
    result = await to_thread.run_sync(
        lambda: write_library(items, local, options=spec.writer, now=now)
    )
    downloaded = 0
    if result.image_tasks:
        downloaded, _ = await download_images(result.image_tasks)
    refreshed = await refresh_user_library(ctx, lib, result)
    granted = await grant_library_access(ctx, user, lib)
    return PublishResult(
        library=lib, write=result, refreshed=refreshed, access_granted=granted, images_downloaded=downloaded
    )
