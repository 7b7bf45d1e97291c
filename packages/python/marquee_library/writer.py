from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .filenames import POINTER_EXT, item_basename
from .nfo import date_added_for_rank, render_nfo
from .types import ImageTask, LibraryItem, Layout, WriteResult

log = logging.getLogger(__name__)

IMAGE_FILES = ("poster.jpg", "fanart.jpg")
TMP_SUFFIX = ".tmp"


@dataclass
class WriterOptions:
    layout: Layout = "flat"  # flat: <name>.strm in the root; folder: <name>/<name>.strm + sidecars
    write_nfo: bool = False
    download_images: bool = False


@dataclass
class _EntryPlan:
    primary: str  # top-level name used for added/unchanged accounting
    names: set[str]  # every top-level name this item owns
    files: dict[Path, str] = field(default_factory=dict)  # relative path -> content
    pointers: list[Path] = field(default_factory=list)
    images: list[ImageTask] = field(default_factory=list)


def _episode_pointer(ep: LibraryItem) -> Path:
    season = ep.season_number or 0
    return Path(f"Season {season:02d}") / f"{item_basename(ep)}{POINTER_EXT}"


def _plan(
    item: LibraryItem, root: Path, options: WriterOptions, now: datetime, rank_width: int = 2
) -> _EntryPlan | None:
    base = item_basename(item)

    if options.layout == "flat":
        if not item.source:
            return None
        pointer = Path(base + POINTER_EXT)
        plan = _EntryPlan(primary=pointer.name, names={pointer.name})
        plan.files[pointer] = item.source + "\n"
        plan.pointers.append(pointer)
        if options.write_nfo:
            nfo = Path(base + ".nfo")
            plan.names.add(nfo.name)
            plan.files[nfo] = render_nfo(item, now=now, include_image_urls=True, rank_width=rank_width)
        return plan

    folder = Path(base)
    plan = _EntryPlan(primary=base, names={base})
    if item.kind == "series":
        episodes = [ep for ep in item.episodes if ep.source]
        if not episodes and not item.source:
            return None
        for ep in episodes:
            rel = folder / _episode_pointer(ep)
            plan.files[rel] = ep.source + "\n"
            plan.pointers.append(rel)
        if not episodes:
            rel = folder / f"{base}{POINTER_EXT}"
            plan.files[rel] = item.source + "\n"
            plan.pointers.append(rel)
    else:
        if not item.source:
            return None
        rel = folder / f"{base}{POINTER_EXT}"
        plan.files[rel] = item.source + "\n"
        plan.pointers.append(rel)

    if options.write_nfo:
        nfo_name = "tvshow.nfo" if item.kind == "series" else "movie.nfo"
        plan.files[folder / nfo_name] = render_nfo(
            item, now=now, include_image_urls=not options.download_images, rank_width=rank_width
        )
    if options.download_images:
        for url, name in ((item.poster_url, "poster.jpg"), (item.backdrop_url, "fanart.jpg")):
            if url and not (root / folder / name).exists():
                plan.images.append(ImageTask(url=url, dest=root / folder / name))
    return plan


def _write_if_changed(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists() and path.read_text(encoding="utf-8") == content:
        return
    tmp = path.with_name(f".{path.name}{TMP_SUFFIX}")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


def _prune_folder(folder: Path, keep: set[Path]) -> None:
    """Drop pointer/NFO files inside an item folder that the plan no longer produces."""
    for path in sorted(folder.rglob("*"), reverse=True):
        if path.is_file() and path.suffix in (POINTER_EXT, ".nfo", TMP_SUFFIX) and path not in keep:
            path.unlink()
        elif path.is_dir() and not any(path.iterdir()):
            path.rmdir()


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def write_library(
    items: Iterable[LibraryItem],
    library_root: Path | str,
    *,
    options: WriterOptions | None = None,
    now: datetime | None = None,
) -> WriteResult:
    """
    Make library_root contain exactly the entries for `items`.

    New entries count as added, entries already on disk as unchanged (their
    content is still refreshed), and anything else at the top level is deleted.
    An item that cannot be written (no source, I/O error) is logged and
    skipped; an entry it already had on disk is left in place.
    """
    options = options or WriterOptions()
    now = now or datetime.now(timezone.utc)
    root = Path(library_root)
    root.mkdir(parents=True, exist_ok=True)

    existing: set[str] = set()
    for p in root.iterdir():
        if p.is_file() and p.name.endswith(TMP_SUFFIX):
            # left behind by an interrupted write; not a library entry
            p.unlink(missing_ok=True)
        else:
            existing.add(p.name)
    items = list(items)
    rank_width = max(2, len(str(max((item.rank or 0 for item in items), default=0))))
    result = WriteResult(library_root=root)
    desired: set[str] = set()

    for item in items:
        name = item_basename(item)
        if name in desired or (name + POINTER_EXT) in desired:
            log.debug("duplicate library entry %s skipped", name)
            continue

        plan = _plan(item, root, options, now, rank_width)
        if plan is None:
            # still desired, so an entry already on disk survives a transient failure
            desired.update({name, name + POINTER_EXT, name + ".nfo"})
            result.failed += 1
            result.failures.append({"id": item.provider_item_id, "title": item.title, "error": "no source path"})
            log.warning("no source for %s [%s], skipped", item.title, item.provider_item_id)
            continue
        desired.update(plan.names)

        try:
            for rel, content in plan.files.items():
                _write_if_changed(root / rel, content)
            ts = date_added_for_rank(item.rank, now).timestamp()
            for rel in plan.pointers:
                os.utime(root / rel, (ts, ts))
            if options.layout == "folder":
                _prune_folder(root / plan.primary, {root / rel for rel in plan.files})
        except OSError as e:
            result.failed += 1
            result.failures.append({"id": item.provider_item_id, "title": item.title, "error": str(e)})
            log.warning("failed to write %s: %s", plan.primary, e)
            continue

        if plan.primary in existing:
            result.unchanged += 1
        else:
            result.added += 1
        result.written += 1
        result.image_tasks.extend(plan.images)

    for stale in sorted(existing - desired):
        try:
            _remove(root / stale)
            result.deleted += 1
        except OSError as e:
            result.failures.append({"id": stale, "title": stale, "error": str(e)})
            log.warning("failed to delete %s: %s", stale, e)

    log.info(
        "library %s: %d written (%d added, %d unchanged), %d deleted, %d failed",
        root, result.written, result.added, result.unchanged, result.deleted, result.failed,
    )
    return result
