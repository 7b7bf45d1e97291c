from __future__ import annotations

from typing import Iterable, Mapping

from marquee_media.types import ResumeItem


def _preference(item: ResumeItem, library_names: Mapping[str, str]) -> tuple:
    """Sort key: highest progress, then most recently played, then library name."""
    played = item.last_played_at.timestamp() if item.last_played_at else float("-inf")
    name = library_names.get(item.library_id) or item.library_id or ""
    return (-item.progress_percent, -played, name)


def filter_and_deduplicate(
    items: Iterable[ResumeItem],
    excluded_auto_library_ids: Iterable[str],
    excluded_admin_library_ids: Iterable[str],
    library_names: Mapping[str, str],
) -> list[ResumeItem]:
    """
    Collapse a raw resume list to one row per title.

    Items living in our own generated libraries or in admin-excluded libraries
    are dropped first. The rest are grouped by identity key (tmdb, then imdb,
    then provider id) and one representative is kept per group. Output keeps
    the order in which groups first appear and every survivor carries its
    source library name. Running this on its own output changes nothing.
    """
    auto = set(excluded_auto_library_ids)
    admin = set(excluded_admin_library_ids)

    groups: dict[str, list[ResumeItem]] = {}
    for item in items:
        if item.library_id in auto or item.library_id in admin:
            continue
        groups.setdefault(item.identity_key, []).append(item)

    out: list[ResumeItem] = []
    for members in groups.values():
        best = min(members, key=lambda it: _preference(it, library_names))
        name = library_names.get(best.library_id) or best.library_name
        out.append(best.model_copy(update={"library_name": name}))
    return out
