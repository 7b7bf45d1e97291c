from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timedelta

from .types import LibraryItem

DATE_ADDED_FORMAT = "%Y-%m-%d %H:%M:%S"
RANK_INTERVAL = timedelta(days=1)


def date_added_for_rank(rank: int | None, now: datetime) -> datetime:
    """Rank 1 is newest; each later rank is one interval older."""
    return now - RANK_INTERVAL * max((rank or 1) - 1, 0)


def sort_title_for_rank(rank: int | None, title: str, width: int = 2) -> str:
    """Zero-padded so ranks sort as text; width must fit the largest rank in the library."""
    return f"{rank:0{width}d} - {title}" if rank else title


def _add(parent: ET.Element, tag: str, value: object | None, **attrs: str) -> None:
    if value is None or value == "":
        return
    el = ET.SubElement(parent, tag, attrs)
    el.text = str(value)


def render_nfo(
    item: LibraryItem, *, now: datetime, include_image_urls: bool = False, rank_width: int = 2
) -> str:
    """
    Kodi-style NFO the media server reads on scan.

    <movie> for movies and episodes pointed at as standalone files,
    <tvshow> for series folders.
    """
    root = ET.Element("tvshow" if item.kind == "series" else "movie")
    title = item.title
    if item.kind == "episode" and item.series_name:
        title = f"{item.series_name} - S{item.season_number or 0:02d}E{item.episode_number or 0:02d} - {item.title}"

    _add(root, "title", title)
    if item.original_title and item.original_title != item.title:
        _add(root, "originaltitle", item.original_title)
    _add(root, "sorttitle", sort_title_for_rank(item.rank, title, rank_width))
    _add(root, "year", item.year)
    _add(root, "plot", item.overview)
    _add(root, "tagline", item.tagline)
    _add(root, "runtime", item.runtime_minutes)
    _add(root, "mpaa", item.content_rating)
    _add(root, "rating", item.community_rating)
    _add(root, "criticrating", item.critic_rating)
    for genre in item.genres:
        _add(root, "genre", genre)
    for studio in item.studios:
        _add(root, "studio", studio)
    if item.kind == "series":
        _add(root, "studio", item.network)
        _add(root, "status", item.status)
    for tag in item.tags:
        _add(root, "tag", tag)
    _add(root, "uniqueid", item.imdb_id, type="imdb")
    _add(root, "uniqueid", item.tmdb_id, type="tmdb")
    if include_image_urls:
        _add(root, "thumb", item.poster_url, aspect="poster")
        if item.backdrop_url:
            fanart = ET.SubElement(root, "fanart")
            _add(fanart, "thumb", item.backdrop_url)
    _add(root, "dateadded", date_added_for_rank(item.rank, now).strftime(DATE_ADDED_FORMAT))

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="utf-8"?>\n{body}\n'
