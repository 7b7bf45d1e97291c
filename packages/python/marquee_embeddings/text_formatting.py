from __future__ import annotations

from typing import Any, Mapping

from marquee_core.types import MediaKind

MAX_OVERVIEW_CHARS = 1000


def _names(values: Any, limit: int | None = None) -> list[str]:
    out: list[str] = []
    for v in values or []:
        name = v.get("name") if isinstance(v, Mapping) else v
        if name:
            out.append(str(name))
    return out[:limit] if limit else out


def _overview(text: str | None) -> str:
    text = (text or "").strip()
    if len(text) > MAX_OVERVIEW_CHARS:
        return text[:MAX_OVERVIEW_CHARS] + "..."
    return text


def format_embedding_text(kind: MediaKind, item: Mapping[str, Any]) -> str:
    """
    Canonical text for one catalog row.

    Identity first (title, year, tagline), then classification, creative
    credits, overview and themes, joined as sentences.
    """
    title = item.get("title") or "Unknown"
    year = item.get("year")
    parts: list[str] = [f"{title} ({year})" if year else title]

    if item.get("tagline"):
        parts.append(f'"{item["tagline"]}"')
    genres = _names(item.get("genres"))
    if genres:
        parts.append(f"Genres: {', '.join(genres)}")
    if item.get("content_rating"):
        parts.append(f"Rated {item['content_rating']}")

    if kind is MediaKind.MOVIE:
        directors = _names(item.get("directors"))
        if directors:
            parts.append(f"Directed by {', '.join(directors)}")
    elif item.get("network"):
        parts.append(f"Network: {item['network']}")

    studios = _names(item.get("studios"), 2)
    if studios:
        parts.append(f"Studio: {', '.join(studios)}")
    cast = _names(item.get("cast_members"), 3)
    if cast:
        parts.append(f"Starring {', '.join(cast)}")

    overview = _overview(item.get("overview"))
    if overview:
        parts.append(overview)
    keywords = _names(item.get("keywords"))
    if keywords:
        parts.append(f"Themes: {', '.join(keywords)}")

    return ". ".join(parts)
