import re

from .types import LibraryItem

_UNSAFE = re.compile(r'[<>:"/\\|?*]')
_SPACES = re.compile(r"\s+")

POINTER_EXT = ".strm"


def sanitize_filename(name: str) -> str:
    """Strip characters illegal on common filesystems and collapse whitespace."""
    return _SPACES.sub(" ", _UNSAFE.sub("", name or "")).strip()


def item_basename(item: LibraryItem) -> str:
    """
    Deterministic name for an item; the provider id keeps two copies of a
    title (4K and HD) from colliding.

    movie / series: "Title (Year) [id]"
    episode:        "Series - S01E02 - Title [id]"
    """
    if item.kind == "episode":
        season = item.season_number or 0
        episode = item.episode_number or 0
        series = sanitize_filename(item.series_name or "Unknown Series")
        title = sanitize_filename(item.title)
        return f"{series} - S{season:02d}E{episode:02d} - {title} [{item.provider_item_id}]"
    title = sanitize_filename(item.title)
    year = f" ({item.year})" if item.year else ""
    return f"{title}{year} [{item.provider_item_id}]"


def user_folder_name(display_name: str, provider_user_id: str) -> str:
    """DisplayName_ID keeps folders readable and unique."""
    safe = sanitize_filename(display_name).replace(" ", "_")
    return f"{safe}_{provider_user_id}" if safe else provider_user_id


def apply_merge_tags(template: str, *, username: str, user_id: str) -> str:
    return template.replace("{{username}}", username).replace("{{userid}}", user_id)
