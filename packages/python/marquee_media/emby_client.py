from __future__ import annotations

import logging
from typing import Any, Literal

import anyio
import httpx

from marquee_core.config import MarqueeSettings
from marquee_core.errors import ConfigurationError, NotFound, ProviderError, RateLimited

from .provider import CollectionType, SortOrder
from .types import LibraryAccess, MediaLibrary, MediaUser, ResumeItem, parse_server_datetime

log = logging.getLogger(__name__)

ServerType = Literal["emby", "jellyfin"]
RESUME_FIELDS = "Path,ProviderIds,ParentId,MediaSources,ProductionYear"


def _provider_id(ids: dict[str, Any] | None, name: str) -> str | None:
    ids = ids or {}
    value = ids.get(name) or ids.get(name.lower()) or ids.get(name.upper())
    return str(value) if value else None


def _library_for(item: dict[str, Any], libraries: list[MediaLibrary]) -> MediaLibrary | None:
    """Owning library by longest matching location prefix, else by ParentId."""
    path = item.get("Path") or ""
    best: MediaLibrary | None = None
    best_len = -1
    if path:
        for lib in libraries:
            for loc in lib.locations:
                if loc and path.startswith(loc.rstrip("/\\")) and len(loc) > best_len:
                    best, best_len = lib, len(loc)
    if best is not None:
        return best
    parent = item.get("ParentId")
    return next((lib for lib in libraries if parent and parent in (lib.id, lib.guid)), None)


def to_resume_item(raw: dict[str, Any], libraries: list[MediaLibrary]) -> ResumeItem | None:
    """Normalize one /Items/Resume entry; None for items with no playback position."""
    user_data = raw.get("UserData") or {}
    position = int(user_data.get("PlaybackPositionTicks") or 0)
    if position <= 0:
        return None
    runtime = int(raw.get("RunTimeTicks") or 0)
    library = _library_for(raw, libraries)
    path = raw.get("Path") or next((ms.get("Path") for ms in raw.get("MediaSources") or [] if ms.get("Path")), None)
    return ResumeItem(
        id=str(raw["Id"]),
        name=raw.get("Name") or "",
        type="Episode" if raw.get("Type") == "Episode" else "Movie",
        library_id=library.id if library else str(raw.get("ParentId") or ""),
        library_name=library.name if library else None,
        year=raw.get("ProductionYear"),
        series_id=raw.get("SeriesId"),
        series_name=raw.get("SeriesName"),
        season_number=raw.get("ParentIndexNumber"),
        episode_number=raw.get("IndexNumber"),
        tmdb_id=_provider_id(raw.get("ProviderIds"), "Tmdb"),
        imdb_id=_provider_id(raw.get("ProviderIds"), "Imdb"),
        playback_position_ticks=position,
        runtime_ticks=runtime,
        progress_percent=(position / runtime * 100) if runtime > 0 else 0.0,
        last_played_at=parse_server_datetime(user_data.get("LastPlayedDate")),
        path=path,
    )


class EmbyCompatibleProvider:
    """
    Emby and Jellyfin share the endpoints used here; they differ only in
    how a direct stream URL is built.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        server_type: ServerType = "emby",
        timeout: float = 30.0,
        max_connections: int = 8,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationError("media server API key is not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.server_type = server_type
        limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=limits,
            headers={"Accept": "application/json"},
        )
        self.semaphore = anyio.Semaphore(max_connections)

    @classmethod
    def from_settings(cls, settings: MarqueeSettings) -> EmbyCompatibleProvider:
        return cls(
            settings.media_server_url,
            settings.media_server_api_key,
            server_type=settings.media_server_type,
            timeout=settings.media_server_timeout_s,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        async with self.semaphore:
            try:
                response = await self.client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers={"X-Emby-Token": self.api_key},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                log.warning("%s %s -> %d", method, path, status)
                if status == 429:
                    raise RateLimited(f"{self.server_type} rate limited on {path}") from e
                if status == 404:
                    raise NotFound(f"{self.server_type} {path} not found") from e
                raise ProviderError(f"{self.server_type} {method} {path} failed with {status}") from e
            except httpx.RequestError as e:
                raise ProviderError(f"{self.server_type} {method} {path} failed: {e}") from e
        if not response.content:
            return None
        return response.json()

    # ---------- users ----------
    async def get_users(self) -> list[MediaUser]:
        data = await self._request("GET", "/Users")
        return [
            MediaUser(
                id=u["Id"],
                name=u.get("Name") or "",
                is_admin=bool((u.get("Policy") or {}).get("IsAdministrator")),
                is_disabled=bool((u.get("Policy") or {}).get("IsDisabled")),
            )
            for u in data or []
        ]

    async def get_user_library_access(self, user_id: str) -> LibraryAccess:
        user = await self._request("GET", f"/Users/{user_id}")
        policy = (user or {}).get("Policy") or {}
        return LibraryAccess(
            enable_all_folders=policy.get("EnableAllFolders", True),
            enabled_folders=list(policy.get("EnabledFolders") or []),
        )

    async def update_user_library_access(self, user_id: str, library_guids: list[str]) -> None:
        # the policy endpoint replaces the whole policy, so start from the current one
        user = await self._request("GET", f"/Users/{user_id}")
        policy = dict((user or {}).get("Policy") or {})
        policy.update({"EnableAllFolders": False, "EnabledFolders": list(library_guids)})
        await self._request("POST", f"/Users/{user_id}/Policy", json=policy)

    async def set_library_sort_preference(
        self, user_id: str, library_id: str, sort_by: str = "DateCreated", order: SortOrder = "Descending"
    ) -> None:
        """Default sort of one library for one user, stored as web-client display preferences."""
        params = {"userId": user_id, "client": "emby"}
        path = f"/DisplayPreferences/{library_id}"
        try:
            prefs = await self._request("GET", path, params=params) or {}
        except NotFound:
            prefs = {}
        prefs = dict(prefs)
        prefs.update({"Id": library_id, "Client": "emby", "SortBy": sort_by, "SortOrder": order})
        prefs.setdefault("CustomPrefs", {})
        await self._request("POST", path, params=params, json=prefs)

    # ---------- libraries ----------
    async def get_libraries(self) -> list[MediaLibrary]:
        data = await self._request("GET", "/Library/VirtualFolders")
        # Emby returns a bare list; some versions wrap it in {"Items": [...]}
        libraries = data if isinstance(data, list) else (data or {}).get("Items", [])
        out: list[MediaLibrary] = []
        for lib in libraries:
            lib_id = str(lib.get("ItemId") or lib.get("Id") or "")
            out.append(
                MediaLibrary(
                    id=lib_id,
                    guid=str(lib.get("Guid") or lib_id),
                    name=lib.get("Name") or "",
                    collection_type=lib.get("CollectionType"),
                    locations=list(lib.get("Locations") or []),
                )
            )
        return out

    async def create_virtual_library(self, name: str, path: str, collection_type: CollectionType) -> MediaLibrary:
        await self._request(
            "POST",
            "/Library/VirtualFolders",
            params={"name": name, "collectionType": collection_type, "paths": path, "refreshLibrary": "true"},
        )
        created = next((lib for lib in await self.get_libraries() if lib.name == name), None)
        if created is None:
            raise ProviderError(f"library {name!r} not found after creation")
        return created

    async def refresh_library(self, library_id: str) -> None:
        await self._request("POST", f"/Items/{library_id}/Refresh")

    # ---------- items ----------
    async def get_resume_items(self, user_id: str, *, limit: int = 100) -> list[ResumeItem]:
        libraries = await self.get_libraries()
        data = await self._request(
            "GET",
            f"/Users/{user_id}/Items/Resume",
            params={
                "Fields": RESUME_FIELDS,
                "Limit": limit,
                "Recursive": "true",
                "IncludeItemTypes": "Movie,Episode",
            },
        )
        items = []
        for raw in (data or {}).get("Items", []):
            item = to_resume_item(raw, libraries)
            if item is not None:
                items.append(item)
        log.info("fetched %d resume items for user %s", len(items), user_id)
        return items

    async def get_item_path(self, item_id: str) -> str | None:
        try:
            item = await self._request("GET", f"/Items/{item_id}", params={"Fields": "Path,MediaSources"})
        except NotFound:
            return None
        if not item:
            return None
        return item.get("Path") or next(
            (ms.get("Path") for ms in item.get("MediaSources") or [] if ms.get("Path")), None
        )

    def stream_url(self, item_id: str) -> str:
        if self.server_type == "jellyfin":
            return f"{self.base_url}/Videos/{item_id}/stream?static=true&api_key={self.api_key}"
        return f"{self.base_url}/Videos/{item_id}/stream?api_key={self.api_key}"

    async def aclose(self) -> None:
        await self.client.aclose()
