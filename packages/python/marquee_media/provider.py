from __future__ import annotations

from typing import Literal, Protocol

from .types import LibraryAccess, MediaLibrary, MediaUser, ResumeItem

CollectionType = Literal["movies", "tvshows"]
SortOrder = Literal["Ascending", "Descending"]


class MediaServerProvider(Protocol):
    """What the jobs need from Emby or Jellyfin; all calls may raise ProviderError."""

    async def get_users(self) -> list[MediaUser]: ...

    async def get_libraries(self) -> list[MediaLibrary]: ...

    async def get_resume_items(self, user_id: str, *, limit: int = 100) -> list[ResumeItem]: ...

    async def get_item_path(self, item_id: str) -> str | None: ...

    async def create_virtual_library(self, name: str, path: str, collection_type: CollectionType) -> MediaLibrary: ...

    async def refresh_library(self, library_id: str) -> None: ...

    async def get_user_library_access(self, user_id: str) -> LibraryAccess: ...

    async def update_user_library_access(self, user_id: str, library_guids: list[str]) -> None: ...

    async def set_library_sort_preference(
        self, user_id: str, library_id: str, sort_by: str = "DateCreated", order: SortOrder = "Descending"
    ) -> None: ...

    def stream_url(self, item_id: str) -> str: ...

    async def aclose(self) -> None: ...
