from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from marquee_core.context import PipelineContext
from marquee_core.types import EngagementParams, ItemId, MediaKind
from marquee_embeddings.embedding_store import SqlEmbeddingStore
from marquee_user.history.watch_history_repo import SqlWatchHistoryRepo
from marquee_user.taste.taste_builder import build_taste_vector

from .schemas import TasteProfile, TasteProfileSettings
from .taste_profile_repo import SqlTasteProfileRepo

log = logging.getLogger(__name__)

EmbedMap = Mapping[ItemId, NDArray[np.float32]]


class TasteProfileService:
    def __init__(
        self,
        repo: SqlTasteProfileRepo,
        history: SqlWatchHistoryRepo,
        embeddings: SqlEmbeddingStore,
        *,
        model_id: str,
        params: EngagementParams | None = None,
    ):
        self.repo = repo
        self.history = history
        self.embeddings = embeddings
        self.model_id = model_id
        self.params = params or EngagementParams()

    @classmethod
    def from_context(cls, ctx: PipelineContext) -> TasteProfileService:
        return cls(
            SqlTasteProfileRepo(ctx.engine),
            SqlWatchHistoryRepo(ctx.engine),
            SqlEmbeddingStore(ctx.engine),
            model_id=ctx.model_id,
        )

    # Build only (no storage)
    async def build_profile(
        self, user_id: str, kind: MediaKind, *, now: datetime | None = None
    ) -> np.ndarray | None:
        items = await self.history.watched_items(user_id, kind)
        if not items:
            return None

        # keep builder pure: embeddings come in through a callback
        def get_item_embeddings(ids: Sequence[ItemId]) -> EmbedMap:
            return self.embeddings.get_many(kind, ids, self.model_id)

        vector, debug = build_taste_vector(
            items,
            kind=kind,
            get_item_embeddings=get_item_embeddings,
            params=self.params,
            now=now,
        )
        log.debug("taste build %s/%s: %s", user_id, kind.value, debug)
        return vector

    # Read with lazy rebuild
    async def get_profile(
        self,
        user_id: str,
        kind: MediaKind,
        *,
        force_rebuild: bool = False,
        skip_lock_check: bool = False,
        now: datetime | None = None,
    ) -> TasteProfile | None:
        """
        Stored profile, rebuilt first when it is missing or stale.

        A locked profile is served as-is unless skip_lock_check is set. If a
        rebuild fails or finds no usable data, the previous profile is kept.
        """
        now = now or datetime.now(timezone.utc)
        current = await self.repo.get(user_id, kind)

        if current is not None and current.is_locked and not skip_lock_check:
            return current
        if current is not None and not force_rebuild and not current.is_stale(model=self.model_id, now=now):
            return current

        try:
            vector = await self.build_profile(user_id, kind, now=now)
        except Exception:
            log.exception("taste profile rebuild failed for %s/%s", user_id, kind.value)
            return current
        if vector is None:
            return current

        await self.repo.store_vector(user_id, kind, vector, model=self.model_id)
        return await self.repo.get(user_id, kind)

    async def update_settings(
        self, user_id: str, kind: MediaKind, settings: TasteProfileSettings
    ) -> TasteProfile | None:
        await self.repo.update_settings(user_id, kind, settings)
        return await self.repo.get(user_id, kind)

    async def invalidate(self, user_id: str, kind: MediaKind) -> bool:
        return await self.repo.invalidate(user_id, kind)


async def build_taste_profile(ctx: PipelineContext, user_id: str, kind: MediaKind) -> np.ndarray | None:
    """Unit-length taste vector for a user, or None when there is not enough data."""
    return await TasteProfileService.from_context(ctx).build_profile(user_id, kind)
