from __future__ import annotations

import logging
from typing import Any, Collection

import numpy as np
from anyio import to_thread
from sqlalchemy import select
from sqlalchemy.engine import Engine

from marquee_core.types import ItemId, MediaKind
from marquee_embeddings.embedding_store import SqlEmbeddingStore
from marquee_ranking.types import Candidate
from marquee_store.tables import movies as t_movies
from marquee_store.tables import series as t_series

log = logging.getLogger(__name__)


def cosine_scores(profile: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine of every row of `matrix` against `profile`; zero rows score 0."""
    p = np.asarray(profile, dtype=np.float32)
    p = p / max(float(np.linalg.norm(p)), 1e-12)
    norms = np.linalg.norm(matrix, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = (matrix @ p) / norms
    return np.nan_to_num(sims, nan=0.0, posinf=0.0, neginf=0.0)


class CandidateSource:
    """Unwatched catalog items, ranked by similarity to a taste profile when there is one."""

    def __init__(self, engine: Engine, embeddings: SqlEmbeddingStore | None = None):
        self.engine = engine
        self.embeddings = embeddings or SqlEmbeddingStore(engine)

    async def retrieve(
        self,
        kind: MediaKind,
        *,
        model: str,
        profile: np.ndarray | None,
        exclude_ids: Collection[ItemId],
        limit: int,
    ) -> list[Candidate]:
        return await to_thread.run_sync(
            lambda: self.retrieve_sync(kind, model=model, profile=profile, exclude_ids=exclude_ids, limit=limit)
        )

    def retrieve_sync(
        self,
        kind: MediaKind,
        *,
        model: str,
        profile: np.ndarray | None,
        exclude_ids: Collection[ItemId],
        limit: int,
    ) -> list[Candidate]:
        excluded = set(exclude_ids)
        catalog = self._catalog(kind)

        picked: list[tuple[ItemId, float | None]] | None = None
        if profile is not None:
            ids, matrix = self.embeddings.get_matrix(kind, model, exclude_ids=excluded)
            if ids and matrix.shape[1] == profile.shape[0]:
                sims = cosine_scores(profile, matrix)
                order = np.argsort(-sims, kind="stable")
                picked = [(ids[i], float(sims[i])) for i in order if ids[i] in catalog][:limit]
            elif ids:
                log.warning(
                    "profile dim %d does not match %s embeddings (%d); ranking without similarity",
                    profile.shape[0], model, matrix.shape[1],
                )

        if picked is None:
            picked = [(item_id, None) for item_id in catalog if item_id not in excluded][:limit]

        return [_to_candidate(catalog[item_id], sim) for item_id, sim in picked]

    def _catalog(self, kind: MediaKind) -> dict[ItemId, dict[str, Any]]:
        t = t_movies if kind is MediaKind.MOVIE else t_series
        cols = [t.c.id, t.c.title, t.c.year, t.c.genres, t.c.community_rating]
        if kind is MediaKind.SERIES:
            cols.append(t.c.network)
        stmt = select(*cols).order_by(t.c.id)
        with self.engine.connect() as conn:
            return {r["id"]: dict(r) for r in conn.execute(stmt).mappings()}


def _to_candidate(row: dict[str, Any], similarity: float | None) -> Candidate:
    return Candidate(
        id=row["id"],
        title=row["title"],
        year=row.get("year"),
        genres=list(row.get("genres") or []),
        community_rating=row.get("community_rating"),
        similarity=similarity,
        network=row.get("network"),
    )
