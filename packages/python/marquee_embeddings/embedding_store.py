from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection, Dict, Sequence

import numpy as np
from numpy.typing import NDArray
from sqlalchemy import Table, and_, func, select
from sqlalchemy.engine import Engine

from marquee_core.types import ItemId, MediaKind
from marquee_store.db import upsert, utcnow
from marquee_store.tables import movie_embeddings, movies, series, series_embeddings

EmbedMap = Dict[ItemId, NDArray[np.float32]]

_TABLES: dict[MediaKind, tuple[Table, Table]] = {
    MediaKind.MOVIE: (movies, movie_embeddings),
    MediaKind.SERIES: (series, series_embeddings),
}


@dataclass
class EmbeddingRecord:
    item_id: ItemId
    embedding: list[float]
    canonical_text: str | None = None


class SqlEmbeddingStore:
    """Item embeddings keyed by (item_id, model); one table per media kind."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_many(self, kind: MediaKind, ids: Sequence[ItemId], model: str) -> EmbedMap:
        if not ids:
            return {}
        _, emb = _TABLES[kind]
        stmt = select(emb.c.item_id, emb.c.embedding).where(
            emb.c.model == model, emb.c.item_id.in_(list(ids))
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return {r.item_id: np.asarray(r.embedding, dtype=np.float32) for r in rows}

    def get_matrix(
        self, kind: MediaKind, model: str, *, exclude_ids: Collection[ItemId] = ()
    ) -> tuple[list[ItemId], NDArray[np.float32]]:
        """All embeddings for a model as (ids, matrix) with rows in item id order."""
        _, emb = _TABLES[kind]
        stmt = select(emb.c.item_id, emb.c.embedding).where(emb.c.model == model).order_by(emb.c.item_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        excluded = set(exclude_ids)
        ids: list[ItemId] = []
        vecs: list[list[float]] = []
        dim: int | None = None
        for r in rows:
            if r.item_id in excluded:
                continue
            if dim is None:
                dim = len(r.embedding)
            elif len(r.embedding) != dim:
                continue
            ids.append(r.item_id)
            vecs.append(r.embedding)
        if not vecs:
            return [], np.zeros((0, 0), dtype=np.float32)
        return ids, np.asarray(vecs, dtype=np.float32)

    def upsert_many(self, kind: MediaKind, model: str, records: Sequence[EmbeddingRecord]) -> int:
        if not records:
            return 0
        _, emb = _TABLES[kind]
        now = utcnow()
        rows = [
            {
                "item_id": r.item_id,
                "model": model,
                "embedding": [float(x) for x in r.embedding],
                "canonical_text": r.canonical_text,
                "created_at": now,
            }
            for r in records
        ]
        with self.engine.begin() as conn:
            upsert(conn, emb, rows, conflict_cols=["item_id", "model"])
        return len(rows)

    # ---------- items still lacking an embedding ----------
    def _missing_join(self, kind: MediaKind, model: str):
        items, emb = _TABLES[kind]
        return items.outerjoin(emb, and_(emb.c.item_id == items.c.id, emb.c.model == model))

    def count_missing(self, kind: MediaKind, model: str) -> int:
        _, emb = _TABLES[kind]
        stmt = select(func.count()).select_from(self._missing_join(kind, model)).where(emb.c.id.is_(None))
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def missing_items(
        self, kind: MediaKind, model: str, *, limit: int, skip_ids: Collection[ItemId] = ()
    ) -> list[dict[str, Any]]:
        items, emb = _TABLES[kind]
        stmt = select(items).select_from(self._missing_join(kind, model)).where(emb.c.id.is_(None))
        if skip_ids:
            stmt = stmt.where(items.c.id.notin_(list(skip_ids)))
        stmt = stmt.order_by(items.c.id).limit(limit)
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(stmt)]
