from __future__ import annotations

import uuid
from typing import Any, Sequence

from anyio import to_thread
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from marquee_core.types import MediaKind
from marquee_ranking.types import Candidate
from marquee_store.db import utcnow
from marquee_store.tables import recommendation_candidates as t_cands
from marquee_store.tables import recommendation_runs as t_runs

CANDIDATE_INSERT_BATCH = 500


class SqlRunStore:
    """
    One header row per recommendation run plus one row per scored candidate.

    - recommendation_runs: status, counts, duration, config snapshot
    - recommendation_candidates: score parts, rank, selection flag and rank
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- Async facade ----------
    async def start_run(self, user_id: str, kind: MediaKind, config: dict[str, Any]) -> str:
        return await to_thread.run_sync(self._start_run_sync, user_id, kind, config)

    async def store_candidates(self, run_id: str, ranked: Sequence[Candidate]) -> int:
        return await to_thread.run_sync(self._store_candidates_sync, run_id, ranked)

    async def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        candidates_count: int = 0,
        selected_count: int = 0,
        duration_ms: int | None = None,
        error: str | None = None,
    ) -> None:
        await to_thread.run_sync(
            lambda: self._finish_run_sync(run_id, status, candidates_count, selected_count, duration_ms, error)
        )

    async def latest_selection(self, user_id: str, kind: MediaKind) -> list[dict[str, Any]]:
        return await to_thread.run_sync(self._latest_selection_sync, user_id, kind)

    # ---------- Private sync impls ----------
    def _start_run_sync(self, user_id: str, kind: MediaKind, config: dict[str, Any]) -> str:
        run_id = uuid.uuid4().hex
        with self.engine.begin() as conn:
            conn.execute(
                insert(t_runs).values(
                    id=run_id,
                    user_id=user_id,
                    media_type=kind.value,
                    status="running",
                    config=config,
                    created_at=utcnow(),
                )
            )
        return run_id

    def _store_candidates_sync(self, run_id: str, ranked: Sequence[Candidate]) -> int:
        rows = [
            {
                "run_id": run_id,
                "item_id": c.id,
                "rank": rank,
                "is_selected": c.selected_rank is not None,
                "selected_rank": c.selected_rank,
                "similarity": c.similarity,
                "novelty": c.novelty,
                "rating_score": c.rating_score,
                "diversity_boost": c.diversity_boost,
                "base_score": c.base_score,
                "final_score": c.final_score,
            }
            for rank, c in enumerate(ranked, start=1)
        ]
        with self.engine.begin() as conn:
            for start in range(0, len(rows), CANDIDATE_INSERT_BATCH):
                conn.execute(insert(t_cands), rows[start : start + CANDIDATE_INSERT_BATCH])
        return len(rows)

    def _finish_run_sync(
        self,
        run_id: str,
        status: str,
        candidates_count: int,
        selected_count: int,
        duration_ms: int | None,
        error: str | None,
    ) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(t_runs)
                .where(t_runs.c.id == run_id)
                .values(
                    status=status,
                    candidates_count=candidates_count,
                    selected_count=selected_count,
                    duration_ms=duration_ms,
                    error=error,
                    finished_at=utcnow(),
                )
            )

    def _latest_selection_sync(self, user_id: str, kind: MediaKind) -> list[dict[str, Any]]:
        latest = (
            select(t_runs.c.id)
            .where(t_runs.c.user_id == user_id, t_runs.c.media_type == kind.value, t_runs.c.status == "completed")
            .order_by(t_runs.c.created_at.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            run_id = conn.execute(latest).scalar()
            if run_id is None:
                return []
            stmt = (
                select(t_cands)
                .where(t_cands.c.run_id == run_id, t_cands.c.is_selected.is_(True))
                .order_by(t_cands.c.selected_rank)
            )
            return [dict(r) for r in conn.execute(stmt).mappings()]
