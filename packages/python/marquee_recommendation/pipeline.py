from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

import numpy as np
from anyio import to_thread
from sqlalchemy import select
from sqlalchemy.engine import Engine

from marquee_core.config import MOVIE_RECS_LIBRARY, SERIES_RECS_LIBRARY
from marquee_core.context import PipelineContext
from marquee_core.guard import UserRunGuard
from marquee_core.types import MediaKind, UserRecord
from marquee_library.types import LibraryItem
from marquee_library.virtual_library import LibrarySpec, PublishResult, publish_library
from marquee_library.writer import WriterOptions
from marquee_logging.job_progress import JobProgress
from marquee_ranking.diversification import select_diverse
from marquee_ranking.scoring import score_candidates
from marquee_ranking.types import Candidate
from marquee_store.tables import episodes as t_episodes
from marquee_store.tables import movies as t_movies
from marquee_store.tables import series as t_series
from marquee_user.history.watch_history_repo import SqlWatchHistoryRepo
from marquee_user.settings.user_preferences_repo import SqlUserPreferencesRepo
from marquee_user.taste.taste_profile_service import TasteProfileService
from marquee_user.users_repo import SqlUserRepo

from .candidates import CandidateSource
from .config import RecommendationConfig
from .run_store import SqlRunStore

log = logging.getLogger(__name__)

JOB_NAME = "recommendations"
ALL_KINDS = (MediaKind.MOVIE, MediaKind.SERIES)


@dataclass
class RecommendationRun:
    run_id: str
    kind: MediaKind
    candidates_count: int
    selected: list[Candidate]
    skipped_duplicates: list[dict[str, Any]] = field(default_factory=list)
    had_profile: bool = False


@dataclass
class UserRunResult:
    user_id: str
    runs: dict[MediaKind, RecommendationRun] = field(default_factory=dict)
    published: dict[MediaKind, PublishResult] = field(default_factory=dict)
    kind_errors: dict[MediaKind, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def recommendations_spec(ctx: PipelineContext, kind: MediaKind) -> LibrarySpec:
    settings = ctx.settings
    writer = WriterOptions(layout="folder", write_nfo=True, download_images=settings.download_images)
    if kind is MediaKind.MOVIE:
        return LibrarySpec(MOVIE_RECS_LIBRARY, settings.recommendations_library_name, "picks-movies", "movies", writer)
    return LibrarySpec(SERIES_RECS_LIBRARY, settings.series_recommendations_library_name, "picks-series", "tvshows", writer)


async def generate_recommendations(
    ctx: PipelineContext,
    user: UserRecord,
    kind: MediaKind,
    *,
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> RecommendationRun:
    """
    profile -> candidates -> score -> diversity selection, recorded as a run.

    A user without a taste profile still gets a list, ranked on novelty and
    rating alone. The run is marked failed (and the error re-raised) if any
    step throws.
    """
    prefs = await SqlUserPreferencesRepo(ctx.engine).get(user.id)
    cfg = (config or RecommendationConfig()).for_kind(kind, prefs.recommendation_overrides.get(kind.value))
    runs = SqlRunStore(ctx.engine)
    run_id = await runs.start_run(user.id, kind, cfg.model_dump())
    t0 = time.perf_counter()

    try:
        profile = await TasteProfileService.from_context(ctx).get_profile(user.id, kind, now=now)
        vector = np.asarray(profile.embedding, dtype=np.float32) if profile and profile.embedding else None

        history = SqlWatchHistoryRepo(ctx.engine)
        watched = await history.watched_items(user.id, kind, limit=cfg.recent_watch_limit)
        exclude: set[str] = set()
        if not prefs.include_watched:
            exclude |= await history.watched_ids(user.id, kind)
        if prefs.dislike_behavior == "exclude":
            exclude |= await history.disliked_ids(user.id, kind)

        candidates = await CandidateSource(ctx.engine).retrieve(
            kind, model=ctx.model_id, profile=vector, exclude_ids=exclude, limit=cfg.max_candidates
        )
        ranked = score_candidates(candidates, watched, cfg.scoring())
        selection = select_diverse(
            ranked,
            target_count=cfg.selected_count,
            diversity_weight=cfg.diversity_weight,
            use_network=kind is MediaKind.SERIES,
        )
        await runs.store_candidates(run_id, ranked)
    except Exception as e:
        await runs.finish_run(
            run_id, status="failed", duration_ms=int((time.perf_counter() - t0) * 1000), error=str(e)
        )
        raise

    duration_ms = int((time.perf_counter() - t0) * 1000)
    await runs.finish_run(
        run_id,
        status="completed",
        candidates_count=len(ranked),
        selected_count=len(selection.selected),
        duration_ms=duration_ms,
    )
    log.info(
        "%s recs for %s: %d candidates, %d selected in %dms (profile=%s)",
        kind.value, user.label, len(ranked), len(selection.selected), duration_ms, vector is not None,
    )
    return RecommendationRun(
        run_id=run_id,
        kind=kind,
        candidates_count=len(ranked),
        selected=selection.selected,
        skipped_duplicates=selection.skipped_duplicates,
        had_profile=vector is not None,
    )


# ---------- library items ----------
def _load_rows(engine: Engine, kind: MediaKind, ids: Sequence[str]) -> tuple[dict[str, dict], dict[str, list[dict]]]:
    t = t_movies if kind is MediaKind.MOVIE else t_series
    with engine.connect() as conn:
        rows = {r["id"]: dict(r) for r in conn.execute(select(t).where(t.c.id.in_(list(ids)))).mappings()}
        episodes: dict[str, list[dict]] = {}
        if kind is MediaKind.SERIES and ids:
            stmt = (
                select(t_episodes)
                .where(t_episodes.c.series_id.in_(list(ids)))
                .order_by(t_episodes.c.season_number, t_episodes.c.episode_number)
            )
            for r in conn.execute(stmt).mappings():
                episodes.setdefault(r["series_id"], []).append(dict(r))
    return rows, episodes


def _source(ctx: PipelineContext, provider_item_id: str, path: str | None) -> str | None:
    if ctx.settings.use_streaming_url:
        return ctx.media.stream_url(provider_item_id)
    return path


async def build_recommendation_items(
    ctx: PipelineContext, kind: MediaKind, selected: Sequence[Candidate]
) -> list[LibraryItem]:
    ids = [c.id for c in selected]
    rows, episodes = await to_thread.run_sync(_load_rows, ctx.engine, kind, ids)
    items: list[LibraryItem] = []
    for c in selected:
        row = rows.get(c.id)
        if row is None:
            continue
        item = LibraryItem(
            provider_item_id=row["provider_item_id"],
            title=row["title"],
            kind="movie" if kind is MediaKind.MOVIE else "series",
            source=_source(ctx, row["provider_item_id"], row.get("path")),
            rank=c.selected_rank,
            year=row.get("year"),
            original_title=row.get("original_title"),
            overview=row.get("overview"),
            tagline=row.get("tagline"),
            genres=list(row.get("genres") or []),
            studios=list(row.get("studios") or []),
            community_rating=row.get("community_rating"),
            critic_rating=row.get("critic_rating"),
            content_rating=row.get("content_rating"),
            runtime_minutes=row.get("runtime_minutes"),
            imdb_id=row.get("imdb_id"),
            tmdb_id=row.get("tmdb_id"),
            network=row.get("network"),
            status=row.get("status"),
            poster_url=row.get("poster_url"),
            backdrop_url=row.get("backdrop_url"),
        )
        for ep in episodes.get(c.id, []):
            item.episodes.append(
                LibraryItem(
                    provider_item_id=ep["provider_item_id"],
                    title=ep.get("title") or "",
                    kind="episode",
                    source=_source(ctx, ep["provider_item_id"], ep.get("path")),
                    series_name=row["title"],
                    season_number=ep.get("season_number"),
                    episode_number=ep.get("episode_number"),
                )
            )
        items.append(item)
    return items


# ---------- per user / all users ----------
async def process_user_recommendations(
    ctx: PipelineContext,
    user: UserRecord,
    *,
    guard: UserRunGuard,
    kinds: Sequence[MediaKind] = ALL_KINDS,
    config: RecommendationConfig | None = None,
    now: datetime | None = None,
) -> UserRunResult:
    """
    Generate and publish recommendations for one user; rejects a concurrent run.

    Each media kind runs on its own: a failed movie run is recorded in
    `kind_errors` and the series run still goes ahead.
    """
    with guard.hold((JOB_NAME, user.id)):
        result = UserRunResult(user_id=user.id)
        for kind in kinds:
            try:
                run = await generate_recommendations(ctx, user, kind, config=config, now=now)
                result.runs[kind] = run
                items = await build_recommendation_items(ctx, kind, run.selected)
                result.published[kind] = await publish_library(
                    ctx, user, recommendations_spec(ctx, kind), items, now=now
                )
            except Exception as e:
                log.exception("%s recommendations failed for %s", kind.value, user.label)
                result.kind_errors[kind] = str(e)
        if result.kind_errors:
            result.error = "; ".join(f"{k.value}: {msg}" for k, msg in result.kind_errors.items())
        return result


async def process_all_users_recommendations(
    ctx: PipelineContext,
    *,
    guard: UserRunGuard,
    kinds: Sequence[MediaKind] = ALL_KINDS,
    config: RecommendationConfig | None = None,
    job: JobProgress | None = None,
) -> list[UserRunResult]:
    """Sweep every enabled user; one user's failure is reported, not fatal."""
    users = await SqlUserRepo(ctx.engine).list_enabled()
    if job:
        job.set_step(1, "recommendations", total=len(users))
    results: list[UserRunResult] = []
    for idx, user in enumerate(users, start=1):
        if job and job.cancel_requested:
            job.add_log("warning", f"cancelled after {idx - 1}/{len(users)} users")
            break
        try:
            results.append(
                await process_user_recommendations(ctx, user, guard=guard, kinds=kinds, config=config)
            )
        except Exception as e:
            log.exception("recommendations failed for %s", user.label)
            results.append(UserRunResult(user_id=user.id, error=str(e)))
        if job:
            job.update(idx, message=f"{user.label}: {'ok' if results[-1].ok else results[-1].error}")
    return results
