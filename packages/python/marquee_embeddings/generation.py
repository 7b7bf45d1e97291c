from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import anyio
from anyio import to_thread

from marquee_core.context import PipelineContext
from marquee_core.errors import ConfigurationError, ProviderError, QuotaExceeded, RateLimited
from marquee_core.types import MediaKind
from marquee_embeddings.embedding_store import EmbeddingRecord, SqlEmbeddingStore
from marquee_embeddings.text_formatting import format_embedding_text
from marquee_logging.job_progress import JobProgress

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class EmbeddingJobResult:
    kind: MediaKind
    model: str
    generated: int = 0
    failed: int = 0
    batches: int = 0
    aborted: str | None = None  # quota | cancelled
    failures: list[dict[str, Any]] = field(default_factory=list)


async def generate_missing_embeddings(
    ctx: PipelineContext,
    kind: MediaKind,
    *,
    job: JobProgress | None = None,
    sleep: Sleep = anyio.sleep,
) -> EmbeddingJobResult:
    """
    Embed every catalog item of `kind` that has no embedding for the active model.

    Items are processed in job batches; a rate-limited batch is retried after
    the configured backoff, quota exhaustion stops the job (already stored
    batches stay), and cancellation is honoured between batches.
    """
    if ctx.embedder is None:
        raise ConfigurationError("no embedding provider configured (OPENAI_API_KEY missing)")

    settings = ctx.settings
    model = ctx.embedder.model_id
    store = SqlEmbeddingStore(ctx.engine)
    result = EmbeddingJobResult(kind=kind, model=model)

    total = await to_thread.run_sync(store.count_missing, kind, model)
    if job:
        job.set_step(1, f"embed {kind.value}s", total=total)
    log.info("embedding %d %s items with %s", total, kind.value, model)

    failed_ids: set[str] = set()
    done = 0
    while True:
        if job and job.cancel_requested:
            result.aborted = "cancelled"
            log.info("embedding job cancelled after %d batches", result.batches)
            break

        batch = await to_thread.run_sync(
            lambda: store.missing_items(kind, model, limit=settings.embedding_job_batch_size, skip_ids=failed_ids)
        )
        if not batch:
            break

        texts = [format_embedding_text(kind, row) for row in batch]
        vectors: list[list[float]] | None = None
        attempts = 0
        while vectors is None:
            try:
                vectors = await ctx.embedder.embed(texts)
            except RateLimited as e:
                attempts += 1
                if attempts > settings.rate_limit_max_retries:
                    _mark_failed(result, batch, failed_ids, f"rate limited after {attempts} attempts")
                    break
                wait = e.retry_after or settings.rate_limit_backoff_s
                log.warning("rate limited on batch %d, retrying in %.0fs (attempt %d)", result.batches + 1, wait, attempts)
                await sleep(wait)
            except QuotaExceeded as e:
                result.aborted = "quota"
                log.error("embedding quota exhausted, stopping: %s", e)
                break
            except ProviderError as e:
                _mark_failed(result, batch, failed_ids, str(e))
                break

        if result.aborted:
            break
        result.batches += 1
        if vectors is None:
            continue

        records = [
            EmbeddingRecord(item_id=row["id"], embedding=vec, canonical_text=text)
            for row, vec, text in zip(batch, vectors, texts)
        ]
        stored = await to_thread.run_sync(store.upsert_many, kind, model, records)
        result.generated += stored
        done += len(batch)
        if job:
            job.update(done, message=f"embedded {result.generated}/{total} {kind.value}s")

    if job:
        job.add_log("info", f"{kind.value} embeddings: {result.generated} generated, {result.failed} failed")
    return result


def _mark_failed(result: EmbeddingJobResult, batch: list[dict[str, Any]], failed_ids: set[str], error: str) -> None:
    log.warning("embedding batch of %d failed: %s", len(batch), error)
    for row in batch:
        failed_ids.add(row["id"])
        result.failures.append({"id": row["id"], "title": row.get("title"), "error": error})
    result.failed += len(batch)
