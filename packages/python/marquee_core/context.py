from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy.engine import Engine

from marquee_core.config import MarqueeSettings

if TYPE_CHECKING:
    from marquee_embeddings.provider import EmbeddingProvider
    from marquee_media.provider import MediaServerProvider


@dataclass
class PipelineContext:
    """Everything a job needs, passed explicitly instead of module singletons."""

    settings: MarqueeSettings
    engine: Engine
    media: MediaServerProvider
    embedder: EmbeddingProvider | None = None

    @property
    def model_id(self) -> str:
        if self.embedder is not None:
            return self.embedder.model_id
        return self.settings.embedding_model


@asynccontextmanager
async def open_context(
    settings: MarqueeSettings, *, engine: Engine | None = None
) -> AsyncIterator[PipelineContext]:
    """Build a context bound to the running event loop and close its clients on exit."""
    from marquee_embeddings.provider import OpenAIEmbeddingProvider
    from marquee_media.emby_client import EmbyCompatibleProvider
    from marquee_store.db import get_engine

    engine = engine or get_engine(settings.database_url)
    media = EmbyCompatibleProvider.from_settings(settings)
    embedder = None
    if settings.openai_api_key:
        embedder = OpenAIEmbeddingProvider(
            model=settings.embedding_model,
            api_key=settings.openai_api_key,
            max_batch=settings.embedding_batch_size,
        )
    try:
        yield PipelineContext(settings=settings, engine=engine, media=media, embedder=embedder)
    finally:
        await media.aclose()
        if embedder is not None:
            await embedder.aclose()
