from __future__ import annotations

import logging
from typing import Protocol, Sequence

import openai
from openai import AsyncOpenAI

from marquee_core.config import MAX_TEXTS_PER_EMBEDDING_CALL
from marquee_core.errors import ConfigurationError, ProviderError, QuotaExceeded, RateLimited

log = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    model_id: str

    async def embed(self, texts: Sequence[str]) -> list[list[float]]: ...

    async def aclose(self) -> None: ...


def _is_quota_error(e: openai.APIStatusError) -> bool:
    code = getattr(e, "code", None)
    return code == "insufficient_quota" or "insufficient_quota" in str(e)


def _retry_after(e: openai.APIStatusError) -> float | None:
    raw = e.response.headers.get("retry-after") if e.response is not None else None
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


class OpenAIEmbeddingProvider:
    """
    Thin async wrapper over the OpenAI embeddings endpoint.

    - Splits input into calls of at most `max_batch` texts.
    - Output order matches input order.
    - Maps 429s to RateLimited / QuotaExceeded and other API failures to ProviderError.
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None,
        max_batch: int = MAX_TEXTS_PER_EMBEDDING_CALL,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ):
        if not api_key and client is None:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        self.model_id = model
        self.max_batch = max(1, min(max_batch, MAX_TEXTS_PER_EMBEDDING_CALL))
        # retries are driven by the embedding job's backoff, not the SDK
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        out: list[list[float]] = []
        for start in range(0, len(texts), self.max_batch):
            chunk = list(texts[start : start + self.max_batch])
            try:
                resp = await self._client.embeddings.create(model=self.model_id, input=chunk)
            except openai.RateLimitError as e:
                if _is_quota_error(e):
                    raise QuotaExceeded(str(e)) from e
                raise RateLimited(str(e), retry_after=_retry_after(e)) from e
            except openai.AuthenticationError as e:
                raise ConfigurationError(f"OpenAI rejected the API key: {e}") from e
            except (openai.APIStatusError, openai.APIConnectionError) as e:
                raise ProviderError(f"embedding request failed: {e}") from e

            data = sorted(resp.data, key=lambda d: d.index)
            if len(data) != len(chunk):
                raise ProviderError(f"expected {len(chunk)} embeddings, got {len(data)}")
            out.extend(list(d.embedding) for d in data)
            log.debug("embedded %d texts with %s", len(chunk), self.model_id)
        return out

    async def aclose(self) -> None:
        await self._client.close()
