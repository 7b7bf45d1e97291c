from __future__ import annotations

import logging
from typing import Sequence

import anyio
import httpx

from marquee_core.config import IMAGE_DOWNLOAD_BATCH

from .types import ImageTask

log = logging.getLogger(__name__)


async def _download_one(client: httpx.AsyncClient, task: ImageTask, results: list[bool]) -> None:
    try:
        response = await client.get(task.url)
        response.raise_for_status()
        await anyio.Path(task.dest).parent.mkdir(parents=True, exist_ok=True)
        await anyio.Path(task.dest).write_bytes(response.content)
        results.append(True)
    except (httpx.HTTPError, OSError) as e:
        log.warning("image download failed for %s: %s", task.dest.name, e)
        results.append(False)


async def download_images(
    tasks: Sequence[ImageTask],
    *,
    client: httpx.AsyncClient | None = None,
    batch_size: int = IMAGE_DOWNLOAD_BATCH,
) -> tuple[int, int]:
    """Download in bounded parallel batches; returns (downloaded, failed)."""
    if not tasks:
        return 0, 0
    owned = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0), follow_redirects=True)
    results: list[bool] = []
    try:
        for start in range(0, len(tasks), batch_size):
            async with anyio.create_task_group() as tg:
                for task in tasks[start : start + batch_size]:
                    tg.start_soon(_download_one, client, task, results)
    finally:
        if owned:
            await client.aclose()
    ok = sum(results)
    return ok, len(results) - ok
