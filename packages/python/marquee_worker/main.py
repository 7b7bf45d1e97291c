import logging
import threading
import time

import anyio
import schedule
from dotenv import find_dotenv, load_dotenv

from marquee_core.config import MarqueeSettings
from marquee_core.context import open_context
from marquee_core.errors import AlreadyRunning
from marquee_core.guard import UserRunGuard
from marquee_core.types import MediaKind
from marquee_embeddings.generation import generate_missing_embeddings
from marquee_logging.job_progress import JobRegistry
from marquee_logging.setup import configure_logging
from marquee_recommendation.pipeline import process_all_users_recommendations
from marquee_store.db import create_schema, get_engine
from marquee_watching.poller import ContinueWatchingPoller

log = logging.getLogger("marquee_worker")

jobs = JobRegistry()
guard = UserRunGuard()


async def _embeddings(settings: MarqueeSettings, engine) -> None:
    job = jobs.start("embeddings", total_steps=2)
    try:
        async with open_context(settings, engine=engine) as ctx:
            for kind in (MediaKind.MOVIE, MediaKind.SERIES):
                result = await generate_missing_embeddings(ctx, kind, job=job)
                if result.aborted:
                    break
        job.complete()
    except Exception as e:
        job.fail(str(e))
        raise


async def _recommendations(settings: MarqueeSettings, engine) -> None:
    job = jobs.start("recommendations")
    try:
        async with open_context(settings, engine=engine) as ctx:
            results = await process_all_users_recommendations(ctx, guard=guard, job=job)
        job.complete({"users": len(results), "failed": sum(1 for r in results if not r.ok)})
    except Exception as e:
        job.fail(str(e))
        raise


def run_job(fn, settings: MarqueeSettings, engine) -> None:
    try:
        anyio.run(fn, settings, engine)
    except AlreadyRunning as e:
        log.info("skipping: %s", e)
    except Exception:
        log.exception("job %s crashed", fn.__name__)


def start_poller(settings: MarqueeSettings, engine) -> threading.Thread:
    async def _run() -> None:
        async with open_context(settings, engine=engine) as ctx:
            await ContinueWatchingPoller(ctx, guard=guard).run()

    thread = threading.Thread(target=anyio.run, args=(_run,), name="continue-watching", daemon=True)
    thread.start()
    return thread


def main() -> None:
    load_dotenv(find_dotenv())
    settings = MarqueeSettings()
    configure_logging(settings.log_level)
    engine = get_engine(settings.database_url)
    create_schema(engine)

    log.info("[worker] %s starting...", settings.app_name)
    if settings.continue_watching_enabled:
        start_poller(settings, engine)

    schedule.every(settings.embeddings_interval_hours).hours.do(run_job, _embeddings, settings, engine)
    schedule.every(settings.recommendations_interval_hours).hours.do(run_job, _recommendations, settings, engine)
    schedule.run_all()
    while True:
        schedule.run_pending()
        time.sleep(1)


if __name__ == "__main__":
    main()
