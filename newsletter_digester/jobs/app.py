from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from newsletter_digester.ai.client import TextGenerationClient
from newsletter_digester.ai.summarizer import Summarizer
from newsletter_digester.config import Config
from newsletter_digester.extract.http_fetcher import HttpFetcher
from newsletter_digester.extract.llm import LlmExtractor
from newsletter_digester.extract.router import ExtractionRouter
from newsletter_digester.extract.rss import RssExtractor
from newsletter_digester.extract.rules import RuleExtractor
from newsletter_digester.jobs.pipeline import IngestionPipeline
from newsletter_digester.jobs.scheduler import Scheduler
from newsletter_digester.metrics.metrics import Metrics, write_status_json
from newsletter_digester.notify.webhook import NotificationDispatcher
from newsletter_digester.storage.db import (
    CONF_CLEANUP_CONTENT_DAYS,
    CONF_CLEANUP_DELETE_DAYS,
    CONF_RSS_RECENCY_DAYS,
    Storage,
)
from newsletter_digester.storage.types import SOURCE_HTML_LLM, SOURCE_HTML_RULES, SOURCE_RSS


logger = logging.getLogger(__name__)


STATUS_INTERVAL_SECONDS = 30


@dataclass
class AppContext:
    config: Config
    storage: Storage
    fetcher: HttpFetcher
    ai: TextGenerationClient
    router: ExtractionRouter
    dispatcher: NotificationDispatcher
    pipeline: IngestionPipeline
    scheduler: Scheduler
    cleanup_scheduler: Scheduler
    metrics: Metrics
    tasks: list[asyncio.Task] = field(default_factory=list)

    def write_status(self) -> None:
        data = {
            "running": self.pipeline.running,
            "schedule": self.scheduler.expression,
            "schedule_active": self.scheduler.active,
            "run": self.pipeline.status.to_dict(),
        }
        write_status_json(self.config.status_json_path, data)


async def run_cleanup(storage: Storage) -> None:
    content_days = await storage.get_config_int(CONF_CLEANUP_CONTENT_DAYS)
    delete_days = await storage.get_config_int(CONF_CLEANUP_DELETE_DAYS)
    await storage.cleanup(content_days, delete_days)


async def build_app_context(config: Config) -> AppContext:
    storage = Storage(config.sqlite_path)
    await storage.connect()

    metrics = Metrics()

    fetcher = HttpFetcher(timeout_seconds=config.http_timeout_seconds, user_agent=config.user_agent)
    ai = TextGenerationClient(
        storage,
        timeout_seconds=config.ai_timeout_seconds,
        observe_latency=metrics.ai_latency_seconds.observe,
    )

    recency_days = await storage.get_config_int(CONF_RSS_RECENCY_DAYS)
    router = ExtractionRouter(
        {
            SOURCE_RSS: RssExtractor(fetcher, recency_days=recency_days),
            SOURCE_HTML_RULES: RuleExtractor(fetcher),
            SOURCE_HTML_LLM: LlmExtractor(fetcher, storage, ai),
        }
    )

    # webhook calls share the fetcher's connection pool
    dispatcher = NotificationDispatcher(storage, fetcher.client)
    pipeline = IngestionPipeline(
        storage,
        router,
        Summarizer(storage, ai),
        dispatcher,
        metrics=metrics,
    )

    return AppContext(
        config=config,
        storage=storage,
        fetcher=fetcher,
        ai=ai,
        router=router,
        dispatcher=dispatcher,
        pipeline=pipeline,
        scheduler=Scheduler(pipeline.run_check, name="check", tz=config.schedule_timezone, store=storage),
        cleanup_scheduler=Scheduler(
            lambda: run_cleanup(storage), name="cleanup", tz=config.schedule_timezone
        ),
        metrics=metrics,
    )


async def start_background_jobs(ctx: AppContext) -> None:
    if ctx.config.metrics_enabled:
        ctx.metrics.start_server(ctx.config.metrics_bind, ctx.config.metrics_port)

    await ctx.scheduler.init_from_persisted_schedule()
    ctx.cleanup_scheduler.update_schedule(ctx.config.cleanup_schedule)

    async def status_job() -> None:
        while True:
            try:
                ctx.write_status()
            except Exception:
                logger.exception("status job failed")
            await asyncio.sleep(STATUS_INTERVAL_SECONDS)

    ctx.tasks = [asyncio.create_task(status_job(), name="status_job")]


async def stop_background_jobs(ctx: AppContext) -> None:
    await ctx.scheduler.stop()
    await ctx.cleanup_scheduler.stop()

    for t in ctx.tasks:
        t.cancel()
    await asyncio.gather(*ctx.tasks, return_exceptions=True)

    await ctx.scheduler.wait_for_runs()
    await ctx.cleanup_scheduler.wait_for_runs()

    try:
        ctx.write_status()
    except OSError:
        logger.exception("failed to write final status")


async def close_app_context(ctx: AppContext) -> None:
    await ctx.ai.aclose()
    await ctx.fetcher.aclose()
    await ctx.storage.close()
