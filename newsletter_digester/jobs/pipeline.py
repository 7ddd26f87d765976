from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from newsletter_digester.ai.summarizer import Summarizer
from newsletter_digester.errors import NotConfiguredError
from newsletter_digester.extract.router import ExtractionRouter
from newsletter_digester.metrics.metrics import Metrics
from newsletter_digester.normalize import normalize_post
from newsletter_digester.notify.webhook import NotificationDispatcher
from newsletter_digester.storage.db import CONF_ENABLE_DIGEST, Storage
from newsletter_digester.storage.types import DigestItem, Inserted, PostCandidate, Source
from newsletter_digester.utils import now_utc


logger = logging.getLogger(__name__)


PHASE_IDLE = "idle"
PHASE_FETCHING = "fetching"
PHASE_SUMMARIZING = "summarizing"
PHASE_NOTIFYING = "notifying"
PHASE_COMPLETE = "complete"

# posts with shorter bodies are not worth a summary
MIN_SUMMARY_CONTENT_CHARS = 100


@dataclass
class PipelineRunStatus:
    phase: str = PHASE_IDLE
    sites_processed: int = 0
    sites_total: int = 0
    new_posts: int = 0
    summaries_processed: int = 0
    summaries_total: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class _RunQueues:
    to_summarize: list[DigestItem] = field(default_factory=list)
    to_notify: list[DigestItem] = field(default_factory=list)


class IngestionPipeline:
    def __init__(
        self,
        store: Storage,
        router: ExtractionRouter,
        summarizer: Summarizer,
        dispatcher: NotificationDispatcher,
        metrics: Metrics | None = None,
    ) -> None:
        self._store = store
        self._router = router
        self._summarizer = summarizer
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._running = False
        self._status = PipelineRunStatus()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def status(self) -> PipelineRunStatus:
        return self._status

    async def run_check(self) -> PipelineRunStatus | None:
        """Run fetch, summarize and notify once. Returns None if a run is already active."""
        if self._running:
            logger.warning("check already in progress, skipping")
            if self._metrics is not None:
                self._metrics.pipeline_runs_skipped_total.inc()
            return None

        self._running = True
        started = time.perf_counter()
        status = PipelineRunStatus(phase=PHASE_FETCHING, started_at=now_utc())
        self._status = status
        try:
            logger.info("starting scheduled check")
            queues = await self._fetch_phase(status)
            await self._summarize_phase(status, queues)
            await self._notify_phase(status, queues)
            status.phase = PHASE_COMPLETE
            logger.info(
                "check complete: %s/%s sites, %s new posts, %s summaries",
                status.sites_processed,
                status.sites_total,
                status.new_posts,
                status.summaries_processed,
            )
        except Exception as e:
            status.last_error = str(e)
            raise
        finally:
            status.finished_at = now_utc()
            if status.phase != PHASE_COMPLETE:
                status.phase = PHASE_IDLE
            self._running = False
            if self._metrics is not None:
                self._metrics.pipeline_runs_total.inc()
                self._metrics.pipeline_run_seconds.observe(time.perf_counter() - started)
        return status

    async def _fetch_phase(self, status: PipelineRunStatus) -> _RunQueues:
        queues = _RunQueues()
        sources = await self._store.get_active_sources()
        status.sites_total = len(sources)
        logger.info("found %s active sources", len(sources))

        for source in sources:
            try:
                await self._process_source(source, status, queues)
                await self._store.update_source(source.id, last_checked=now_utc().isoformat())
                if self._metrics is not None:
                    self._metrics.sources_checked_total.inc()
            except Exception as e:
                status.last_error = f"{source.title}: {e}"
                if self._metrics is not None:
                    self._metrics.source_failures_total.inc()
                logger.warning("error processing source id=%s url=%s: %s", source.id, source.url, e)
            finally:
                status.sites_processed += 1

        status.summaries_total = len(queues.to_summarize)
        return queues

    async def _process_source(self, source: Source, status: PipelineRunStatus, queues: _RunQueues) -> None:
        logger.info("checking source %s (%s)", source.title, source.type)
        posts = await self._router.extract(source)

        new_count = 0
        for raw in posts:
            post = normalize_post(raw)
            result = await self._store.create_post(
                PostCandidate(
                    source_id=source.id,
                    url=post.url,
                    title=post.title,
                    content=post.content,
                    date=post.date,
                )
            )
            if not isinstance(result, Inserted):
                if self._metrics is not None:
                    self._metrics.posts_duplicate_total.inc()
                continue

            new_count += 1
            status.new_posts += 1
            if self._metrics is not None:
                self._metrics.posts_created_total.inc()

            item = DigestItem(
                post_id=result.post.id,
                title=result.post.title,
                url=result.post.url,
                source_title=source.title,
                content=post.content or "",
            )
            queues.to_notify.append(item)
            if len(item.content) > MIN_SUMMARY_CONTENT_CHARS:
                queues.to_summarize.append(item)

        logger.info("source %s: %s extracted, %s new", source.title, len(posts), new_count)

    async def _summarize_phase(self, status: PipelineRunStatus, queues: _RunQueues) -> None:
        if not queues.to_summarize:
            return

        status.phase = PHASE_SUMMARIZING
        logger.info("summarizing %s posts", len(queues.to_summarize))

        for item in queues.to_summarize:
            try:
                summary = await self._summarizer.summarize(item.content)
            except NotConfiguredError as e:
                logger.warning("summaries skipped: %s", e)
                break
            except Exception as e:
                status.last_error = f"summary for post {item.post_id}: {e}"
                if self._metrics is not None:
                    self._metrics.summary_failures_total.inc()
                logger.warning("failed to summarize post %s: %s", item.post_id, e)
            else:
                await self._store.update_post(item.post_id, summary=summary)
                item.summary = summary
                if self._metrics is not None:
                    self._metrics.summaries_total.inc()
            finally:
                status.summaries_processed += 1

    async def _notify_phase(self, status: PipelineRunStatus, queues: _RunQueues) -> None:
        if not queues.to_notify:
            return

        enabled = (await self._store.get_config(CONF_ENABLE_DIGEST) or "").strip() == "1"
        if not enabled:
            logger.info("digest disabled, %s new posts not sent", len(queues.to_notify))
            return

        status.phase = PHASE_NOTIFYING
        try:
            sent = await self._dispatcher.notify(queues.to_notify)
        except Exception as e:
            status.last_error = f"digest: {e}"
            logger.error("failed to send digest: %s", e)
            return

        if not sent:
            return

        for item in queues.to_notify:
            await self._store.update_post(item.post_id, notified=True)
        if self._metrics is not None:
            self._metrics.digests_sent_total.inc()
        logger.info("digest sent with %s posts", len(queues.to_notify))
