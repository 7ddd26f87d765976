from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        r = self.registry

        self.sources_checked_total = Counter("sources_checked_total", "Sources checked", registry=r)
        self.source_failures_total = Counter("source_failures_total", "Source extraction failures", registry=r)
        self.posts_created_total = Counter("posts_created_total", "New posts persisted", registry=r)
        self.posts_duplicate_total = Counter("posts_duplicate_total", "Posts skipped as duplicates", registry=r)

        self.summaries_total = Counter("summaries_total", "Summaries generated", registry=r)
        self.summary_failures_total = Counter("summary_failures_total", "Summary failures", registry=r)
        self.ai_latency_seconds = Histogram(
            "ai_latency_seconds",
            "AI latency",
            buckets=(0.5, 1, 2, 5, 10, 20, 60, 120, 240),
            registry=r,
        )

        self.digests_sent_total = Counter("digests_sent_total", "Digests sent", registry=r)

        self.pipeline_runs_total = Counter("pipeline_runs_total", "Pipeline runs", registry=r)
        self.pipeline_runs_skipped_total = Counter(
            "pipeline_runs_skipped_total", "Pipeline runs skipped while another was active", registry=r
        )
        self.pipeline_run_seconds = Histogram(
            "pipeline_run_seconds",
            "Pipeline run duration",
            buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
            registry=r,
        )

    def start_server(self, bind: str, port: int) -> None:
        start_http_server(port, addr=bind, registry=self.registry)
        logger.info("metrics server started at %s:%s", bind, port)


def write_status_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    tmp.replace(path)
