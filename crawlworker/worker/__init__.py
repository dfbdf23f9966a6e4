"""Crawl loop orchestration."""

from crawlworker.worker.loop import CrawlWorker, RunSummary, WorkerState, run_worker

__all__ = ["CrawlWorker", "RunSummary", "WorkerState", "run_worker"]
