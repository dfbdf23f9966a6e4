"""crawlworker: worker core of a distributed website content crawler.

Public API::

    from crawlworker import run_worker
    exit_code = run_worker()
"""

from crawlworker.worker import CrawlWorker, RunSummary, run_worker

__all__ = ["CrawlWorker", "RunSummary", "run_worker"]
