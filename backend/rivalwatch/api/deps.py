"""Process-wide service container for request handlers."""
from __future__ import annotations

from functools import lru_cache

from rivalwatch.services import Services, build_services
from rivalwatch.workers.batch import BatchScheduler
from rivalwatch.workers.workflows import dispatch_run


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(dispatch=dispatch_run)


def get_batch_scheduler() -> BatchScheduler:
    return BatchScheduler(get_services().competitors)
