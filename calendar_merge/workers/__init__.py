"""Background workers backed by the task queue."""

from calendar_merge.workers.summary import SummaryWorker

__all__ = ["SummaryWorker"]
