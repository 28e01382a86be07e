"""Background workers."""

from mutespot.application.workers.enforcement_worker import EnforcementBatchWorker

__all__ = ["EnforcementBatchWorker"]
