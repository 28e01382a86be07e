"""Application services."""

from mutespot.application.services.batch_executor import BatchExecutor
from mutespot.application.services.enforcement_service import EnforcementService
from mutespot.application.services.library_scanner import LibraryScanner
from mutespot.application.services.plan_generator import EnforcementPlanner
from mutespot.application.services.rollback_service import RollbackService

__all__ = [
    "BatchExecutor",
    "EnforcementPlanner",
    "EnforcementService",
    "LibraryScanner",
    "RollbackService",
]
