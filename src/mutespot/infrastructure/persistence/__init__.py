"""Infrastructure persistence layer."""

from .database import Database
from .models import ActionBatchModel, ActionItemModel, Base
from .repositories import (
    ActionBatchRepository,
    ActionItemRepository,
    SqlAlchemyEnforcementStore,
)
from .retry import with_db_retry

__all__ = [
    "ActionBatchModel",
    "ActionBatchRepository",
    "ActionItemModel",
    "ActionItemRepository",
    "Base",
    "Database",
    "SqlAlchemyEnforcementStore",
    "with_db_retry",
]
