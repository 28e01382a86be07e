"""Repository implementations for enforcement batches and items."""

import logging
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mutespot.domain.entities import (
    ActionBatch,
    ActionBatchStatus,
    ActionItem,
    ActionItemStatus,
    BatchSummary,
)
from mutespot.domain.exceptions import (
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationException,
)
from mutespot.domain.ports import (
    IActionBatchRepository,
    IActionItemRepository,
    IEnforcementStore,
)
from mutespot.infrastructure.persistence.database import Database
from mutespot.infrastructure.persistence.models import (
    ActionBatchModel,
    ActionItemModel,
    ensure_utc_aware,
)
from mutespot.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)


def _batch_to_entity(model: ActionBatchModel) -> ActionBatch:
    try:
        status = ActionBatchStatus(model.status)
    except ValueError as e:
        raise ValidationException(
            f"Invalid batch status '{model.status}' for batch {model.id}"
        ) from e
    return ActionBatch(
        id=model.id,
        user_id=model.user_id,
        provider=model.provider,
        idempotency_key=model.idempotency_key,
        dry_run=model.dry_run,
        status=status,
        options=dict(model.options or {}),
        summary=BatchSummary.from_dict(model.summary),
        created_at=ensure_utc_aware(model.created_at),
        completed_at=ensure_utc_aware(model.completed_at) if model.completed_at else None,
    )


def _item_to_entity(model: ActionItemModel) -> ActionItem:
    try:
        status = ActionItemStatus(model.status)
    except ValueError as e:
        raise ValidationException(
            f"Invalid action item status '{model.status}' for item {model.id}"
        ) from e
    return ActionItem(
        id=model.id,
        batch_id=model.batch_id,
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        action=model.action,
        idempotency_key=model.idempotency_key,
        before_state=model.before_state,
        after_state=model.after_state,
        status=status,
        error_message=model.error_message,
        error_code=model.error_code,
        retry_count=model.retry_count,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


class ActionBatchRepository(IActionBatchRepository):
    """SQLAlchemy implementation of ActionBatch repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    # Hey future me - we flush right away so a duplicate idempotency key surfaces HERE as
    # DuplicateEntityException instead of as a bare IntegrityError at commit time.
    async def add(self, batch: ActionBatch) -> None:
        """Add a new batch."""
        model = ActionBatchModel(
            id=batch.id,
            user_id=batch.user_id,
            provider=batch.provider,
            idempotency_key=batch.idempotency_key,
            dry_run=batch.dry_run,
            status=str(batch.status),
            options=batch.options,
            summary=batch.summary.to_dict(),
            created_at=batch.created_at,
            completed_at=batch.completed_at,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityException("ActionBatch", batch.idempotency_key) from e

    async def get_by_id(self, batch_id: str) -> ActionBatch | None:
        model = await self.session.get(ActionBatchModel, batch_id)
        return _batch_to_entity(model) if model else None

    async def get_by_idempotency_key(self, idempotency_key: str) -> ActionBatch | None:
        stmt = select(ActionBatchModel).where(
            ActionBatchModel.idempotency_key == idempotency_key
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _batch_to_entity(model) if model else None

    async def update(self, batch: ActionBatch) -> None:
        """Update status, options, summary and completion time."""
        model = await self.session.get(ActionBatchModel, batch.id)
        if not model:
            raise EntityNotFoundException("ActionBatch", batch.id)
        model.status = str(batch.status)
        model.options = batch.options
        model.summary = batch.summary.to_dict()
        model.completed_at = batch.completed_at

    async def list_unfinished(self, limit: int = 10) -> list[ActionBatch]:
        stmt = (
            select(ActionBatchModel)
            .where(
                ActionBatchModel.status.in_(
                    [ActionBatchStatus.PENDING, ActionBatchStatus.IN_PROGRESS]
                )
            )
            .order_by(ActionBatchModel.created_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_batch_to_entity(m) for m in result.scalars().all()]


class ActionItemRepository(IActionItemRepository):
    """SQLAlchemy implementation of ActionItem repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add_many(self, items: list[ActionItem]) -> None:
        for position, item in enumerate(items):
            self.session.add(
                ActionItemModel(
                    id=item.id,
                    batch_id=item.batch_id,
                    entity_type=item.entity_type,
                    entity_id=item.entity_id,
                    action=item.action,
                    idempotency_key=item.idempotency_key,
                    before_state=item.before_state,
                    after_state=item.after_state,
                    status=str(item.status),
                    error_message=item.error_message,
                    error_code=item.error_code,
                    retry_count=item.retry_count,
                    position=position,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
            )
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityException(
                "ActionItem", items[0].idempotency_key if items else "?"
            ) from e

    async def get_by_id(self, item_id: str) -> ActionItem | None:
        model = await self.session.get(ActionItemModel, item_id)
        return _item_to_entity(model) if model else None

    async def list_by_batch(self, batch_id: str) -> list[ActionItem]:
        stmt = (
            select(ActionItemModel)
            .where(ActionItemModel.batch_id == batch_id)
            .order_by(ActionItemModel.position)
        )
        result = await self.session.execute(stmt)
        return [_item_to_entity(m) for m in result.scalars().all()]

    async def update_many(self, items: Sequence[ActionItem]) -> None:
        if not items:
            return
        stmt = select(ActionItemModel).where(
            ActionItemModel.id.in_([item.id for item in items])
        )
        result = await self.session.execute(stmt)
        models = {m.id: m for m in result.scalars().all()}
        for item in items:
            model = models.get(item.id)
            if model is None:
                raise EntityNotFoundException("ActionItem", item.id)
            model.status = str(item.status)
            model.after_state = item.after_state
            model.error_message = item.error_message
            model.error_code = item.error_code
            model.retry_count = item.retry_count
            model.updated_at = item.updated_at

    async def count_by_status(self, batch_id: str) -> dict[ActionItemStatus, int]:
        stmt = (
            select(ActionItemModel.status, func.count())
            .where(ActionItemModel.batch_id == batch_id)
            .group_by(ActionItemModel.status)
        )
        result = await self.session.execute(stmt)
        counts = dict.fromkeys(ActionItemStatus, 0)
        for status, count in result.all():
            counts[ActionItemStatus(status)] = count
        return counts


class SqlAlchemyEnforcementStore(IEnforcementStore):
    """IEnforcementStore on top of the repositories, one committed session per call.

    Hey future me - writes are wrapped in with_db_retry because concurrent verb groups
    DO collide on SQLite's single writer lock. Each retry opens a fresh session_scope,
    which is exactly what the decorator needs.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    @with_db_retry(max_attempts=3)
    async def create_batch(self, batch: ActionBatch, items: list[ActionItem]) -> None:
        async with self._database.session_scope() as session:
            await ActionBatchRepository(session).add(batch)
            await ActionItemRepository(session).add_many(items)

    async def get_batch(self, batch_id: str) -> ActionBatch | None:
        async with self._database.session_scope() as session:
            return await ActionBatchRepository(session).get_by_id(batch_id)

    async def get_batch_by_idempotency_key(self, idempotency_key: str) -> ActionBatch | None:
        async with self._database.session_scope() as session:
            return await ActionBatchRepository(session).get_by_idempotency_key(
                idempotency_key
            )

    @with_db_retry(max_attempts=3)
    async def save_batch(self, batch: ActionBatch) -> None:
        async with self._database.session_scope() as session:
            await ActionBatchRepository(session).update(batch)

    async def list_items(self, batch_id: str) -> list[ActionItem]:
        async with self._database.session_scope() as session:
            return await ActionItemRepository(session).list_by_batch(batch_id)

    @with_db_retry(max_attempts=3)
    async def save_items(self, items: list[ActionItem]) -> None:
        async with self._database.session_scope() as session:
            await ActionItemRepository(session).update_many(items)

    async def count_items_by_status(self, batch_id: str) -> dict[ActionItemStatus, int]:
        async with self._database.session_scope() as session:
            return await ActionItemRepository(session).count_by_status(batch_id)

    async def list_unfinished_batches(self, limit: int = 10) -> list[ActionBatch]:
        async with self._database.session_scope() as session:
            return await ActionBatchRepository(session).list_unfinished(limit)
