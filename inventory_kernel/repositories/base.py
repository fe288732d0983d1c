"""
BaseRepository -- persistence-neutral record operations over one model.

Responsibility:
    The narrow surface the Item Service and Transaction Engine depend on:
    find by id, find by query, create, update, bulk create / update, delete,
    and ordered row locks.  Everything is flushed inside the caller's
    Unit-of-Work; nothing here commits.

Architecture position:
    Kernel > Repositories.  May import db/, models/, exceptions.  MUST NOT
    import from engines or outer services.

Invariants enforced:
    - Flush-only: ``session.commit()`` is never called here.
    - Unique-key conflicts surface at flush time as typed duplicate errors
      (``_integrity_error_for`` hook), never as raw IntegrityError.
    - ``find_*`` returns None / empty for absence; ``get`` raises NOT_FOUND.
    - No method observes uncommitted writes of another Unit-of-Work.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import ColumnElement, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.exceptions import InventoryKernelError, NotFoundError
from inventory_kernel.logging_config import get_logger

logger = get_logger("repositories")

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository for one ORM model.

    Subclasses set ``model`` and may override ``_integrity_error_for`` to
    translate unique-constraint violations into domain errors.
    """

    model: type[ModelType]
    entity_name: str = "Record"

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, record_id: UUID) -> ModelType | None:
        return self.session.get(self.model, record_id)

    def get(self, record_id: UUID) -> ModelType:
        record = self.find_by_id(record_id)
        if record is None:
            raise self._not_found(record_id)
        return record

    def find_by_query(
        self,
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        limit: int | None = None,
    ) -> list[ModelType]:
        stmt = select(self.model).where(*criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, record: ModelType) -> ModelType:
        self.session.add(record)
        self._flush(record)
        logger.debug(
            "record_created",
            extra={"entity": self.entity_name, "record_id": str(record.id)},
        )
        return record

    def bulk_create(self, records: Iterable[ModelType]) -> list[ModelType]:
        records = list(records)
        self.session.add_all(records)
        self._flush(records[0] if len(records) == 1 else None)
        logger.debug(
            "records_created",
            extra={"entity": self.entity_name, "count": len(records)},
        )
        return records

    def update(self, record_id: UUID, patch: Mapping[str, Any]) -> ModelType:
        record = self.get(record_id)
        self._apply_patch(record, patch)
        self._flush(record)
        return record

    def bulk_update(self, patches: Mapping[UUID, Mapping[str, Any]]) -> list[ModelType]:
        """Apply patches in ascending id order, then flush once."""
        records = []
        for record_id in sorted(patches, key=str):
            record = self.get(record_id)
            self._apply_patch(record, patches[record_id])
            records.append(record)
        self._flush(None)
        return records

    def delete(self, record_id: UUID) -> None:
        record = self.get(record_id)
        self.session.delete(record)
        self.session.flush()
        logger.debug(
            "record_deleted",
            extra={"entity": self.entity_name, "record_id": str(record_id)},
        )

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def lock_by_ids(self, record_ids: Iterable[UUID]) -> list[ModelType]:
        """SELECT ... FOR UPDATE each row, in ascending id order."""
        locked = []
        for record_id in sorted(set(record_ids), key=str):
            record = self.session.execute(
                select(self.model)
                .where(self.model.id == record_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if record is None:
                raise self._not_found(record_id)
            locked.append(record)
        return locked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_patch(self, record: ModelType, patch: Mapping[str, Any]) -> None:
        for key, value in patch.items():
            if key == "id" or not hasattr(self.model, key):
                raise AttributeError(f"{self.entity_name} has no field '{key}'")
            setattr(record, key, value)

    def _flush(self, record: ModelType | None) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            translated = self._integrity_error_for(record, exc)
            if translated is None:
                raise
            logger.info(
                "unique_constraint_violation",
                extra={"entity": self.entity_name, "error_code": translated.code},
            )
            raise translated from exc

    def _integrity_error_for(
        self, record: ModelType | None, exc: IntegrityError,
    ) -> InventoryKernelError | None:
        return None

    def _not_found(self, record_id: UUID) -> NotFoundError:
        return NotFoundError(self.entity_name, str(record_id))
