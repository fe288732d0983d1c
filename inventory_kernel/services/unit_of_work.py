"""
UnitOfWork -- scoped store transaction with commit-or-rollback on every exit.

Responsibility:
    Groups every Item and Transaction write of one logical operation into a
    single store transaction.  Owns the only ``session.commit()`` and
    ``session.rollback()`` calls in the core; repositories and services
    flush only.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Receives a
    session factory by constructor injection; never touches the
    process-wide engine.

Invariants enforced:
    - Atomicity: on any failure after ``begin`` the store transaction is
      rolled back exactly once and the session is closed.
    - Flat nesting: a nested ``begin`` joins the open scope.  The inner
      ``commit`` is a no-op; an inner failure marks the scope abort-only
      and the outermost ``commit`` then rolls back and raises
      ``UnitOfWorkAbortedError``.
    - Lock order: ``lock_items`` acquires item row locks in ascending id
      order, so two scopes touching overlapping item sets cannot deadlock.
    - Retry: ``run`` retries store contention (CONFLICT / DEADLOCK) with
      capped exponential backoff.  Every other error propagates on the
      first attempt.  No partial state survives a retried attempt because
      each attempt is its own store transaction.

Failure modes:
    - DeadlockError / ConflictError after the last attempt.
    - OperationTimeoutError when the caller's deadline passes before commit;
      the open scope is rolled back first.
    - UnitOfWorkError on commit/rollback without begin.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from inventory_kernel.exceptions import (
    ConcurrencyError,
    ConflictError,
    DeadlockError,
    InventoryKernelError,
    OperationTimeoutError,
    UnitOfWorkAbortedError,
    UnitOfWorkError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import ItemModel

logger = get_logger("services.unit_of_work")

T = TypeVar("T")

_DEADLOCK_MARKERS = ("deadlock",)
_CONFLICT_MARKERS = (
    "could not serialize",
    "serialization failure",
    "lock timeout",
    "could not obtain lock",
    "lock not available",
    "database is locked",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for store contention."""

    initial_delay_ms: int = 10
    backoff_factor: int = 2
    max_attempts: int = 5
    max_delay_ms: int = 1000

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        delay_ms = self.initial_delay_ms * (self.backoff_factor ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000.0


def translate_store_error(exc: BaseException) -> ConcurrencyError | None:
    """Map a driver-level contention error to CONFLICT / DEADLOCK, else None."""
    if not isinstance(exc, (OperationalError, DBAPIError)):
        return None
    text = str(getattr(exc, "orig", exc)).lower()
    if any(marker in text for marker in _DEADLOCK_MARKERS):
        return DeadlockError(f"Store reported a deadlock: {text}")
    if any(marker in text for marker in _CONFLICT_MARKERS):
        return ConflictError(f"Store reported a conflict: {text}")
    return None


class UnitOfWork:
    """
    Scoped handle to one store transaction.

    Contract:
        ``begin()`` / ``commit()`` / ``rollback()`` or ``with uow:``.
        ``run(fn)`` executes ``fn(uow)`` in a fresh scope with retry.

    Guarantees:
        - A session exists only between the outermost begin and its
          commit/rollback.
        - ``rollback`` on the outermost scope is idempotent: a scope that
          already rolled back is not rolled back twice.

    Non-goals:
        - Not thread-safe.  One Unit-of-Work per request / thread.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._retry = retry or RetryPolicy()
        self._sleep = sleep
        self._monotonic = monotonic
        self._session: Session | None = None
        self._depth = 0
        self._abort_only = False
        self._locked: set[UUID] = set()

    # ------------------------------------------------------------------
    # Scope management
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._depth > 0

    @property
    def session(self) -> Session:
        if self._session is None:
            raise UnitOfWorkError("Unit-of-Work is not active; call begin() first")
        return self._session

    def begin(self) -> UnitOfWork:
        if self._depth == 0:
            self._session = self._session_factory()
            self._abort_only = False
            logger.debug("uow_begin")
        self._depth += 1
        return self

    def commit(self) -> None:
        if self._depth == 0:
            raise UnitOfWorkError("commit() without begin()")
        if self._depth > 1:
            self._depth -= 1
            return

        if self._abort_only:
            self._rollback_outermost()
            raise UnitOfWorkAbortedError()

        session = self.session
        try:
            session.commit()
        except Exception as exc:
            self._rollback_outermost()
            translated = translate_store_error(exc)
            if translated is not None:
                raise translated from exc
            raise
        self._close()
        logger.debug("uow_committed")

    def rollback(self) -> None:
        if self._depth == 0:
            return
        if self._depth > 1:
            self._depth -= 1
            self._abort_only = True
            logger.debug("uow_marked_abort_only")
            return
        self._rollback_outermost()

    def _rollback_outermost(self) -> None:
        if self._session is not None:
            self._session.rollback()
            logger.debug("uow_rolled_back")
        self._close()

    def _close(self) -> None:
        if self._session is not None:
            self._session.close()
        self._session = None
        self._depth = 0
        self._abort_only = False
        self._locked.clear()

    def __enter__(self) -> UnitOfWork:
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    # ------------------------------------------------------------------
    # Retry driver
    # ------------------------------------------------------------------

    def run(
        self,
        fn: Callable[[UnitOfWork], T],
        *,
        operation: str = "unit_of_work",
        deadline: float | None = None,
    ) -> T:
        """
        Execute ``fn(self)`` in a scope, retrying store contention.

        When this Unit-of-Work is already active, ``fn`` simply joins the
        open scope and the outer caller owns retry and outcome.

        Args:
            fn: The work.  Receives this Unit-of-Work.
            operation: Name used in logs and timeout errors.
            deadline: Absolute ``time.monotonic()`` value after which no
                attempt may begin and no commit may be issued.
        """
        if self.is_active:
            with self:
                return fn(self)

        attempt = 0
        while True:
            attempt += 1
            self._check_deadline(deadline, operation, attempt - 1)
            started = self._monotonic()
            try:
                with self:
                    result = fn(self)
                    self._check_deadline(deadline, operation, attempt)
                return result
            except InventoryKernelError as exc:
                failure: InventoryKernelError = exc
                if not exc.retryable:
                    raise
            except (OperationalError, DBAPIError) as exc:
                translated = translate_store_error(exc)
                if translated is None:
                    raise
                failure = translated
                failure.__cause__ = exc

            failure.attempts = attempt
            if attempt >= self._retry.max_attempts:
                logger.error(
                    "uow_retry_exhausted",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error_code": failure.code,
                    },
                )
                raise failure

            delay = self._retry.delay_for(attempt)
            logger.warning(
                "uow_retry_scheduled",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "error_code": failure.code,
                    "delay_ms": round(delay * 1000, 3),
                    "duration_ms": round((self._monotonic() - started) * 1000, 3),
                },
            )
            self._sleep(delay)

    def _check_deadline(self, deadline: float | None, operation: str, attempts: int) -> None:
        if deadline is not None and self._monotonic() >= deadline:
            logger.warning(
                "uow_deadline_exceeded",
                extra={"operation": operation, "attempts": attempts},
            )
            raise OperationTimeoutError(operation, attempts)

    # ------------------------------------------------------------------
    # Item locks
    # ------------------------------------------------------------------

    def lock_items(self, item_ids: Iterable[UUID]) -> list[UUID]:
        """
        Lock item rows in ascending id order for the rest of this scope.

        Rows already locked by this scope are skipped.

        Returns:
            The ids newly locked, in the order they were locked.
        """
        ordered = sorted(set(item_ids) - self._locked, key=str)
        for item_id in ordered:
            self._locked.add(item_id)
            self.session.execute(
                select(ItemModel.id)
                .where(ItemModel.id == item_id)
                .with_for_update()
            ).scalar_one_or_none()
            logger.debug("item_lock_acquired", extra={"item_id": str(item_id)})
        return ordered
