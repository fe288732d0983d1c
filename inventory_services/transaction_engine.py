"""
inventory_services.transaction_engine -- Purchase / sale lifecycle and its stock effects.

Responsibility:
    Owns the transaction status machine (``TRANSACTION_WORKFLOW``) and drives
    Item Service side-effects from it: confirming a purchase receives stock,
    confirming a sale issues it, cancelling or returning undoes whatever was
    applied.  Also keeps header totals and payment status in step with the
    lines and payments.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Each public operation opens one Unit-of-Work; the Item Service is bound
    to that same Unit-of-Work so every item write of a transition joins the
    transition's store transaction.

Invariants enforced:
    - Atomicity: a transition either applies every line's stock effect and
      its status change, or nothing (first INSUFFICIENT_STOCK aborts all).
    - Only deltas are applied: a line never moves more stock than
      ``quantity - received_or_fulfilled``; reversals undo only what moved.
    - No self-transitions; terminal statuses have no way out.
    - Lock order: the transaction row first, then every item it touches in
      ascending id order.
    - A delete with stock applied runs exactly one reversal transition
      before the record goes.

Failure modes:
    Port operations never raise for domain failures.  Each returns a
    ``TransactionResult`` whose status and ``error_code`` name the failure
    (VALIDATION_FIELD, DUPLICATE_EXTERNAL_ID, INSUFFICIENT_STOCK,
    ILLEGAL_TRANSITION, NOT_FOUND, CONFLICT / DEADLOCK after retries,
    TIMEOUT).  Warnings (STOCK_ALREADY_CONSUMED) ride on success results.

Usage:
    engine = TransactionEngine(session_factory, clock=SystemClock())
    created = engine.create_transaction(
        TransactionKind.PURCHASE,
        TransactionSpec(counterparty_id="SUP-1", lines=(LineSpec(item_id, 10, 2),)),
    )
    engine.change_status(created.transaction.transaction_id, TransactionStatus.CONFIRMED)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_config.schema import InventoryCoreConfig
from inventory_engines.totals import LineAmounts, compute_totals, line_total, net_unit_cost, payment_status_for
from inventory_engines.valuation import CostingEngine
from inventory_kernel.db.types import quantize_for_store
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.types import (
    LayerSource,
    PaymentMethod,
    PaymentStatus,
    StockWarning,
    TransactionKind,
    TransactionSnapshot,
    TransactionStatus,
)
from inventory_kernel.domain.workflow import StockEffect, Transition
from inventory_kernel.exceptions import IllegalTransitionError, InventoryKernelError, ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.transaction import (
    LineItemModel,
    PaymentModel,
    PurchaseDetailModel,
    SaleDetailModel,
    TransactionModel,
)
from inventory_kernel.repositories.item_repository import ItemRepository
from inventory_kernel.repositories.transaction_repository import TransactionRepository
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.unit_of_work import UnitOfWork
from inventory_services.item_service import ItemService, to_decimal
from inventory_services.results import (
    DailyTotal,
    StatusGroup,
    TransactionResult,
    TransactionStats,
)
from inventory_services.workflows import EDITABLE_STATUSES, TRANSACTION_WORKFLOW

logger = get_logger("services.transaction")

T = TypeVar("T")

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERIODS = ("day", "week", "month", "year")

HEADER_FIELDS = frozenset(
    {
        "external_id",
        "counterparty_id",
        "counterparty_name",
        "date",
        "discount_percent",
        "tax_rate_percent",
        "shipping",
        "notes",
        "payment_due_date",
    }
)

DETAIL_FIELDS: dict[TransactionKind, frozenset[str]] = {
    TransactionKind.PURCHASE: frozenset(
        {"supplier_reference", "expected_delivery_date", "received_date"}
    ),
    TransactionKind.SALE: frozenset({"shipping_address", "shipped_date"}),
}

# Payment statuses set outside the amount-paid rule
_MANUAL_PAYMENT_STATUSES = frozenset({PaymentStatus.REFUNDED.value, PaymentStatus.VOIDED.value})


@dataclass(frozen=True)
class LineSpec:
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = ZERO


@dataclass(frozen=True)
class TransactionSpec:
    """Input for ``create_transaction``.  A blank ``external_id`` is generated."""

    counterparty_id: str
    lines: tuple[LineSpec, ...]
    date: date | None = None
    external_id: str | None = None
    counterparty_name: str | None = None
    discount_percent: Decimal = ZERO
    tax_rate_percent: Decimal = ZERO
    shipping: Decimal = ZERO
    notes: str | None = None
    payment_due_date: date | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _ValidLine:
    item_id: UUID
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal


def _parse_kind(value: TransactionKind | str) -> TransactionKind:
    try:
        return TransactionKind(value)
    except ValueError:
        raise ValidationError(
            "kind", f"must be one of {[k.value for k in TransactionKind]}", value,
        ) from None


def _parse_status(value: TransactionStatus | str) -> TransactionStatus:
    try:
        return TransactionStatus(value)
    except ValueError:
        raise ValidationError(
            "status", f"must be one of {[s.value for s in TransactionStatus]}", value,
        ) from None


def _parse_payment_status(value: PaymentStatus | str) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError(
            "payment_status", f"must be one of {[s.value for s in PaymentStatus]}", value,
        ) from None


def _period_start(day: date, group_by: str) -> date:
    if group_by == "week":
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if group_by == "month":
        return day.replace(day=1)
    if group_by == "year":
        return day.replace(month=1, day=1)
    return day


def _to_uuid(value: Any, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(field_name, "is not a valid id", value) from None


def _to_date(value: Any, field_name: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(field_name, "is not an ISO date", value) from None


def _percent(value: Any, field_name: str) -> Decimal:
    value = to_decimal(value, field_name)
    if value < 0 or value > HUNDRED:
        raise ValidationError(field_name, "must be within [0, 100]", value)
    return value


def _non_negative(value: Any, field_name: str) -> Decimal:
    value = to_decimal(value, field_name)
    if value < 0:
        raise ValidationError(field_name, "cannot be negative", value)
    return value


def validate_lines(lines: Iterable[LineSpec | Mapping[str, Any]]) -> list[_ValidLine]:
    """Check every line; field names in errors are ``lines[i].<field>``."""
    valid = []
    for index, line in enumerate(lines):
        if isinstance(line, Mapping):
            line = LineSpec(
                item_id=line.get("item_id"),
                quantity=line.get("quantity"),
                unit_price=line.get("unit_price"),
                discount_percent=line.get("discount_percent", ZERO),
            )
        prefix = f"lines[{index}]"
        quantity = to_decimal(line.quantity, f"{prefix}.quantity")
        if quantity <= 0:
            raise ValidationError(f"{prefix}.quantity", "must be positive", quantity)
        valid.append(
            _ValidLine(
                item_id=_to_uuid(line.item_id, f"{prefix}.item_id"),
                quantity=quantity,
                unit_price=_non_negative(line.unit_price, f"{prefix}.unit_price"),
                discount_percent=_percent(line.discount_percent, f"{prefix}.discount_percent"),
            )
        )
    if not valid:
        raise ValidationError("lines", "a transaction needs at least one line")
    return valid


class TransactionEngine:
    """
    Transaction Engine port.

    Contract:
        Mutating operations return ``TransactionResult``; queries return
        snapshots or report values.  Every mutating operation accepts
        ``deadline`` (absolute ``time.monotonic()`` seconds).

    Non-goals:
        - No tax engine: ``tax_rate_percent`` is a flat rate on the
          discounted subtotal.
        - No accrual postings; payments only move ``amount_paid``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: InventoryCoreConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        costing: CostingEngine | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or InventoryCoreConfig()
        self._sleep = sleep
        self._costing = costing or CostingEngine()

    # ------------------------------------------------------------------
    # Creation and edits
    # ------------------------------------------------------------------

    def create_transaction(
        self,
        kind: TransactionKind | str,
        spec: TransactionSpec,
        *,
        deadline: float | None = None,
    ) -> TransactionResult:
        """Validate and persist a DRAFT purchase or sale with computed totals."""

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            txn_kind = _parse_kind(kind)
            if not spec.counterparty_id or not str(spec.counterparty_id).strip():
                raise ValidationError("counterparty_id", "cannot be empty", spec.counterparty_id)
            lines = validate_lines(spec.lines)
            discount = _percent(spec.discount_percent, "discount_percent")
            tax_rate = _non_negative(spec.tax_rate_percent, "tax_rate_percent")
            shipping = _non_negative(spec.shipping, "shipping")
            details = self._validate_details(txn_kind, spec.details)

            item_repo = ItemRepository(uow.session)
            for index, line in enumerate(lines):
                if item_repo.find_by_id(line.item_id) is None:
                    raise ValidationError(f"lines[{index}].item_id", "unknown item", str(line.item_id))

            on = _to_date(spec.date, "date") or self._clock.now().date()
            external_id = (spec.external_id or "").strip() or SequenceService(
                uow.session, width=self._config.sequence_width,
            ).next_transaction_id(self._prefix_for(txn_kind), on)

            txn = TransactionModel(
                external_id=external_id,
                kind=txn_kind.value,
                counterparty_id=str(spec.counterparty_id).strip(),
                counterparty_name=spec.counterparty_name,
                transaction_date=on,
                status=TRANSACTION_WORKFLOW.initial_state,
                payment_status=PaymentStatus.UNPAID.value,
                discount_percent=discount,
                tax_rate_percent=tax_rate,
                shipping=shipping,
                amount_paid=ZERO,
                notes=spec.notes,
                payment_due_date=_to_date(spec.payment_due_date, "payment_due_date"),
                stock_applied=False,
            )
            txn.lines = self._build_lines(lines)
            if txn_kind == TransactionKind.PURCHASE:
                txn.purchase_detail = PurchaseDetailModel(**details)
            else:
                txn.sale_detail = SaleDetailModel(**details)
            self._recompute_totals(txn)
            TransactionRepository(uow.session).create(txn)

            logger.info(
                "transaction_created",
                extra={
                    "transaction_id": str(txn.id),
                    "external_id": txn.external_id,
                    "kind": txn.kind,
                    "line_count": len(txn.lines),
                    "total": str(txn.total),
                },
            )
            return TransactionResult.ok(txn.to_dto())

        return self._execute("create_transaction", work, deadline=deadline)

    def update_transaction(
        self,
        transaction_id: UUID,
        patch: Mapping[str, Any],
        *,
        deadline: float | None = None,
    ) -> TransactionResult:
        """
        Patch header fields, details and (while DRAFT / PENDING) lines.

        Totals and payment status are recomputed.  ``status`` is rejected:
        status moves only through ``change_status``.
        """

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            if "status" in patch:
                raise ValidationError("status", "use change_status to move a transaction", patch["status"])
            unknown = sorted(set(patch) - HEADER_FIELDS - {"lines", "details"})
            if unknown:
                raise ValidationError(unknown[0], "is not an editable transaction field", patch[unknown[0]])

            repo = TransactionRepository(uow.session)
            txn = repo.lock_by_ids([transaction_id])[0]
            kind = txn.kind_enum

            changes: dict[str, Any] = {}
            for name in sorted(set(patch) & HEADER_FIELDS):
                value = patch[name]
                if name == "external_id":
                    if not value or not str(value).strip():
                        raise ValidationError(name, "cannot be empty", value)
                    value = str(value).strip()
                elif name == "counterparty_id":
                    if not value or not str(value).strip():
                        raise ValidationError(name, "cannot be empty", value)
                    value = str(value).strip()
                elif name == "date":
                    value = _to_date(value, name)
                    if value is None:
                        raise ValidationError(name, "cannot be empty")
                    name = "transaction_date"
                elif name == "payment_due_date":
                    value = _to_date(value, name)
                elif name == "discount_percent":
                    value = _percent(value, name)
                elif name in ("tax_rate_percent", "shipping"):
                    value = _non_negative(value, name)
                changes[name] = value
            if changes:
                # Header writes flush through the duplicate-key translation
                repo.update(txn.id, changes)

            if "lines" in patch:
                if txn.status_enum not in EDITABLE_STATUSES:
                    raise ValidationError(
                        "lines", f"lines cannot change once a transaction is {txn.status}",
                    )
                lines = validate_lines(patch["lines"])
                item_repo = ItemRepository(uow.session)
                for index, line in enumerate(lines):
                    if item_repo.find_by_id(line.item_id) is None:
                        raise ValidationError(f"lines[{index}].item_id", "unknown item", str(line.item_id))
                txn.lines = self._build_lines(lines)

            if "details" in patch:
                details = self._validate_details(kind, patch["details"] or {})
                detail = txn.purchase_detail if kind == TransactionKind.PURCHASE else txn.sale_detail
                if detail is None:
                    detail_model = PurchaseDetailModel if kind == TransactionKind.PURCHASE else SaleDetailModel
                    detail = detail_model()
                    if kind == TransactionKind.PURCHASE:
                        txn.purchase_detail = detail
                    else:
                        txn.sale_detail = detail
                for name, value in details.items():
                    setattr(detail, name, value)

            self._recompute_totals(txn)
            self._refresh_payment_status(txn)
            repo.update(txn.id, {})

            logger.info(
                "transaction_updated",
                extra={
                    "transaction_id": str(txn.id),
                    "fields": sorted(patch),
                    "total": str(txn.total),
                },
            )
            return TransactionResult.ok(txn.to_dto())

        return self._execute(
            "update_transaction", work, deadline=deadline, transaction_ref=transaction_id,
        )

    # ------------------------------------------------------------------
    # Status machine
    # ------------------------------------------------------------------

    def change_status(
        self,
        transaction_id: UUID,
        new_status: TransactionStatus | str,
        *,
        apply_stock_effects: bool = True,
        line_progress: Mapping[UUID, Decimal] | None = None,
        deadline: float | None = None,
    ) -> TransactionResult:
        """
        Move a transaction to ``new_status`` and apply the transition's stock effect.

        ``line_progress`` maps line id to the cumulative received / fulfilled
        quantity and is only accepted on a transition to PARTIAL.  With
        ``apply_stock_effects=False`` only the status moves.
        """

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            target = _parse_status(new_status)
            if line_progress is not None and target != TransactionStatus.PARTIAL:
                raise ValidationError("line_progress", "only accepted on a transition to PARTIAL")
            if line_progress is not None and not apply_stock_effects:
                raise ValidationError("line_progress", "progress always moves stock")

            txn = TransactionRepository(uow.session).lock_by_ids([transaction_id])[0]
            transition = TRANSACTION_WORKFLOW.find_transition(txn.status, target.value)
            if transition is None:
                raise IllegalTransitionError(txn.status, target.value, str(txn.id))

            warnings = self._transition(
                uow, items, txn, transition,
                apply_stock_effects=apply_stock_effects,
                line_progress=line_progress,
            )
            return TransactionResult.ok(txn.to_dto(), warnings)

        return self._execute(
            "change_status", work, deadline=deadline, transaction_ref=transaction_id,
        )

    def record_progress(
        self,
        transaction_id: UUID,
        line_progress: Mapping[UUID, Decimal],
        *,
        deadline: float | None = None,
    ) -> TransactionResult:
        """Receive / fulfil more of a PARTIAL transaction without changing its status."""

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            txn = TransactionRepository(uow.session).lock_by_ids([transaction_id])[0]
            if txn.status != TransactionStatus.PARTIAL.value:
                raise IllegalTransitionError(
                    txn.status,
                    TransactionStatus.PARTIAL.value,
                    str(txn.id),
                    reason="progress is recorded only while PARTIAL",
                )
            deltas = self._progress_deltas(txn, line_progress)
            if not deltas:
                raise IllegalTransitionError(
                    txn.status, txn.status, str(txn.id), reason="no line progress recorded",
                )
            uow.lock_items(line.item_id for line in txn.lines)
            self._apply_deltas(items, txn, deltas)
            uow.session.flush()
            logger.info(
                "transaction_progress_recorded",
                extra={"transaction_id": str(txn.id), "line_count": len(deltas)},
            )
            return TransactionResult.ok(txn.to_dto())

        return self._execute(
            "record_progress", work, deadline=deadline, transaction_ref=transaction_id,
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        transaction_id: UUID,
        amount: Decimal,
        method: PaymentMethod | str,
        payment_date: date | None = None,
        *,
        reference: str | None = None,
        deadline: float | None = None,
    ) -> TransactionResult:
        """Append a payment and recompute ``amount_paid`` / ``payment_status``."""

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            value = to_decimal(amount, "amount")
            if value <= 0:
                raise ValidationError("amount", "must be positive", value)
            try:
                payment_method = PaymentMethod(method)
            except ValueError:
                raise ValidationError(
                    "method", f"must be one of {[m.value for m in PaymentMethod]}", method,
                ) from None
            paid_on = _to_date(payment_date, "payment_date") or self._clock.now().date()

            txn = TransactionRepository(uow.session).lock_by_ids([transaction_id])[0]
            txn.payments.append(
                PaymentModel(
                    amount=quantize_for_store(value),
                    method=payment_method.value,
                    payment_date=paid_on,
                    reference=reference,
                )
            )
            txn.amount_paid = quantize_for_store(txn.amount_paid + value)
            previous = txn.payment_status
            self._refresh_payment_status(txn)
            if txn.payment_status == PaymentStatus.PAID.value and previous != PaymentStatus.PAID.value:
                txn.payment_date = paid_on
            uow.session.flush()

            logger.info(
                "payment_recorded",
                extra={
                    "transaction_id": str(txn.id),
                    "amount": str(value),
                    "method": payment_method.value,
                    "amount_paid": str(txn.amount_paid),
                    "payment_status": txn.payment_status,
                },
            )
            return TransactionResult.ok(txn.to_dto())

        return self._execute(
            "record_payment", work, deadline=deadline, transaction_ref=transaction_id,
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_transaction(
        self,
        transaction_id: UUID,
        *,
        deadline: float | None = None,
    ) -> TransactionResult:
        """
        Remove a transaction.

        When stock is applied, one reversal transition (to CANCELLED, else
        RETURNED) runs first in the same Unit-of-Work.  A transaction with
        applied stock and no legal reversal is not deleted.
        """

        def work(uow: UnitOfWork, items: ItemService) -> TransactionResult:
            repo = TransactionRepository(uow.session)
            txn = repo.lock_by_ids([transaction_id])[0]
            warnings: tuple[StockWarning, ...] = ()
            if txn.stock_applied:
                reversal = self._reversal_from(txn.status)
                if reversal is None:
                    raise IllegalTransitionError(
                        txn.status,
                        "DELETED",
                        str(txn.id),
                        reason="no legal reversal for applied stock",
                    )
                warnings = self._transition(uow, items, txn, reversal)
            snapshot = txn.to_dto()
            repo.delete(txn.id)
            logger.info(
                "transaction_deleted",
                extra={
                    "transaction_id": str(snapshot.transaction_id),
                    "external_id": snapshot.external_id,
                    "status": snapshot.status.value,
                },
            )
            return TransactionResult.deleted(snapshot, warnings)

        return self._execute(
            "delete_transaction", work, deadline=deadline, transaction_ref=transaction_id,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: UUID) -> TransactionResult:
        return self._execute(
            "get_transaction",
            lambda uow, items: TransactionResult.ok(
                TransactionRepository(uow.session).get(transaction_id).to_dto()
            ),
            transaction_ref=transaction_id,
        )

    def find_by_external_id(self, external_id: str) -> TransactionSnapshot | None:
        def work(uow: UnitOfWork) -> TransactionSnapshot | None:
            txn = TransactionRepository(uow.session).find_by_external_id(external_id)
            return txn.to_dto() if txn is not None else None

        return self._query("find_by_external_id", work)

    def find_by_party(
        self,
        party_id: str,
        *,
        kind: TransactionKind | str | None = None,
        status: TransactionStatus | str | None = None,
        payment_status: PaymentStatus | str | None = None,
    ) -> tuple[TransactionSnapshot, ...]:
        """Transactions of one counterparty, newest first."""
        kind_filter = _parse_kind(kind) if kind is not None else None
        status_filter = _parse_status(status) if status is not None else None
        payment_filter = _parse_payment_status(payment_status) if payment_status is not None else None
        return self._query(
            "find_by_party",
            lambda uow: tuple(
                txn.to_dto()
                for txn in TransactionRepository(uow.session).find_by_party(
                    party_id,
                    kind=kind_filter,
                    status=status_filter,
                    payment_status=payment_filter,
                )
            ),
        )

    def group_by_status(self, kind: TransactionKind | str) -> dict[TransactionStatus, StatusGroup]:
        records = self._for_kind(_parse_kind(kind))
        return _group(records, lambda txn: TransactionStatus(txn.status))

    def group_by_payment_status(self, kind: TransactionKind | str) -> dict[PaymentStatus, StatusGroup]:
        records = self._for_kind(_parse_kind(kind))
        return _group(records, lambda txn: PaymentStatus(txn.payment_status))

    def transaction_stats(
        self,
        kind: TransactionKind | str,
        start: date | None = None,
        end: date | None = None,
    ) -> TransactionStats:
        """Count, totals and outstanding balance of one kind within [start, end]."""
        started = time.monotonic()
        records = self._for_kind(_parse_kind(kind), start, end)
        total = sum((txn.total for txn in records), ZERO)
        paid = sum((txn.amount_paid for txn in records), ZERO)
        outstanding = sum((max(txn.total - txn.amount_paid, ZERO) for txn in records), ZERO)
        stats = TransactionStats(
            count=len(records),
            total_amount=total,
            amount_paid=paid,
            outstanding=outstanding,
            by_status=_group(records, lambda txn: TransactionStatus(txn.status)),
            by_payment_status=_group(records, lambda txn: PaymentStatus(txn.payment_status)),
        )
        logger.info(
            "transaction_stats_computed",
            extra={
                "kind": str(kind),
                "count": stats.count,
                "total_amount": str(stats.total_amount),
                "average_value": str(stats.average_value),
                "duration_ms": round((time.monotonic() - started) * 1000, 3),
            },
        )
        return stats

    def totals_by_date(
        self,
        kind: TransactionKind | str,
        start: date | None = None,
        end: date | None = None,
        group_by: str = "day",
    ) -> tuple[DailyTotal, ...]:
        """Per-period count and summed total, oldest period first.

        ``group_by`` is one of day, week, month or year; weeks start on Sunday.
        """
        if group_by not in PERIODS:
            raise ValidationError("group_by", f"must be one of {list(PERIODS)}", group_by)
        by_day: dict[date, list[_Row]] = {}
        for txn in self._for_kind(_parse_kind(kind), start, end):
            by_day.setdefault(_period_start(txn.transaction_date, group_by), []).append(txn)
        return tuple(
            DailyTotal(
                day=day,
                count=len(rows),
                total=sum((row.total for row in rows), ZERO),
            )
            for day, rows in sorted(by_day.items())
        )

    # ------------------------------------------------------------------
    # Transition internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        uow: UnitOfWork,
        items: ItemService,
        txn: TransactionModel,
        transition: Transition,
        *,
        apply_stock_effects: bool = True,
        line_progress: Mapping[UUID, Decimal] | None = None,
    ) -> tuple[StockWarning, ...]:
        warnings: tuple[StockWarning, ...] = ()
        effect = transition.stock_effect if apply_stock_effects else StockEffect.NONE

        if transition.to_state == TransactionStatus.PARTIAL.value and apply_stock_effects:
            deltas = self._progress_deltas(txn, line_progress or {})
            if not deltas:
                raise IllegalTransitionError(
                    txn.status, transition.to_state, str(txn.id),
                    reason="no line progress recorded",
                )
            uow.lock_items(line.item_id for line in txn.lines)
            self._apply_deltas(items, txn, deltas)
        elif effect == StockEffect.APPLY:
            deltas = {
                line.id: line.quantity - line.received_or_fulfilled
                for line in txn.lines
                if line.quantity > line.received_or_fulfilled
            }
            uow.lock_items(line.item_id for line in txn.lines)
            self._apply_deltas(items, txn, deltas)
        elif effect == StockEffect.REVERSE and txn.stock_applied:
            uow.lock_items(line.item_id for line in txn.lines)
            warnings = self._reverse_lines(items, txn)

        from_status = txn.status
        txn.status = transition.to_state
        uow.session.flush()
        logger.info(
            "transaction_status_changed",
            extra={
                "transaction_id": str(txn.id),
                "kind": txn.kind,
                "from_status": from_status,
                "to_status": transition.to_state,
                "action": transition.action,
                "stock_effect": effect.value,
                "warning_count": len(warnings),
            },
        )
        return warnings

    @staticmethod
    def _progress_deltas(
        txn: TransactionModel, line_progress: Mapping[UUID, Decimal],
    ) -> dict[UUID, Decimal]:
        """Validate cumulative per-line progress and return the positive deltas."""
        lines = {line.id: line for line in txn.lines}
        deltas: dict[UUID, Decimal] = {}
        for raw_id, raw_qty in line_progress.items():
            line_id = _to_uuid(raw_id, "line_progress")
            line = lines.get(line_id)
            if line is None:
                raise ValidationError(f"line_progress[{line_id}]", "is not a line of this transaction")
            qty = to_decimal(raw_qty, f"line_progress[{line_id}]")
            if qty < line.received_or_fulfilled or qty > line.quantity:
                raise ValidationError(
                    f"line_progress[{line_id}]",
                    f"must be within [{line.received_or_fulfilled}, {line.quantity}]",
                    qty,
                )
            if qty > line.received_or_fulfilled:
                deltas[line_id] = qty - line.received_or_fulfilled
        return deltas

    def _apply_deltas(
        self, items: ItemService, txn: TransactionModel, deltas: Mapping[UUID, Decimal],
    ) -> None:
        """Move ``delta`` of stock per line: inflow for purchases, outflow for sales."""
        when = self._clock.now()
        for line in txn.lines:
            delta = deltas.get(line.id)
            if not delta:
                continue
            if txn.kind == TransactionKind.PURCHASE.value:
                cost = net_unit_cost(line.unit_price, line.discount_percent)
                items.add_inventory(
                    line.item_id, delta, cost, LayerSource.PURCHASE, when,
                    origin_line_id=line.id,
                )
                line.line_cogs = quantize_for_store(line.line_cogs + delta * cost)
            else:
                removal = items.remove_inventory(line.item_id, delta, "sale", when)
                line.line_cogs = quantize_for_store(line.line_cogs + removal.cogs)
            line.received_or_fulfilled = line.received_or_fulfilled + delta
        txn.stock_applied = True

    def _reverse_lines(self, items: ItemService, txn: TransactionModel) -> tuple[StockWarning, ...]:
        """Undo every line's applied stock; purchases may report consumed stock."""
        warnings: list[StockWarning] = []
        when = self._clock.now()
        for line in txn.lines:
            moved = line.received_or_fulfilled
            if moved <= 0:
                continue
            if txn.kind == TransactionKind.PURCHASE.value:
                reversal = items.reverse_inflow(
                    line.item_id,
                    moved,
                    unit_cost=net_unit_cost(line.unit_price, line.discount_percent),
                    origin_line_id=line.id,
                )
                warnings.extend(reversal.warnings)
            else:
                items.reverse_inventory(line.item_id, moved, line.line_cogs, when)
        txn.stock_applied = False
        return tuple(warnings)

    @staticmethod
    def _reversal_from(status: str) -> Transition | None:
        for target in (TransactionStatus.CANCELLED, TransactionStatus.RETURNED):
            transition = TRANSACTION_WORKFLOW.find_transition(status, target.value)
            if transition is not None and transition.stock_effect == StockEffect.REVERSE:
                return transition
        return None

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _build_lines(lines: Iterable[_ValidLine]) -> list[LineItemModel]:
        return [
            LineItemModel(
                position=position,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount_percent=line.discount_percent,
                received_or_fulfilled=ZERO,
                line_cogs=ZERO,
                line_total=quantize_for_store(
                    line_total(line.quantity, line.unit_price, line.discount_percent)
                ),
            )
            for position, line in enumerate(lines)
        ]

    @staticmethod
    def _recompute_totals(txn: TransactionModel) -> None:
        totals = compute_totals(
            [LineAmounts(line.quantity, line.unit_price, line.discount_percent) for line in txn.lines],
            txn.discount_percent,
            txn.tax_rate_percent,
            txn.shipping,
        )
        txn.subtotal = quantize_for_store(totals.subtotal)
        txn.total = quantize_for_store(totals.total)

    @staticmethod
    def _refresh_payment_status(txn: TransactionModel) -> None:
        if txn.payment_status not in _MANUAL_PAYMENT_STATUSES:
            txn.payment_status = payment_status_for(txn.amount_paid, txn.total).value

    @staticmethod
    def _validate_details(kind: TransactionKind, details: Mapping[str, Any]) -> dict[str, Any]:
        allowed = DETAIL_FIELDS[kind]
        unknown = sorted(set(details) - allowed)
        if unknown:
            raise ValidationError(
                f"details.{unknown[0]}", f"is not a {kind.value.lower()} field", details[unknown[0]],
            )
        return {
            name: _to_date(value, f"details.{name}") if name.endswith("_date") else value
            for name, value in details.items()
        }

    def _prefix_for(self, kind: TransactionKind) -> str:
        if kind == TransactionKind.PURCHASE:
            return self._config.purchase_prefix
        return self._config.sale_prefix

    # ------------------------------------------------------------------
    # Unit-of-Work plumbing
    # ------------------------------------------------------------------

    def _unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(
            self._session_factory, retry=self._config.retry_policy, sleep=self._sleep,
        )

    def _execute(
        self,
        operation: str,
        work: Callable[[UnitOfWork, ItemService], TransactionResult],
        *,
        deadline: float | None = None,
        transaction_ref: UUID | None = None,
    ) -> TransactionResult:
        """Run ``work`` in a fresh Unit-of-Work and fold kernel errors into the result."""
        started = time.monotonic()
        uow = self._unit_of_work()
        items = ItemService(uow, self._clock, self._config, self._costing)
        with LogContext.bind(transaction_id=transaction_ref):
            try:
                result = uow.run(
                    lambda scope: work(scope, items), operation=operation, deadline=deadline,
                )
            except InventoryKernelError as exc:
                result = TransactionResult.from_error(exc)
                logger.info(
                    "transaction_operation_failed",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "status": result.status.value,
                        "duration_ms": round((time.monotonic() - started) * 1000, 3),
                    },
                )
                return result
            logger.debug(
                "transaction_operation_completed",
                extra={
                    "operation": operation,
                    "status": result.status.value,
                    "warning_codes": list(result.warning_codes),
                    "duration_ms": round((time.monotonic() - started) * 1000, 3),
                },
            )
            return result

    def _query(self, operation: str, fn: Callable[[UnitOfWork], T]) -> T:
        return self._unit_of_work().run(fn, operation=operation)

    def _for_kind(
        self,
        kind: TransactionKind,
        start: date | None = None,
        end: date | None = None,
    ) -> list[_Row]:
        return self._query(
            "transactions_for_kind",
            lambda uow: [
                _Row(
                    status=txn.status,
                    payment_status=txn.payment_status,
                    transaction_date=txn.transaction_date,
                    total=txn.total,
                    amount_paid=txn.amount_paid,
                )
                for txn in TransactionRepository(uow.session).for_kind(kind, start, end)
            ],
        )


@dataclass(frozen=True)
class _Row:
    """Detached reporting columns of one transaction."""

    status: str
    payment_status: str
    transaction_date: date
    total: Decimal
    amount_paid: Decimal


def _group(rows: Iterable[_Row], key: Callable[[_Row], Any]) -> dict[Any, StatusGroup]:
    counts: dict[Any, int] = {}
    totals: dict[Any, Decimal] = {}
    for row in rows:
        group = key(row)
        counts[group] = counts.get(group, 0) + 1
        totals[group] = totals.get(group, ZERO) + row.total
    return {
        group: StatusGroup(count=counts[group], total_amount=totals[group])
        for group in sorted(counts, key=lambda g: g.value)
    }
