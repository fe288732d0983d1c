"""TransactionRepository -- purchase / sale records and lookup queries."""

from __future__ import annotations

from datetime import date

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.domain.types import (
    PaymentStatus,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.exceptions import (
    DuplicateExternalIdError,
    InventoryKernelError,
    TransactionNotFoundError,
)
from inventory_kernel.models.transaction import LineItemModel, TransactionModel
from inventory_kernel.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[TransactionModel]):
    model = TransactionModel
    entity_name = "Transaction"

    def find_by_external_id(self, external_id: str) -> TransactionModel | None:
        return self.session.execute(
            select(TransactionModel).where(TransactionModel.external_id == external_id)
        ).scalar_one_or_none()

    def find_by_party(
        self,
        counterparty_id: str,
        *,
        kind: TransactionKind | None = None,
        status: TransactionStatus | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> list[TransactionModel]:
        criteria = [TransactionModel.counterparty_id == counterparty_id]
        if kind is not None:
            criteria.append(TransactionModel.kind == kind.value)
        if status is not None:
            criteria.append(TransactionModel.status == status.value)
        if payment_status is not None:
            criteria.append(TransactionModel.payment_status == payment_status.value)
        return self.find_by_query(
            *criteria,
            order_by=(TransactionModel.transaction_date.desc(), TransactionModel.external_id),
        )

    def for_kind(
        self,
        kind: TransactionKind,
        start: date | None = None,
        end: date | None = None,
    ) -> list[TransactionModel]:
        """Transactions of one kind, optionally within [start, end]."""
        criteria = [TransactionModel.kind == kind.value]
        if start is not None:
            criteria.append(TransactionModel.transaction_date >= start)
        if end is not None:
            criteria.append(TransactionModel.transaction_date <= end)
        return self.find_by_query(
            *criteria,
            order_by=(TransactionModel.transaction_date, TransactionModel.external_id),
        )

    def references_item(self, item_id: UUID) -> bool:
        """True when any transaction line points at the item."""
        return bool(self.session.execute(
            select(exists().where(LineItemModel.item_id == item_id))
        ).scalar_one())

    def _integrity_error_for(
        self, record: TransactionModel | None, exc: IntegrityError,
    ) -> InventoryKernelError | None:
        if "external_id" not in str(exc.orig).lower():
            return None
        return DuplicateExternalIdError(record.external_id if record is not None else "")

    def _not_found(self, record_id) -> TransactionNotFoundError:
        return TransactionNotFoundError(str(record_id))
