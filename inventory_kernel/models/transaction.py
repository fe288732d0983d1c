"""
ORM models for purchase and sale transactions.

Contract:
    Purchases and sales share one core record (TransactionModel) tagged by
    ``kind``.  Kind-specific fields live in two side tables
    (PurchaseDetailModel, SaleDetailModel) rather than an inheritance
    hierarchy.  A transaction exclusively owns its lines and payments.
    Lines reference items by id only.

Architecture: inventory_kernel/models.  Imports from inventory_kernel.db only
    (plus domain types for DTO conversion).

Invariants enforced:
    - ``external_id`` is UNIQUE.
    - ``line_total = quantity * unit_price * (1 - discount_percent / 100)``
      (kept by the Transaction Engine on every line write).
    - ``0 <= received_or_fulfilled <= quantity``.
    - ``stock_applied`` is True exactly while some line has stock effects
      that have not been reversed.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.domain.types import (
    LineItemSnapshot,
    PaymentMethod,
    PaymentSnapshot,
    PaymentStatus,
    TransactionKind,
    TransactionSnapshot,
    TransactionStatus,
)


class TransactionModel(TrackedBase):
    """Shared core record for purchases and sales."""

    __tablename__ = "transactions"

    __table_args__ = (
        Index("ix_transactions_kind_status", "kind", "status"),
        Index("ix_transactions_counterparty", "counterparty_id"),
        Index("ix_transactions_date", "transaction_date"),
    )

    external_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    counterparty_id: Mapped[str] = mapped_column(String(100), nullable=False)
    counterparty_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.DRAFT.value,
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value,
    )

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), nullable=False, default=Decimal("0"),
    )
    tax_rate_percent: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), nullable=False, default=Decimal("0"),
    )
    shipping: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    stock_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lines: Mapped[list["LineItemModel"]] = relationship(
        "LineItemModel",
        back_populates="transaction",
        order_by="LineItemModel.position",
        cascade="all, delete-orphan",
    )
    payments: Mapped[list["PaymentModel"]] = relationship(
        "PaymentModel",
        back_populates="transaction",
        order_by="PaymentModel.payment_date",
        cascade="all, delete-orphan",
    )
    purchase_detail: Mapped[PurchaseDetailModel | None] = relationship(
        "PurchaseDetailModel",
        back_populates="transaction",
        uselist=False,
        cascade="all, delete-orphan",
    )
    sale_detail: Mapped[SaleDetailModel | None] = relationship(
        "SaleDetailModel",
        back_populates="transaction",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def kind_enum(self) -> TransactionKind:
        return TransactionKind(self.kind)

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    def to_dto(self) -> TransactionSnapshot:
        if self.kind == TransactionKind.PURCHASE.value and self.purchase_detail:
            details = self.purchase_detail.as_dict()
        elif self.kind == TransactionKind.SALE.value and self.sale_detail:
            details = self.sale_detail.as_dict()
        else:
            details = {}
        return TransactionSnapshot(
            transaction_id=self.id,
            external_id=self.external_id,
            kind=TransactionKind(self.kind),
            counterparty_id=self.counterparty_id,
            date=self.transaction_date,
            status=TransactionStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            subtotal=self.subtotal,
            discount_percent=self.discount_percent,
            tax_rate_percent=self.tax_rate_percent,
            shipping=self.shipping,
            total=self.total,
            amount_paid=self.amount_paid,
            lines=tuple(line.to_dto() for line in self.lines),
            payments=tuple(p.to_dto() for p in self.payments),
            counterparty_name=self.counterparty_name,
            notes=self.notes,
            payment_due_date=self.payment_due_date,
            payment_date=self.payment_date,
            stock_applied=self.stock_applied,
            details=details,
        )


class PurchaseDetailModel(TrackedBase):
    """Purchase-only fields."""

    __tablename__ = "purchase_details"

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    supplier_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    transaction: Mapped[TransactionModel] = relationship(
        "TransactionModel", back_populates="purchase_detail",
    )

    def as_dict(self) -> dict:
        return {
            "supplier_reference": self.supplier_reference,
            "expected_delivery_date": self.expected_delivery_date,
            "received_date": self.received_date,
        }


class SaleDetailModel(TrackedBase):
    """Sale-only fields."""

    __tablename__ = "sale_details"

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipped_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    transaction: Mapped[TransactionModel] = relationship(
        "TransactionModel", back_populates="sale_detail",
    )

    def as_dict(self) -> dict:
        return {
            "shipping_address": self.shipping_address,
            "shipped_date": self.shipped_date,
        }


class LineItemModel(TrackedBase):
    """One line of a transaction."""

    __tablename__ = "line_items"

    __table_args__ = (
        Index("ix_line_items_transaction", "transaction_id"),
        Index("ix_line_items_item", "item_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    # Weak reference: no FK, items outlive and do not know their transactions
    item_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), nullable=False, default=Decimal("0"),
    )
    received_or_fulfilled: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    # Cumulative cost of the stock this line moved (COGS for sales)
    line_cogs: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    transaction: Mapped[TransactionModel] = relationship(
        "TransactionModel", back_populates="lines",
    )

    def to_dto(self) -> LineItemSnapshot:
        return LineItemSnapshot(
            line_id=self.id,
            position=self.position,
            item_id=self.item_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            discount_percent=self.discount_percent,
            received_or_fulfilled=self.received_or_fulfilled,
            line_cogs=self.line_cogs,
            line_total=self.line_total,
        )


class PaymentModel(TrackedBase):
    """A payment recorded against a transaction."""

    __tablename__ = "payments"

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    transaction: Mapped[TransactionModel] = relationship(
        "TransactionModel", back_populates="payments",
    )

    def to_dto(self) -> PaymentSnapshot:
        return PaymentSnapshot(
            payment_id=self.id,
            amount=self.amount,
            method=PaymentMethod(self.method),
            date=self.payment_date,
            reference=self.reference,
        )
