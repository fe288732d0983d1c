"""ORM models. Importing this package registers every table on Base.metadata."""

from inventory_kernel.models.item import CostLayerModel, ItemModel, PriceTierModel
from inventory_kernel.models.transaction import (
    LineItemModel,
    PaymentModel,
    PurchaseDetailModel,
    SaleDetailModel,
    TransactionModel,
)
from inventory_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "ItemModel",
    "CostLayerModel",
    "PriceTierModel",
    "TransactionModel",
    "PurchaseDetailModel",
    "SaleDetailModel",
    "LineItemModel",
    "PaymentModel",
    "SequenceCounter",
]
