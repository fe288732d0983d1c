"""
Transaction Workflows.

The status state machine shared by purchases and sales.
"""

from inventory_kernel.domain.types import TransactionStatus
from inventory_kernel.domain.workflow import Guard, StockEffect, Transition, Workflow
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.workflows")

DRAFT = TransactionStatus.DRAFT.value
PENDING = TransactionStatus.PENDING.value
CONFIRMED = TransactionStatus.CONFIRMED.value
PARTIAL = TransactionStatus.PARTIAL.value
COMPLETED = TransactionStatus.COMPLETED.value
CANCELLED = TransactionStatus.CANCELLED.value
RETURNED = TransactionStatus.RETURNED.value


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

STOCK_AVAILABLE = Guard(
    name="stock_available",
    description="Every sale line can be fulfilled from stock on hand",
)

PROGRESS_RECORDED = Guard(
    name="progress_recorded",
    description="At least one line has a received / fulfilled quantity",
)


# -----------------------------------------------------------------------------
# Transaction Workflow
# -----------------------------------------------------------------------------

TRANSACTION_WORKFLOW = Workflow(
    name="transaction",
    description="Purchase and sale lifecycle",
    initial_state=DRAFT,
    states=(DRAFT, PENDING, CONFIRMED, PARTIAL, COMPLETED, CANCELLED, RETURNED),
    transitions=(
        Transition(DRAFT, PENDING, action="submit"),
        Transition(
            DRAFT, CONFIRMED, action="confirm",
            guard=STOCK_AVAILABLE, stock_effect=StockEffect.APPLY,
        ),
        Transition(
            DRAFT, PARTIAL, action="record_partial",
            guard=PROGRESS_RECORDED, stock_effect=StockEffect.APPLY,
        ),
        Transition(DRAFT, CANCELLED, action="cancel"),
        Transition(
            PENDING, CONFIRMED, action="confirm",
            guard=STOCK_AVAILABLE, stock_effect=StockEffect.APPLY,
        ),
        Transition(
            PENDING, PARTIAL, action="record_partial",
            guard=PROGRESS_RECORDED, stock_effect=StockEffect.APPLY,
        ),
        Transition(PENDING, CANCELLED, action="cancel"),
        Transition(
            PARTIAL, CONFIRMED, action="confirm",
            guard=STOCK_AVAILABLE, stock_effect=StockEffect.APPLY,
        ),
        Transition(PARTIAL, CANCELLED, action="cancel", stock_effect=StockEffect.REVERSE),
        Transition(CONFIRMED, COMPLETED, action="complete"),
        Transition(CONFIRMED, CANCELLED, action="cancel", stock_effect=StockEffect.REVERSE),
        Transition(CONFIRMED, RETURNED, action="return", stock_effect=StockEffect.REVERSE),
        Transition(COMPLETED, RETURNED, action="return", stock_effect=StockEffect.REVERSE),
    ),
    terminal_states=(CANCELLED, RETURNED),
)

# Statuses whose lines may still be edited
EDITABLE_STATUSES = frozenset({TransactionStatus.DRAFT, TransactionStatus.PENDING})

logger.debug(
    "transaction_workflow_defined",
    extra={
        "states": list(TRANSACTION_WORKFLOW.states),
        "transition_count": len(TRANSACTION_WORKFLOW.transitions),
    },
)
