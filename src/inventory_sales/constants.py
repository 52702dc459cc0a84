"""Enumerations shared across the inventory and sales modules.

Centralises domain constants so that the data access layer, the repositories,
the business operations and the CLI rely on a single source of truth for
table names, ledger actions and audit vocabulary.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating the data folder.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Sentinel stored in ``CountedQty`` while a cycle count item has not been counted.
NOT_COUNTED = -1


class TableName(str, Enum):
    """Enumerate the worksheet names managed by the data access layer."""

    PRODUCTS = "Products"
    SALES = "Sales"
    STOCK_MOVEMENTS = "StockMovements"
    AUDIT_TRAIL = "AuditTrail"
    SESSIONS = "Sessions"
    ITEMS = "Items"


class StockAction(str, Enum):
    """Enumerate the actions that can be recorded in the stock movement ledger."""

    NEW_PRODUCT = "New Product"
    SALE = "Sale"
    RESTOCK = "Restock"
    SALES_RETURN = "Sales Return"
    PURCHASE_RETURN = "Purchase Return"
    LOSS = "Loss"

    @property
    def sign(self) -> int:
        """Return ``+1`` for inbound actions and ``-1`` for outbound ones."""

        return -1 if self in _OUTBOUND_ACTIONS else 1


_OUTBOUND_ACTIONS = frozenset(
    {StockAction.SALE, StockAction.PURCHASE_RETURN, StockAction.LOSS}
)


class AuditAction(str, Enum):
    """Enumerate the action labels written to the audit trail."""

    PRODUCT_ADDED = "Product Added"
    PRODUCT_EDITED = "Product Edited"
    PRODUCT_DELETED = "Product Deleted"
    SALE = "Sale"
    RESTOCK = "Restock"
    SALES_RETURN = "Sales Return"
    PURCHASE_RETURN = "Purchase Return"
    PRODUCT_LOSS = "Product Loss"
    MANUAL_BACKUP = "Manual Backup"
    AUTO_BACKUP = "Auto Backup"
    CYCLE_COUNT_STARTED = "Cycle Count Started"
    CYCLE_COUNT_ITEM = "Cycle Count Item"
    CYCLE_COUNT_COMPLETED = "Cycle Count Completed"


class EntityKind(str, Enum):
    """Enumerate the entity kinds an audit entry can describe."""

    PRODUCT = "Product"
    SALE = "Sale"
    SYSTEM = "System"


class SessionStatus(str, Enum):
    """Enumerate the lifecycle states of a cycle count session."""

    OPEN = "Open"
    COMPLETED = "Completed"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "NOT_COUNTED",
    "TableName",
    "StockAction",
    "AuditAction",
    "EntityKind",
    "SessionStatus",
]
