"""Exception hierarchy shared by the storage, repository and business layers."""

from __future__ import annotations

from typing import Optional, Sequence

from .constants import TableName


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when caller input is rejected before anything is persisted."""


class NotFoundError(BusinessRuleViolation, LookupError):
    """Raised when a referenced product, session or count item is unknown."""


class StorageIOError(OSError):
    """Raised when a table file is missing, locked or malformed.

    The message always names the file and the operation that failed so the
    caller can report which table was affected.
    """

    def __init__(self, message: str, *, path: Optional[object] = None, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
        self.table = table

    def __str__(self) -> str:
        return self.args[0] if self.args else ""


class OperationFailedError(StorageIOError):
    """Raised when a multi-table business operation stops part way through.

    Writes happen in a fixed order (catalog first, then ledger, then audit).
    ``completed_tables`` lists the tables already rewritten when ``table``
    failed, which tells the caller whether the stock figure was changed.
    """

    def __init__(self, operation: str, *, table: str, completed_tables: Sequence[str], cause: BaseException) -> None:
        self.operation = operation
        self.completed_tables = tuple(completed_tables)
        if self.completed_tables:
            state = "stock was changed" if self.stock_changed else "stock was not changed"
            progress = f"{state}; already written: {', '.join(self.completed_tables)}"
        else:
            progress = "no changes were written"
        super().__init__(
            f"{operation} failed while writing {table} ({progress}): {cause}",
            path=getattr(cause, "path", None),
            table=table,
        )

    @property
    def stock_changed(self) -> bool:
        return TableName.PRODUCTS.value in self.completed_tables


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "NotFoundError",
    "StorageIOError",
    "OperationFailedError",
]
