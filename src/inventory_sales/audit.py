"""Audit trail recorder.

Every business event is mirrored into the ``AuditTrail`` table as one
appended row. Rows are immutable: the recorder never edits, deletes or
reorders what is already on disk. Entry ids are positional, equal to the
number of data rows present before the append, so they form a dense
``0, 1, 2, ...`` sequence without any carried state.
"""

from __future__ import annotations

import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from . import data_manager, log
from .constants import AuditAction, EntityKind
from .data_manager import AUDIT_TRAIL_FILE, AUDIT_TRAIL_TABLE, AuditEntry, Product, Sale


# (label written in the audit trail, attribute name on the record)
FieldSpec = Tuple[str, str]

PRODUCT_DIFF_FIELDS: Tuple[FieldSpec, ...] = (
    ("Name", "name"),
    ("Category", "category"),
    ("Price", "price"),
    ("UnitCost", "unit_cost"),
    ("Stock", "stock"),
    ("MinStock", "min_stock"),
)

NO_CHANGES = "No changes"


def format_value(value: object) -> str:
    """Render a field value for audit text; money keeps two decimals."""

    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def diff_fields(before: object, after: object, fields: Sequence[FieldSpec] = PRODUCT_DIFF_FIELDS) -> List[str]:
    """Compare two snapshots over ``fields`` and describe what changed.

    Returns:
        list[str]: One ``"Label: old→new"`` entry per differing field, in the
            order of ``fields``.
    """

    changes = []
    for label, attribute in fields:
        old = getattr(before, attribute)
        new = getattr(after, attribute)
        if old != new:
            changes.append(f"{label}: {format_value(old)}→{format_value(new)}")
    return changes


def describe_changes(before: object, after: object, fields: Sequence[FieldSpec] = PRODUCT_DIFF_FIELDS) -> str:
    """Join :func:`diff_fields` with commas, or return ``"No changes"``."""

    changes = diff_fields(before, after, fields)
    return ", ".join(changes) if changes else NO_CHANGES


def product_snapshot(product: Product) -> str:
    """Compact one-line image of a product stored in the old/new value columns."""

    return (
        f"Name:{product.name}|Cat:{product.category}|Price:{format_value(product.price)}"
        f"|Cost:{format_value(product.unit_cost)}|Stock:{product.stock}|MinStock:{product.min_stock}"
    )


class AuditRecorder:
    """Append-only writer and reader for the ``AuditTrail`` table.

    The background backup thread appends ``Auto Backup`` entries through the
    same recorder as the foreground, so each load, append and rewrite cycle
    holds ``_lock``.
    """

    def __init__(self, data_folder: Path, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.path = data_manager.ensure_table_file(data_folder, AUDIT_TRAIL_FILE)
        self._clock = clock or data_manager.utcnow
        self._lock = threading.Lock()

    def record(
        self,
        action: str,
        entity: str,
        entity_id: int,
        entity_name: str,
        details: str = "",
        old_value: str = "",
        new_value: str = "",
    ) -> AuditEntry:
        """Append one audit row and return it.

        ``action`` and ``entity`` accept plain strings or the
        :class:`AuditAction` / :class:`EntityKind` enums.
        """

        with self._lock:
            rows = data_manager.load_table(self.path, AUDIT_TRAIL_TABLE)
            entry = AuditEntry(
                id=len(rows),
                timestamp=self._clock(),
                action=_label(action),
                entity=_label(entity),
                entity_id=entity_id,
                entity_name=entity_name,
                details=details,
                old_value=old_value,
                new_value=new_value,
            )
            rows.append(tuple(data_manager.serialize_audit_entry(entry)))
            data_manager.overwrite_tables(self.path, AUDIT_TRAIL_FILE, {AUDIT_TRAIL_TABLE.name: rows})
        log.info("Audit %d: %s %s %d '%s'", entry.id, entry.action, entry.entity, entity_id, entity_name)
        return entry

    def get_all(self) -> List[AuditEntry]:
        """Return every entry, newest first."""

        rows = data_manager.load_table(self.path, AUDIT_TRAIL_TABLE)
        entries = [data_manager.deserialize_audit_entry(row) for row in rows]
        return sorted(entries, key=lambda entry: (entry.timestamp, entry.id), reverse=True)

    # Convenience helpers ------------------------------------------------

    def log_product_added(self, product: Product) -> AuditEntry:
        return self.record(
            AuditAction.PRODUCT_ADDED,
            EntityKind.PRODUCT,
            product.id,
            product.name,
            f"Category: {product.category}, Price: {format_value(product.price)}, "
            f"UnitCost: {format_value(product.unit_cost)}, Stock: {product.stock}, MinStock: {product.min_stock}",
        )

    def log_product_edited(self, before: Product, after: Product) -> AuditEntry:
        return self.record(
            AuditAction.PRODUCT_EDITED,
            EntityKind.PRODUCT,
            after.id,
            after.name,
            describe_changes(before, after),
            product_snapshot(before),
            product_snapshot(after),
        )

    def log_product_deleted(self, product: Product) -> AuditEntry:
        return self.record(
            AuditAction.PRODUCT_DELETED,
            EntityKind.PRODUCT,
            product.id,
            product.name,
            f"Category: {product.category}, Last Stock: {product.stock}",
        )

    def log_sale(self, sale: Sale) -> AuditEntry:
        return self.record(
            AuditAction.SALE,
            EntityKind.SALE,
            sale.id,
            sale.product_name,
            f"Qty: {sale.quantity}, Price: {format_value(sale.price)}, Total: {format_value(sale.total)}",
        )

    def log_restock(self, product: Product, quantity: int) -> AuditEntry:
        """``product`` is the record after the restock was applied."""

        return self.record(
            AuditAction.RESTOCK,
            EntityKind.PRODUCT,
            product.id,
            product.name,
            f"Added: {quantity}",
            f"Stock Before: {product.stock - quantity}",
            f"Stock After: {product.stock}",
        )

    def log_sales_return(self, product: Product, quantity: int, reason: str) -> AuditEntry:
        return self._log_stock_change(AuditAction.SALES_RETURN, product, quantity, reason, inbound=True)

    def log_purchase_return(self, product: Product, quantity: int, reason: str) -> AuditEntry:
        return self._log_stock_change(AuditAction.PURCHASE_RETURN, product, quantity, reason, inbound=False)

    def log_loss(self, product: Product, quantity: int, reason: str) -> AuditEntry:
        return self._log_stock_change(AuditAction.PRODUCT_LOSS, product, quantity, reason, inbound=False)

    def log_manual_backup(self, archive: Optional[Path] = None) -> AuditEntry:
        details = "User triggered manual backup"
        if archive is not None:
            details = f"{details}: {Path(archive).name}"
        return self.record(AuditAction.MANUAL_BACKUP, EntityKind.SYSTEM, 0, "Backup", details)

    def log_auto_backup(self, archive: Path) -> AuditEntry:
        return self.record(
            AuditAction.AUTO_BACKUP,
            EntityKind.SYSTEM,
            0,
            "Backup",
            f"Scheduled backup created: {Path(archive).name}",
        )

    def log_cycle_count_started(self, session_id: int, product_count: int, notes: str = "") -> AuditEntry:
        return self.record(
            AuditAction.CYCLE_COUNT_STARTED,
            EntityKind.SYSTEM,
            session_id,
            f"Session #{session_id}",
            f"Products: {product_count}, Notes: {notes}",
        )

    def log_cycle_count_item(self, session_id: int, item) -> AuditEntry:
        return self.record(
            AuditAction.CYCLE_COUNT_ITEM,
            EntityKind.PRODUCT,
            item.product_id,
            item.product_name,
            f"Session #{session_id}, Expected: {item.expected_qty}, "
            f"Counted: {item.counted_qty}, Variance: {item.variance}",
        )

    def log_cycle_count_completed(self, session_id: int, summary) -> AuditEntry:
        return self.record(
            AuditAction.CYCLE_COUNT_COMPLETED,
            EntityKind.SYSTEM,
            session_id,
            f"Session #{session_id}",
            f"Items: {summary.total}, Pending: {summary.pending}, Variances: {summary.with_variance}, "
            f"Total Variance Value: {format_value(summary.total_variance_value)}",
        )

    def _log_stock_change(self, action: AuditAction, product: Product, quantity: int, reason: str, *, inbound: bool) -> AuditEntry:
        before = product.stock - quantity if inbound else product.stock + quantity
        return self.record(
            action,
            EntityKind.PRODUCT,
            product.id,
            product.name,
            f"Qty: {quantity}, Reason: {reason}",
            f"Stock Before: {before}",
            f"Stock After: {product.stock}",
        )


def filter_entries(
    entries: Iterable[AuditEntry],
    *,
    action: Optional[str] = None,
    search: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[AuditEntry]:
    """Narrow audit entries for review, keeping their order.

    Args:
        entries: Entries as returned by :meth:`AuditRecorder.get_all`.
        action: Exact action label to keep.
        search: Case-insensitive text matched against the entity name, the
            details and the action.
        start: First calendar day to include.
        end: Last calendar day to include.
    """

    needle = search.strip().lower() if search and search.strip() else None
    action_label = _label(action) if action else None
    result = []
    for entry in entries:
        if action_label is not None and entry.action != action_label:
            continue
        if needle is not None and not any(
            needle in text.lower() for text in (entry.entity_name, entry.details, entry.action)
        ):
            continue
        day = entry.timestamp.date()
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        result.append(entry)
    return result


def _label(value: object) -> str:
    return value.value if isinstance(value, (AuditAction, EntityKind)) else str(value)
