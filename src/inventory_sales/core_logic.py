"""Business logic layer for the inventory and sales store.

This module orchestrates the repositories defined elsewhere in the package.
Each stock-changing operation validates its command first, so a rejected
request writes nothing, and then writes its tables in a fixed order:
``Products`` first, then ``Sales`` (sales only), then ``StockMovements`` and
finally ``AuditTrail``. The tables live in separate files, so a failure after
the first write leaves the earlier tables changed; that failure surfaces as
:class:`~inventory_sales.errors.OperationFailedError` naming what was
already written.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from . import data_manager, log
from .audit import AuditRecorder, filter_entries
from .backup import BackupInfo, BackupScheduler
from .catalog import CatalogRepository
from .constants import EXPECTED_SCHEMA_VERSION, StockAction, TableName
from .cycle_count import CycleCountEngine, CycleCountSummary, summarize_items
from .data_manager import (
    AuditEntry,
    CycleCountItem,
    CycleCountSession,
    Product,
    Sale,
    Settings,
    StockMovement,
)
from .errors import (
    BusinessRuleViolation,
    NotFoundError,
    OperationFailedError,
    StorageIOError,
    ValidationError,
)
from .ledger import LedgerRepository


Clock = Callable[[], datetime]


@dataclass(frozen=True)
class RuntimeContext:
    """Settings plus the repositories and services bound to one data folder."""

    settings: Settings
    catalog: CatalogRepository
    ledger: LedgerRepository
    audit: AuditRecorder
    cycle_counts: CycleCountEngine
    backups: BackupScheduler
    clock: Clock = field(default=data_manager.utcnow, repr=False, compare=False)


@dataclass(frozen=True)
class ProductCommand:
    """User intent for creating a product."""

    name: str
    category: str
    unit_cost: Decimal
    price: Decimal
    stock: int = 0
    min_stock: int = 0


@dataclass(frozen=True)
class ProductUpdateCommand:
    """User intent for editing a product's descriptive and pricing fields.

    ``stock`` may be supplied for symmetry with the stored record but must
    match the current figure; stock only moves through stock operations.
    """

    product_id: int
    name: str
    category: str
    unit_cost: Decimal
    price: Decimal
    min_stock: int
    stock: Optional[int] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling ``quantity`` units; ``price`` defaults to the list price."""

    product_id: int
    quantity: int
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class RestockCommand:
    """User intent for receiving stock from a supplier."""

    product_id: int
    quantity: int
    reason: str = ""


@dataclass(frozen=True)
class ReturnCommand:
    """User intent for a sales return (inbound) or purchase return (outbound)."""

    product_id: int
    quantity: int
    reason: str


@dataclass(frozen=True)
class LossCommand:
    """User intent for writing off damaged, expired or missing stock."""

    product_id: int
    quantity: int
    reason: str


@dataclass(frozen=True)
class StockOperationResult:
    """Records written by one stock-changing operation."""

    product: Product
    movement: StockMovement
    audit_entry: AuditEntry
    sale: Optional[Sale] = None


@dataclass(frozen=True)
class ProductSalesLine:
    product_id: int
    product_name: str
    units_sold: int
    revenue: Decimal
    cost: Decimal
    profit: Decimal
    margin: Decimal


@dataclass(frozen=True)
class SalesSummary:
    """Revenue and profit figures over a set of sales.

    Cost uses each product's *current* unit cost; sales of products that no
    longer exist count toward revenue but not cost, and have no breakdown
    line. ``margin`` is a percentage of revenue.
    """

    revenue: Decimal
    units_sold: int
    cost: Decimal
    profit: Decimal
    margin: Decimal
    by_product: List[ProductSalesLine]


@dataclass(frozen=True)
class StockDiscrepancy:
    """A product whose stored stock disagrees with its movement history."""

    product_id: int
    product_name: str
    recorded_stock: int
    expected_stock: Optional[int]

    @property
    def difference(self) -> Optional[int]:
        if self.expected_stock is None:
            return None
        return self.recorded_stock - self.expected_stock


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


def build_runtime_context(settings: Settings, *, clock: Optional[Clock] = None) -> RuntimeContext:
    """Create every table file under ``settings.data_folder`` and wire the services.

    Automatic backups started by the scheduler are mirrored into the audit
    trail as ``Auto Backup`` entries.
    """

    clock = clock or data_manager.utcnow
    data_manager.initialize_data_folder(settings.data_folder)
    audit = AuditRecorder(settings.data_folder, clock=clock)
    backups = BackupScheduler(
        settings.data_folder,
        settings.backup_folder,
        interval=settings.backup_interval,
        poll_interval=settings.poll_interval,
        max_backups=settings.max_backups,
        clock=clock,
        on_backup=audit.log_auto_backup,
    )
    return RuntimeContext(
        settings=settings,
        catalog=CatalogRepository(settings.data_folder),
        ledger=LedgerRepository(settings.data_folder),
        audit=audit,
        cycle_counts=CycleCountEngine(settings.data_folder, clock=clock),
        backups=backups,
        clock=clock,
    )


def load_runtime_context(config_path: Optional[Path] = None, *, clock: Optional[Clock] = None) -> RuntimeContext:
    """Load configuration settings and bind the services to the data folder.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        clock (Callable | None): Source of timestamps for every record written
            through the context.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        StorageIOError: If a table file exists but cannot be read.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    context = build_runtime_context(settings, clock=clock)
    log.info("Loaded runtime context for data folder '%s'", settings.data_folder)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to run against data declared with a different schema version.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Data schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive whole number.

    Raises:
        ValidationError: If ``quantity`` is zero, negative or not an integer.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: Decimal, label: str = "Amount") -> None:
    if amount < Decimal("0"):
        log.error("%s validation failed: %s", label, amount)
        raise ValidationError(f"{label} must be zero or positive")


def require_nonnegative_count(value: int, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        log.error("%s validation failed: %s", label, value)
        raise ValidationError(f"{label} must be a whole number of zero or more")


def require_reason(reason: str) -> str:
    """Return the stripped reason, rejecting blank text."""

    cleaned = (reason or "").strip()
    if not cleaned:
        log.error("Reason validation failed: blank reason")
        raise ValidationError("A reason is required for returns and losses")
    return cleaned


def require_sufficient_stock(product: Product, quantity: int) -> None:
    """Raise :class:`BusinessRuleViolation` when ``quantity`` exceeds on-hand stock."""

    if quantity > product.stock:
        log.warning(
            "Rejected outbound quantity %d for product %d with stock %d",
            quantity,
            product.id,
            product.stock,
        )
        raise BusinessRuleViolation(
            f"Insufficient stock for '{product.name}': requested {quantity}, available {product.stock}"
        )


def _validate_product_fields(name: str, unit_cost: Decimal, price: Decimal, min_stock: int) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        log.error("Product validation failed: blank name")
        raise ValidationError("Product name is required")
    require_nonnegative_money(unit_cost, "Unit cost")
    require_nonnegative_money(price, "Price")
    require_nonnegative_count(min_stock, "Minimum stock")
    return cleaned


# ---------------------------------------------------------------------------
# Write ordering
# ---------------------------------------------------------------------------


class _WriteSequence:
    """Track which tables an operation has already rewritten."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.completed: List[str] = []

    @contextmanager
    def step(self, table: TableName) -> Iterator[None]:
        try:
            yield
        except OperationFailedError:
            raise
        except StorageIOError as exc:
            log.error(
                "%s failed at %s after writing [%s]: %s",
                self.operation,
                table.value,
                ", ".join(self.completed),
                exc,
            )
            raise OperationFailedError(
                self.operation,
                table=table.value,
                completed_tables=self.completed,
                cause=exc,
            ) from exc
        self.completed.append(table.value)


# ---------------------------------------------------------------------------
# Catalog operations
# ---------------------------------------------------------------------------


def add_product(context: RuntimeContext, command: ProductCommand) -> Product:
    """Create a product and record its opening stock.

    The opening stock is written to the movement ledger as a ``New Product``
    entry (``0`` to ``stock``) so that the stock figure can always be
    reconciled against the ledger.

    Args:
        context (RuntimeContext): Runtime context bound to the data folder.
        command (ProductCommand): Fields of the new product.

    Returns:
        Product: The stored product with its allocated id.

    Raises:
        ValidationError: If a field is blank or negative.
        OperationFailedError: If a table write fails.
    """

    name = _validate_product_fields(command.name, command.unit_cost, command.price, command.min_stock)
    require_nonnegative_count(command.stock, "Stock")

    sequence = _WriteSequence("Add product")
    draft = Product(
        id=0,
        name=name,
        category=(command.category or "").strip(),
        unit_cost=command.unit_cost,
        price=command.price,
        stock=command.stock,
        min_stock=command.min_stock,
    )
    with sequence.step(TableName.PRODUCTS):
        product = context.catalog.save(draft)
    with sequence.step(TableName.STOCK_MOVEMENTS):
        context.ledger.record_movement(
            StockMovement(
                id=0,
                product_id=product.id,
                product_name=product.name,
                action=StockAction.NEW_PRODUCT,
                quantity=product.stock,
                stock_before=0,
                stock_after=product.stock,
                reason="Initial stock",
                timestamp=context.clock(),
            )
        )
    with sequence.step(TableName.AUDIT_TRAIL):
        context.audit.log_product_added(product)

    log.info("Added product %d '%s' with stock %d", product.id, product.name, product.stock)
    return product


def edit_product(context: RuntimeContext, command: ProductUpdateCommand) -> Product:
    """Update the descriptive and pricing fields of an existing product.

    The audit entry carries a field-level description of what changed and a
    snapshot of the record before and after.

    Raises:
        NotFoundError: If the product does not exist.
        ValidationError: If a field is invalid or the stock figure differs
            from the stored one.
        OperationFailedError: If a table write fails.
    """

    before = get_product(context, command.product_id)
    name = _validate_product_fields(command.name, command.unit_cost, command.price, command.min_stock)
    if command.stock is not None and command.stock != before.stock:
        log.error("Rejected direct stock edit for product %d", before.id)
        raise ValidationError("Stock cannot be edited directly; record a restock, return or loss instead")

    after = replace(
        before,
        name=name,
        category=(command.category or "").strip(),
        unit_cost=command.unit_cost,
        price=command.price,
        min_stock=command.min_stock,
    )
    sequence = _WriteSequence("Edit product")
    with sequence.step(TableName.PRODUCTS):
        stored = context.catalog.save(after)
    with sequence.step(TableName.AUDIT_TRAIL):
        context.audit.log_product_edited(before, stored)

    log.info("Edited product %d '%s'", stored.id, stored.name)
    return stored


def delete_product(context: RuntimeContext, product_id: int) -> Optional[Product]:
    """Remove a product from the catalog.

    Unknown ids are ignored: nothing is written and ``None`` is returned.
    Sales and movements referencing the product are kept.
    """

    product = context.catalog.get(product_id)
    if product is None:
        log.info("Delete ignored: product %d does not exist", product_id)
        return None

    sequence = _WriteSequence("Delete product")
    with sequence.step(TableName.PRODUCTS):
        context.catalog.delete(product_id)
    with sequence.step(TableName.AUDIT_TRAIL):
        context.audit.log_product_deleted(product)
    return product


# ---------------------------------------------------------------------------
# Stock operations
# ---------------------------------------------------------------------------


def record_sale(context: RuntimeContext, command: SaleCommand) -> StockOperationResult:
    """Sell units of a product.

    The workflow validates the quantity and the price, loads the product,
    checks that enough stock is on hand and then writes the decreased stock,
    the sale, a ``Sale`` stock movement and the audit entry, in that order.

    Args:
        context (RuntimeContext): Runtime context bound to the data folder.
        command (SaleCommand): Structured intent describing the sale request.

    Returns:
        StockOperationResult: The updated product and the records written.

    Raises:
        ValidationError: If the quantity or price is invalid.
        NotFoundError: If the product does not exist.
        BusinessRuleViolation: If the quantity exceeds the stock on hand.
        OperationFailedError: If a table write fails.
    """

    require_positive_quantity(command.quantity)
    product = get_product(context, command.product_id)
    price = product.price if command.price is None else command.price
    require_nonnegative_money(price, "Price")
    require_sufficient_stock(product, command.quantity)

    return _apply_stock_change(
        context,
        "Sale",
        product,
        StockAction.SALE,
        command.quantity,
        reason="",
        sale_price=price,
        audit=lambda updated, sale: context.audit.log_sale(sale),
    )


def record_restock(context: RuntimeContext, command: RestockCommand) -> StockOperationResult:
    """Add received units to a product's stock.

    Raises:
        ValidationError: If the quantity is not positive.
        NotFoundError: If the product does not exist.
        OperationFailedError: If a table write fails.
    """

    require_positive_quantity(command.quantity)
    product = get_product(context, command.product_id)
    return _apply_stock_change(
        context,
        "Restock",
        product,
        StockAction.RESTOCK,
        command.quantity,
        reason=(command.reason or "").strip(),
        audit=lambda updated, _sale: context.audit.log_restock(updated, command.quantity),
    )


def record_sales_return(context: RuntimeContext, command: ReturnCommand) -> StockOperationResult:
    """Take units back from a customer; a reason is mandatory.

    Raises:
        ValidationError: If the quantity is not positive or the reason is blank.
        NotFoundError: If the product does not exist.
        OperationFailedError: If a table write fails.
    """

    require_positive_quantity(command.quantity)
    reason = require_reason(command.reason)
    product = get_product(context, command.product_id)
    return _apply_stock_change(
        context,
        "Sales return",
        product,
        StockAction.SALES_RETURN,
        command.quantity,
        reason=reason,
        audit=lambda updated, _sale: context.audit.log_sales_return(updated, command.quantity, reason),
    )


def record_purchase_return(context: RuntimeContext, command: ReturnCommand) -> StockOperationResult:
    """Send units back to a supplier; a reason is mandatory.

    Raises:
        ValidationError: If the quantity is not positive or the reason is blank.
        NotFoundError: If the product does not exist.
        BusinessRuleViolation: If the quantity exceeds the stock on hand.
        OperationFailedError: If a table write fails.
    """

    require_positive_quantity(command.quantity)
    reason = require_reason(command.reason)
    product = get_product(context, command.product_id)
    require_sufficient_stock(product, command.quantity)
    return _apply_stock_change(
        context,
        "Purchase return",
        product,
        StockAction.PURCHASE_RETURN,
        command.quantity,
        reason=reason,
        audit=lambda updated, _sale: context.audit.log_purchase_return(updated, command.quantity, reason),
    )


def record_loss(context: RuntimeContext, command: LossCommand) -> StockOperationResult:
    """Write off damaged, expired or missing units; a reason is mandatory.

    Raises:
        ValidationError: If the quantity is not positive or the reason is blank.
        NotFoundError: If the product does not exist.
        BusinessRuleViolation: If the quantity exceeds the stock on hand.
        OperationFailedError: If a table write fails.
    """

    require_positive_quantity(command.quantity)
    reason = require_reason(command.reason)
    product = get_product(context, command.product_id)
    require_sufficient_stock(product, command.quantity)
    return _apply_stock_change(
        context,
        "Loss",
        product,
        StockAction.LOSS,
        command.quantity,
        reason=reason,
        audit=lambda updated, _sale: context.audit.log_loss(updated, command.quantity, reason),
    )


def _apply_stock_change(
    context: RuntimeContext,
    operation: str,
    product: Product,
    action: StockAction,
    quantity: int,
    *,
    reason: str,
    audit: Callable[[Product, Optional[Sale]], AuditEntry],
    sale_price: Optional[Decimal] = None,
) -> StockOperationResult:
    timestamp = context.clock()
    stock_after = product.stock + action.sign * quantity
    sequence = _WriteSequence(operation)

    with sequence.step(TableName.PRODUCTS):
        updated = context.catalog.save(replace(product, stock=stock_after))

    sale: Optional[Sale] = None
    if sale_price is not None:
        with sequence.step(TableName.SALES):
            sale = context.ledger.record_sale(
                Sale(
                    id=0,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    price=sale_price,
                    timestamp=timestamp,
                )
            )

    with sequence.step(TableName.STOCK_MOVEMENTS):
        movement = context.ledger.record_movement(
            StockMovement(
                id=0,
                product_id=product.id,
                product_name=product.name,
                action=action,
                quantity=quantity,
                stock_before=product.stock,
                stock_after=stock_after,
                reason=reason,
                timestamp=timestamp,
            )
        )

    with sequence.step(TableName.AUDIT_TRAIL):
        entry = audit(updated, sale)

    log.info(
        "Recorded %s of %d for product %d '%s' (stock %d -> %d)",
        action.value,
        quantity,
        product.id,
        product.name,
        product.stock,
        stock_after,
    )
    return StockOperationResult(product=updated, movement=movement, audit_entry=entry, sale=sale)


# ---------------------------------------------------------------------------
# Cycle counts
# ---------------------------------------------------------------------------


def start_cycle_count(context: RuntimeContext, notes: str = "", *, category: Optional[str] = None) -> int:
    """Open a cycle count over the catalog (optionally one category) and return its id."""

    products = list_products(context, category=category)
    session_id = context.cycle_counts.create_session(products, notes)
    context.audit.log_cycle_count_started(session_id, len(products), notes)
    return session_id


def record_cycle_count(
    context: RuntimeContext,
    session_id: int,
    product_id: int,
    counted_qty: int,
    notes: str = "",
) -> CycleCountItem:
    """Store a physical count. The catalog stock figure is not adjusted."""

    item = context.cycle_counts.save_item_count(session_id, product_id, counted_qty, notes)
    context.audit.log_cycle_count_item(session_id, item)
    return item


def complete_cycle_count(context: RuntimeContext, session_id: int) -> Tuple[CycleCountSession, CycleCountSummary]:
    """Close a session, even with pending items, and return it with its summary."""

    session = context.cycle_counts.complete_session(session_id)
    summary = summarize_items(context.cycle_counts.get_session_items(session_id))
    context.audit.log_cycle_count_completed(session_id, summary)
    return session, summary


def get_cycle_count(context: RuntimeContext, session_id: int) -> Tuple[CycleCountSession, List[CycleCountItem]]:
    session = context.cycle_counts.get_session(session_id)
    if session is None:
        raise NotFoundError(f"Cycle count session {session_id} does not exist")
    return session, context.cycle_counts.get_session_items(session_id)


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def run_manual_backup(context: RuntimeContext) -> Path:
    """Back up every table file now and log a ``Manual Backup`` audit entry."""

    archive = context.backups.run_backup()
    context.audit.log_manual_backup(archive)
    return archive


def run_backup_if_overdue(context: RuntimeContext) -> Optional[Path]:
    """Back up when the watermark is older than the interval; return the archive or ``None``."""

    if not context.backups.is_backup_overdue():
        log.debug("Backup not due yet")
        return None
    archive = context.backups.run_backup()
    context.audit.log_auto_backup(archive)
    return archive


def get_backup_info(context: RuntimeContext) -> BackupInfo:
    return context.backups.get_info()


# ---------------------------------------------------------------------------
# Reads and reports
# ---------------------------------------------------------------------------


def list_products(
    context: RuntimeContext,
    *,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Product]:
    """Return catalog products, optionally narrowed by category and name search."""

    products = context.catalog.get_all()
    if category:
        products = [p for p in products if p.category.lower() == category.strip().lower()]
    if search and search.strip():
        needle = search.strip().lower()
        products = [p for p in products if needle in p.name.lower() or needle in p.category.lower()]
    return products


def get_product(context: RuntimeContext, product_id: int) -> Product:
    """Return the product with ``product_id``.

    Raises:
        NotFoundError: If no product has that id.
    """

    product = context.catalog.get(product_id)
    if product is None:
        log.warning("Unknown product id requested: %s", product_id)
        raise NotFoundError(f"Unknown product id: {product_id}")
    return product


def list_low_stock(context: RuntimeContext) -> List[Product]:
    return [p for p in context.catalog.get_all() if p.is_low_stock]


def list_categories(context: RuntimeContext) -> List[str]:
    return sorted({p.category for p in context.catalog.get_all() if p.category})


def _in_range(moment: datetime, start: Optional[date], end: Optional[date]) -> bool:
    day = moment.date()
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def list_sales(context: RuntimeContext, *, start: Optional[date] = None, end: Optional[date] = None) -> List[Sale]:
    """Sales in file order, limited to an inclusive day range when given."""

    return [s for s in context.ledger.get_all_sales() if _in_range(s.timestamp, start, end)]


def recent_sales(context: RuntimeContext, limit: int = 10) -> List[Sale]:
    sales = sorted(context.ledger.get_all_sales(), key=lambda s: (s.timestamp, s.id), reverse=True)
    return sales[:limit]


def list_movements(
    context: RuntimeContext,
    *,
    product_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[StockMovement]:
    movements = context.ledger.get_all_movements()
    if product_id is not None:
        movements = [m for m in movements if m.product_id == product_id]
    return [m for m in movements if _in_range(m.timestamp, start, end)]


def recent_movements(context: RuntimeContext, limit: int = 10) -> List[StockMovement]:
    movements = sorted(context.ledger.get_all_movements(), key=lambda m: (m.timestamp, m.id), reverse=True)
    return movements[:limit]


def list_audit_entries(
    context: RuntimeContext,
    *,
    action: Optional[str] = None,
    search: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[AuditEntry]:
    """Audit entries newest first, filtered like the audit review screen."""

    return filter_entries(context.audit.get_all(), action=action, search=search, start=start, end=end)


def calculate_sales_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> SalesSummary:
    """Aggregate revenue, cost and profit over the sales in a day range.

    Cost is estimated with each product's current unit cost, so editing a
    unit cost changes the reported profit of past sales. The per-product
    breakdown is ordered by revenue, highest first.

    Returns:
        SalesSummary: Totals plus one :class:`ProductSalesLine` per product
            that still exists in the catalog.
    """

    sales = list_sales(context, start=start, end=end)
    products = {p.id: p for p in context.catalog.get_all()}

    revenue = sum((s.total for s in sales), Decimal("0"))
    units = sum(s.quantity for s in sales)

    grouped: Dict[int, List[Sale]] = {}
    for sale in sales:
        grouped.setdefault(sale.product_id, []).append(sale)

    lines: List[ProductSalesLine] = []
    total_cost = Decimal("0")
    for product_id, group in grouped.items():
        product = products.get(product_id)
        if product is None:
            continue
        line_units = sum(s.quantity for s in group)
        line_revenue = sum((s.total for s in group), Decimal("0"))
        line_cost = product.unit_cost * line_units
        total_cost += line_cost
        lines.append(
            ProductSalesLine(
                product_id=product_id,
                product_name=product.name,
                units_sold=line_units,
                revenue=line_revenue,
                cost=line_cost,
                profit=line_revenue - line_cost,
                margin=_margin(line_revenue, line_revenue - line_cost),
            )
        )

    profit = revenue - total_cost
    lines.sort(key=lambda line: line.revenue, reverse=True)
    log.debug("Calculated sales summary over %d sales: revenue=%s profit=%s", len(sales), revenue, profit)
    return SalesSummary(
        revenue=revenue,
        units_sold=units,
        cost=total_cost,
        profit=profit,
        margin=_margin(revenue, profit),
        by_product=lines,
    )


def _margin(revenue: Decimal, profit: Decimal) -> Decimal:
    if revenue <= 0:
        return Decimal("0")
    return profit / revenue * 100


def find_stock_discrepancies(context: RuntimeContext) -> List[StockDiscrepancy]:
    """Compare each product's stock with its movement history.

    The expected figure starts from the product's latest ``New Product``
    movement and applies every later movement for the same id in ledger
    order. Products with no baseline are reported with ``expected_stock``
    set to ``None``. Nothing is repaired.
    """

    history: Dict[int, Optional[int]] = {}
    for movement in context.ledger.get_all_movements():
        if movement.action is StockAction.NEW_PRODUCT:
            history[movement.product_id] = movement.stock_after
        elif history.get(movement.product_id) is not None:
            history[movement.product_id] += movement.action.sign * movement.quantity

    discrepancies = []
    for product in context.catalog.get_all():
        expected = history.get(product.id)
        if expected != product.stock:
            discrepancies.append(
                StockDiscrepancy(
                    product_id=product.id,
                    product_name=product.name,
                    recorded_stock=product.stock,
                    expected_stock=expected,
                )
            )
    if discrepancies:
        log.warning("Found %d products whose stock disagrees with the ledger", len(discrepancies))
    return discrepancies

