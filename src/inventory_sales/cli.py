"""Command-line entry points for the inventory and sales store.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the results. Keeping the CLI thin ensures the same
parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .backup import verify_archive
from .constants import AuditAction
from .cycle_count import summarize_items
from .errors import BusinessRuleViolation, StorageIOError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="inventory-cli",
        description="Command-line tools for the inventory and sales data folder.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and restocks."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "edit-product": register_edit_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "sale": register_quantity_command(
            "sale", "Sell units of a product.", run_sale, price=True
        ),
        "restock": register_quantity_command(
            "restock", "Receive units from a supplier.", run_restock, reason_required=False
        ),
        "sales-return": register_quantity_command(
            "sales-return", "Take units back from a customer.", run_sales_return, reason_required=True
        ),
        "purchase-return": register_quantity_command(
            "purchase-return", "Send units back to a supplier.", run_purchase_return, reason_required=True
        ),
        "loss": register_quantity_command(
            "loss", "Write off damaged, expired or missing units.", run_loss, reason_required=True
        ),
        "count-start": register_count_start_command(subparsers),
        "count-record": register_count_record_command(subparsers),
        "count-complete": register_count_complete_command(subparsers),
        "backup": register_backup_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "products": register_products_command(subparsers),
        "sales": register_sales_command(subparsers),
        "movements": register_movements_command(subparsers),
        "audit": register_audit_command(subparsers),
        "summary": register_summary_command(subparsers),
        "discrepancies": register_discrepancies_command(subparsers),
        "counts": register_counts_command(subparsers),
        "backups": register_backups_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def parse_money(raw: str) -> Decimal:
    """argparse type for monetary amounts."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc


def parse_day(raw: str) -> date:
    """argparse type for ``YYYY-MM-DD`` dates."""
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {raw!r}") from exc


def _add_date_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=parse_day, default=None, help="First day to include (YYYY-MM-DD).")
    parser.add_argument("--end", type=parse_day, default=None, help="Last day to include (YYYY-MM-DD).")


# ---------------------------------------------------------------------------
# Write command registration
# ---------------------------------------------------------------------------


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog with its opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--unit-cost", type=parse_money, required=True)
        parser.add_argument("--price", type=parse_money, required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--min-stock", type=int, default=0)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_edit_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-product``."""
    name = "edit-product"
    help_text = "Change a product's name, category, prices or minimum stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--unit-cost", type=parse_money, default=None)
        parser.add_argument("--price", type=parse_money, default=None)
        parser.add_argument("--min-stock", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_quantity_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    price: bool = False,
    reason_required: Optional[bool] = None,
) -> CommandSpec:
    """Register a stock command taking a product id, a quantity and optionally a price or reason."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, required=True)
        if price:
            parser.add_argument("--price", type=parse_money, default=None, help="Defaults to the list price.")
        if reason_required is not None:
            parser.add_argument("--reason", required=reason_required, default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_count_start_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``count-start``."""
    name = "count-start"
    help_text = "Open a cycle count session over the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--notes", default="")
        parser.add_argument("--category", default=None, help="Only count products of this category.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_count_start)


def register_count_record_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``count-record``."""
    name = "count-record"
    help_text = "Record the physical count of one product in an open session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--session-id", type=int, required=True)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--counted", type=int, required=True)
        parser.add_argument("--notes", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_count_record)


def register_count_complete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``count-complete``."""
    name = "count-complete"
    help_text = "Close a cycle count session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--session-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_count_complete)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Archive every table file now."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--if-overdue",
            action="store_true",
            help="Only back up when the configured interval has elapsed.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


# ---------------------------------------------------------------------------
# Read command registration
# ---------------------------------------------------------------------------


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List catalog products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", default=None)
        parser.add_argument("--search", default=None)
        parser.add_argument("--low-stock", action="store_true", help="Only products at or below minimum stock.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_range(parser)
        parser.add_argument("--recent", type=int, default=None, help="Only the N most recent sales.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_movements_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``movements``."""
    name = "movements"
    help_text = "List stock movements."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, default=None)
        _add_date_range(parser)
        parser.add_argument("--recent", type=int, default=None, help="Only the N most recent movements.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_movements_report)


def register_audit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``audit``."""
    name = "audit"
    help_text = "Review the audit trail, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--action", choices=[a.value for a in AuditAction], default=None)
        parser.add_argument("--search", default=None)
        _add_date_range(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_audit_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Show revenue, cost and profit for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_range(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_discrepancies_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``discrepancies``."""
    name = "discrepancies"
    help_text = "List products whose stock disagrees with the movement ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_discrepancies_report)


def register_counts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``counts``."""
    name = "counts"
    help_text = "List cycle count sessions, or the items of one session."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--session-id", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_counts_report)


def register_backups_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backups``."""
    name = "backups"
    help_text = "Show the last backup time and the retained archives."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--verify", action="store_true", help="Check every archive against its manifest.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backups_report)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product creation command."""
    return core_logic.ProductCommand(
        name=args.name,
        category=args.category,
        unit_cost=args.unit_cost,
        price=args.price,
        stock=args.stock,
        min_stock=args.min_stock,
    )


def translate_edit_product(
    args: argparse.Namespace,
    current: core_logic.Product,
) -> core_logic.ProductUpdateCommand:
    """Merge the supplied CLI args over the current product fields."""
    return core_logic.ProductUpdateCommand(
        product_id=current.id,
        name=args.name if args.name is not None else current.name,
        category=args.category if args.category is not None else current.category,
        unit_cost=args.unit_cost if args.unit_cost is not None else current.unit_cost,
        price=args.price if args.price is not None else current.price,
        min_stock=args.min_stock if args.min_stock is not None else current.min_stock,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(product_id=args.product_id, quantity=args.quantity, price=args.price)


def translate_restock(args: argparse.Namespace) -> core_logic.RestockCommand:
    """Translate CLI args into a restock command object."""
    return core_logic.RestockCommand(product_id=args.product_id, quantity=args.quantity, reason=args.reason)


def translate_return(args: argparse.Namespace) -> core_logic.ReturnCommand:
    """Translate CLI args into a return command object."""
    return core_logic.ReturnCommand(product_id=args.product_id, quantity=args.quantity, reason=args.reason)


def translate_loss(args: argparse.Namespace) -> core_logic.LossCommand:
    """Translate CLI args into a loss command object."""
    return core_logic.LossCommand(product_id=args.product_id, quantity=args.quantity, reason=args.reason)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def format_money(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _print_stock_result(result: core_logic.StockOperationResult) -> None:
    movement = result.movement
    print(
        f"{movement.action.value}: {movement.quantity} x {movement.product_name} "
        f"(stock {movement.stock_before} -> {movement.stock_after})"
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"Added product {product.id}: {product.name}")
    return 0


def run_edit_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-product workflow in the BLL."""
    current = core_logic.get_product(context, args.product_id)
    product = core_logic.edit_product(context, translate_edit_product(args, current))
    print(f"Updated product {product.id}: {product.name}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow; unknown ids are reported but not an error."""
    product = core_logic.delete_product(context, args.product_id)
    if product is None:
        print(f"No product with id {args.product_id}; nothing deleted")
    else:
        print(f"Deleted product {product.id}: {product.name}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    result = core_logic.record_sale(context, translate_sale(args))
    _print_stock_result(result)
    if result.sale is not None:
        print(f"Sale {result.sale.id} total: {format_money(result.sale.total)}")
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow via the BLL."""
    _print_stock_result(core_logic.record_restock(context, translate_restock(args)))
    return 0


def run_sales_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales return workflow via the BLL."""
    _print_stock_result(core_logic.record_sales_return(context, translate_return(args)))
    return 0


def run_purchase_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase return workflow via the BLL."""
    _print_stock_result(core_logic.record_purchase_return(context, translate_return(args)))
    return 0


def run_loss(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the loss workflow via the BLL."""
    _print_stock_result(core_logic.record_loss(context, translate_loss(args)))
    return 0


def run_count_start(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Open a cycle count session."""
    session_id = core_logic.start_cycle_count(context, args.notes, category=args.category)
    print(f"Started cycle count session {session_id}")
    return 0


def run_count_record(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record one physical count."""
    item = core_logic.record_cycle_count(context, args.session_id, args.product_id, args.counted, args.notes)
    print(
        f"{item.product_name}: expected {item.expected_qty}, counted {item.counted_qty} "
        f"({item.variance_status}, variance {item.variance:+d}, value {format_money(item.variance_value)})"
    )
    return 0


def run_count_complete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Close a cycle count session."""
    session, summary = core_logic.complete_cycle_count(context, args.session_id)
    print(
        f"Completed session {session.session_id}: {summary.counted}/{summary.total} counted, "
        f"{summary.pending} pending, {summary.with_variance} with variance, "
        f"variance value {format_money(summary.total_variance_value)}"
    )
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a manual or overdue-only backup."""
    if args.if_overdue:
        archive = core_logic.run_backup_if_overdue(context)
        if archive is None:
            print("Backup not due yet")
            return 0
    else:
        archive = core_logic.run_manual_backup(context)
    print(f"Backup written to {archive}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print catalog products."""
    if args.low_stock:
        products = core_logic.list_low_stock(context)
    else:
        products = core_logic.list_products(context, category=args.category, search=args.search)
    for product in products:
        flag = " LOW" if product.is_low_stock else ""
        print(
            f"{product.id:>4}  {product.name:<30} {product.category:<15} "
            f"{format_money(product.price):>10} stock {product.stock:>5} (min {product.min_stock}){flag}"
        )
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print sales."""
    if args.recent is not None:
        sales = core_logic.recent_sales(context, args.recent)
    else:
        sales = core_logic.list_sales(context, start=args.start, end=args.end)
    for sale in sales:
        print(
            f"{sale.id:>5}  {sale.timestamp:%Y-%m-%d %H:%M}  {sale.product_name:<30} "
            f"{sale.quantity:>4} x {format_money(sale.price):>10} = {format_money(sale.total):>10}"
        )
    return 0


def run_movements_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock movements."""
    if args.recent is not None:
        movements = core_logic.recent_movements(context, args.recent)
    else:
        movements = core_logic.list_movements(context, product_id=args.product_id, start=args.start, end=args.end)
    for movement in movements:
        print(
            f"{movement.id:>5}  {movement.timestamp:%Y-%m-%d %H:%M}  {movement.product_name:<30} "
            f"{movement.action.value:<16} {movement.quantity:>5}  "
            f"{movement.stock_before} -> {movement.stock_after}  {movement.reason}"
        )
    return 0


def run_audit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print audit trail entries."""
    entries = core_logic.list_audit_entries(
        context,
        action=args.action,
        search=args.search,
        start=args.start,
        end=args.end,
    )
    for entry in entries:
        print(
            f"{entry.id:>5}  {entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.action:<22} "
            f"{entry.entity} {entry.entity_id} '{entry.entity_name}'  {entry.details}"
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the sales summary."""
    summary = core_logic.calculate_sales_summary(context, start=args.start, end=args.end)
    print(f"Revenue:    {format_money(summary.revenue)}")
    print(f"Units sold: {summary.units_sold}")
    print(f"Cost:       {format_money(summary.cost)}")
    print(f"Profit:     {format_money(summary.profit)}")
    print(f"Margin:     {summary.margin:.1f}%")
    for line in summary.by_product:
        print(
            f"  {line.product_name:<30} {line.units_sold:>5} units  revenue {format_money(line.revenue):>10}  "
            f"profit {format_money(line.profit):>10}  margin {line.margin:.1f}%"
        )
    return 0


def run_discrepancies_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock figures that disagree with the movement ledger."""
    discrepancies = core_logic.find_stock_discrepancies(context)
    if not discrepancies:
        print("Stock matches the movement ledger for every product")
        return 0
    for item in discrepancies:
        expected = "no baseline" if item.expected_stock is None else str(item.expected_stock)
        print(f"{item.product_id:>4}  {item.product_name:<30} recorded {item.recorded_stock}, expected {expected}")
    return 1


def run_counts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print cycle count sessions, or one session's items."""
    if args.session_id is None:
        for session in context.cycle_counts.get_all_sessions():
            completed = f"{session.completed_date:%Y-%m-%d %H:%M}" if session.completed_date else "-"
            print(
                f"{session.session_id:>4}  {session.status.value:<10} started {session.start_date:%Y-%m-%d %H:%M}  "
                f"completed {completed}  {session.notes}"
            )
        return 0

    session, items = core_logic.get_cycle_count(context, args.session_id)
    print(f"Session {session.session_id} ({session.status.value})")
    for item in items:
        counted = str(item.counted_qty) if item.counted else "-"
        print(
            f"{item.product_id:>4}  {item.product_name:<30} expected {item.expected_qty:>5}  "
            f"counted {counted:>5}  {item.variance_status}"
        )
    summary = summarize_items(items)
    print(f"{summary.counted}/{summary.total} counted, variance value {format_money(summary.total_variance_value)}")
    return 0


def run_backups_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print backup status; with ``--verify`` return 1 if any archive is damaged."""
    info = core_logic.get_backup_info(context)
    last = info.last_backup_at.isoformat() if info.last_backup_at else "never"
    print(f"Last backup: {last}")
    exit_code = 0
    for archive in info.archives:
        line = f"  {archive.name}"
        if args.verify:
            problems = verify_archive(archive)
            line += " OK" if not problems else " DAMAGED: " + "; ".join(problems)
            if problems:
                exit_code = 1
        print(line)
    for partial in context.backups.list_interrupted():
        print(f"  {partial.name} (interrupted)")
    return exit_code


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, StorageIOError):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
