"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from inventory_sales import cli, core_logic
from inventory_sales.errors import NotFoundError, OperationFailedError, StorageIOError, ValidationError

from conftest import add_sample_product, make_product


WRITE_COMMANDS = {
    "add-product",
    "edit-product",
    "delete-product",
    "sale",
    "restock",
    "sales-return",
    "purchase-return",
    "loss",
    "count-start",
    "count-record",
    "count-complete",
    "backup",
}

READ_COMMANDS = {
    "products",
    "sales",
    "movements",
    "audit",
    "summary",
    "discrepancies",
    "counts",
    "backups",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "inventory-cli"
    assert parser.parse_args([]).config is None


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all mutating and reporting sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
    assert set(subparsers_action.choices) == WRITE_COMMANDS


def test_register_read_commands_returns_command_specs(subparsers_action):
    """register_read_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert set(subparsers_action.choices) == READ_COMMANDS


# ---------------------------------------------------------------------------
# Command argument parsing
# ---------------------------------------------------------------------------


def test_add_product_arguments():
    parser = _parser_with(cli.register_add_product_command)

    namespace = parser.parse_args(
        ["add-product", "--name", "Widget", "--unit-cost", "2.50", "--price", "4.00", "--stock", "12"]
    )

    assert namespace.command == "add-product"
    assert namespace.unit_cost == Decimal("2.50")
    assert namespace.price == Decimal("4.00")
    assert (namespace.stock, namespace.min_stock, namespace.category) == (12, 0, "")


def test_add_product_rejects_bad_money():
    parser = _parser_with(cli.register_add_product_command)

    with pytest.raises(SystemExit):
        parser.parse_args(["add-product", "--name", "W", "--unit-cost", "cheap", "--price", "1"])


def test_sale_arguments_include_optional_price():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_quantity_command("sale", "help", cli.run_sale, price=True).register(subparsers)

    namespace = parser.parse_args(["sale", "--product-id", "3", "--quantity", "2"])

    assert (namespace.product_id, namespace.quantity, namespace.price) == (3, 2, None)
    assert not hasattr(namespace, "reason")


def test_loss_requires_reason(subparsers_action, cli_parser):
    cli.register_write_commands(subparsers_action)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["loss", "--product-id", "1", "--quantity", "1"])

    namespace = cli_parser.parse_args(["loss", "--product-id", "1", "--quantity", "1", "--reason", "Broken"])
    assert namespace.reason == "Broken"


def test_restock_reason_is_optional(subparsers_action, cli_parser):
    cli.register_write_commands(subparsers_action)

    namespace = cli_parser.parse_args(["restock", "--product-id", "1", "--quantity", "5"])

    assert namespace.reason == ""


def test_report_date_range_arguments(subparsers_action, cli_parser):
    cli.register_read_commands(subparsers_action)

    namespace = cli_parser.parse_args(["summary", "--start", "2024-03-01", "--end", "2024-03-31"])

    assert (namespace.start.isoformat(), namespace.end.isoformat()) == ("2024-03-01", "2024-03-31")
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["sales", "--start", "03/01/2024"])


def test_audit_action_choices_match_labels(subparsers_action, cli_parser):
    cli.register_read_commands(subparsers_action)

    assert cli_parser.parse_args(["audit", "--action", "Product Loss"]).action == "Product Loss"
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["audit", "--action", "Teleport"])


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(runtime_context):
    """dispatch_command should call the executor associated with the command."""

    called = {}

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = context
        return 7

    command_table = {"alpha": cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), execute)}
    result = cli.dispatch_command(runtime_context, argparse.Namespace(command="alpha"), command_table)

    assert result == 7
    assert called["context"] is runtime_context


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should index specs by their command names."""

    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_add_product_returns_command():
    args = argparse.Namespace(
        name="Widget",
        category="Hardware",
        unit_cost=Decimal("2.50"),
        price=Decimal("4.00"),
        stock=5,
        min_stock=1,
    )

    command = cli.translate_add_product(args)

    assert command == core_logic.ProductCommand("Widget", "Hardware", Decimal("2.50"), Decimal("4.00"), 5, 1)


def test_translate_edit_product_keeps_unspecified_fields():
    """Only the options given on the command line replace current values."""

    current = make_product(id=4)
    args = argparse.Namespace(name=None, category="Tools", unit_cost=None, price=Decimal("6.00"), min_stock=None)

    command = cli.translate_edit_product(args, current)

    assert command.product_id == 4
    assert (command.name, command.category) == ("Widget", "Tools")
    assert (command.unit_cost, command.price, command.min_stock) == (Decimal("2.50"), Decimal("6.00"), 2)
    assert command.stock is None


def test_translate_stock_commands():
    args = argparse.Namespace(product_id=2, quantity=3, price=None, reason="Damaged")

    assert cli.translate_sale(args) == core_logic.SaleCommand(2, 3, None)
    assert cli.translate_restock(args) == core_logic.RestockCommand(2, 3, "Damaged")
    assert cli.translate_return(args) == core_logic.ReturnCommand(2, 3, "Damaged")
    assert cli.translate_loss(args) == core_logic.LossCommand(2, 3, "Damaged")


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_sale_invokes_bll(runtime_context, monkeypatch, capsys):
    """run_sale should delegate to the business logic layer."""

    product = add_sample_product(runtime_context)
    command = core_logic.SaleCommand(product_id=product.id, quantity=2)
    monkeypatch.setattr(cli, "translate_sale", lambda value: command)

    result = cli.run_sale(runtime_context, argparse.Namespace())

    assert result == 0
    assert core_logic.get_product(runtime_context, product.id).stock == 8
    out = capsys.readouterr().out
    assert "Sale: 2 x Widget (stock 10 -> 8)" in out
    assert "total: 8.00" in out


def test_run_edit_product_merges_current_values(runtime_context, capsys):
    product = add_sample_product(runtime_context)
    args = argparse.Namespace(
        product_id=product.id, name="Gadget", category=None, unit_cost=None, price=None, min_stock=None
    )

    assert cli.run_edit_product(runtime_context, args) == 0

    edited = core_logic.get_product(runtime_context, product.id)
    assert edited.name == "Gadget"
    assert edited.price == product.price
    assert "Updated product 1: Gadget" in capsys.readouterr().out


def test_run_delete_product_reports_unknown_id(runtime_context, capsys):
    assert cli.run_delete_product(runtime_context, argparse.Namespace(product_id=5)) == 0
    assert "nothing deleted" in capsys.readouterr().out


def test_run_count_commands(runtime_context, capsys):
    product = add_sample_product(runtime_context, stock=6)

    cli.run_count_start(runtime_context, argparse.Namespace(notes="Weekly", category=None))
    cli.run_count_record(
        runtime_context, argparse.Namespace(session_id=1, product_id=product.id, counted=4, notes="")
    )
    cli.run_count_complete(runtime_context, argparse.Namespace(session_id=1))

    out = capsys.readouterr().out
    assert "Started cycle count session 1" in out
    assert "Widget: expected 6, counted 4 (Shortage, variance -2, value -5.00)" in out
    assert "Completed session 1: 1/1 counted, 0 pending, 1 with variance" in out


def test_run_backup_if_overdue_reports_not_due(runtime_context, capsys):
    cli.run_backup(runtime_context, argparse.Namespace(if_overdue=False))
    cli.run_backup(runtime_context, argparse.Namespace(if_overdue=True))

    out = capsys.readouterr().out
    assert "Backup written to" in out
    assert "Backup not due yet" in out


def test_run_backups_report_verifies_archives(runtime_context, capsys):
    core_logic.run_manual_backup(runtime_context)

    assert cli.run_backups_report(runtime_context, argparse.Namespace(verify=True)) == 0
    assert " OK" in capsys.readouterr().out


def test_run_discrepancies_report_exit_codes(runtime_context, capsys):
    product = add_sample_product(runtime_context)
    assert cli.run_discrepancies_report(runtime_context, argparse.Namespace()) == 0

    runtime_context.catalog.save(make_product(id=product.id, stock=1))

    assert cli.run_discrepancies_report(runtime_context, argparse.Namespace()) == 1
    assert "recorded 1, expected 10" in capsys.readouterr().out


def test_run_summary_report_prints_totals(runtime_context, capsys):
    product = add_sample_product(runtime_context)
    core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.id, 3))

    cli.run_summary_report(runtime_context, argparse.Namespace(start=None, end=None))

    out = capsys.readouterr().out
    assert "Revenue:    12.00" in out
    assert "Margin:     37.5%" in out


def test_run_products_report_low_stock_flag(runtime_context, capsys):
    add_sample_product(runtime_context, name="Low", stock=1, min_stock=2)
    add_sample_product(runtime_context, name="Plenty", stock=50)

    cli.run_products_report(runtime_context, argparse.Namespace(category=None, search=None, low_stock=True))

    out = capsys.readouterr().out
    assert "Low" in out and " LOW" in out
    assert "Plenty" not in out


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (ValidationError("bad quantity"), 2),
        (NotFoundError("no product"), 2),
        (FileNotFoundError("missing"), 3),
        (StorageIOError("locked"), 4),
        (OperationFailedError("Sale", table="Sales", completed_tables=["Products"], cause=OSError("x")), 4),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


def test_handle_cli_error_logs_human_readable_message(caplog: pytest.LogCaptureFixture):
    """handle_cli_error should emit a user-friendly log message."""

    caplog.set_level("ERROR")
    error = core_logic.BusinessRuleViolation("invalid")
    cli.handle_cli_error(error)
    assert any("invalid" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, runtime_context):
    """main should execute the command parsed from argv."""

    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    called = {}

    def fake_dispatch(context: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]) -> int:
        called["context"] = context
        called["args"] = args
        called["table"] = table
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    exit_code = cli.main(["sale"])
    assert exit_code == 0
    assert called["context"] is runtime_context
    assert called["args"].command == "sale"
    assert called["table"] is command_table


def test_main_handles_bll_errors(monkeypatch, runtime_context):
    """main should surface business rule violations as non-zero exits."""

    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    def fake_dispatch(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)

    handled = {}

    def fake_handle(error: Exception) -> int:
        handled["error"] = error
        return 99

    monkeypatch.setattr(cli, "handle_cli_error", fake_handle)
    exit_code = cli.main(["sale"])
    assert exit_code == 99
    assert isinstance(handled["error"], core_logic.BusinessRuleViolation)


def test_main_rejects_schema_mismatch(config_factory):
    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "products"]) == 1


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "nope.ini"), "products"]) == 3


def test_main_runs_against_real_files(config_factory, capsys):
    """A full add-then-sell round through argv leaves the expected stock."""

    config = str(config_factory().config_path)

    assert cli.main(["--config", config, "add-product", "--name", "Widget", "--unit-cost", "1", "--price", "2", "--stock", "5"]) == 0
    assert cli.main(["--config", config, "sale", "--product-id", "1", "--quantity", "2"]) == 0
    assert cli.main(["--config", config, "sale", "--product-id", "1", "--quantity", "9"]) == 2
    assert cli.main(["--config", config, "products"]) == 0

    out = capsys.readouterr().out
    assert "Added product 1: Widget" in out
    assert "stock     3" in out


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parser_with(register) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    register(subparsers).register(subparsers)
    return parser


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            parsed = argparse.Namespace(command=command, config=None)
            return parsed

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
