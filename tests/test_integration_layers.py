"""Integration tests describing the end-to-end inventory and sales workflows.

These scenarios document how the storage, repository and business logic
layers collaborate. Every flow reloads a fresh runtime context from the same
configuration file so that what is asserted is what actually reached disk.
"""

from __future__ import annotations

import zipfile
from datetime import timedelta
from decimal import Decimal

import pytest

from inventory_sales import cli, core_logic, setup_data
from inventory_sales.constants import StockAction
from inventory_sales.errors import BusinessRuleViolation

from conftest import FakeClock, add_sample_product


def _reload(bundle, clock=None) -> core_logic.RuntimeContext:
    context = core_logic.load_runtime_context(bundle.config_path, clock=clock)
    core_logic.ensure_schema_version(context)
    return context


def test_sale_lifecycle_flow(config_factory):
    """Walk through stocking, selling, returning and reporting using both layers."""

    bundle = config_factory()
    clock = FakeClock()
    context = _reload(bundle, clock)

    product = add_sample_product(context, name="Granola", unit_cost=Decimal("1.50"), price=Decimal("3.00"), stock=0)

    # A fresh context mirrors a new process reading what the last one wrote.
    context = _reload(bundle, clock)
    core_logic.record_restock(context, core_logic.RestockCommand(product.id, 10, "Supplier delivery"))
    core_logic.record_sale(context, core_logic.SaleCommand(product.id, 4))
    core_logic.record_sales_return(context, core_logic.ReturnCommand(product.id, 1, "Unopened"))
    core_logic.record_loss(context, core_logic.LossCommand(product.id, 2, "Expired"))

    context = _reload(bundle, clock)
    assert core_logic.get_product(context, product.id).stock == 5

    actions = [m.action for m in core_logic.list_movements(context, product_id=product.id)]
    assert actions == [
        StockAction.NEW_PRODUCT,
        StockAction.RESTOCK,
        StockAction.SALE,
        StockAction.SALES_RETURN,
        StockAction.LOSS,
    ]
    assert core_logic.find_stock_discrepancies(context) == []

    summary = core_logic.calculate_sales_summary(context)
    assert summary.revenue == Decimal("12.00")
    assert summary.cost == Decimal("6.00")
    assert summary.profit == Decimal("6.00")

    audit_actions = [e.action for e in core_logic.list_audit_entries(context)]
    assert audit_actions == ["Product Loss", "Sales Return", "Sale", "Restock", "Product Added"]
    assert [e.id for e in context.audit.get_all()] == [4, 3, 2, 1, 0]


def test_rejected_operations_leave_disk_untouched_flow(config_factory):
    bundle = config_factory()
    context = _reload(bundle, FakeClock())
    product = add_sample_product(context, stock=3)

    with pytest.raises(BusinessRuleViolation):
        core_logic.record_sale(context, core_logic.SaleCommand(product.id, 4))
    with pytest.raises(BusinessRuleViolation):
        core_logic.record_loss(context, core_logic.LossCommand(product.id, 1, ""))
    with pytest.raises(BusinessRuleViolation):
        core_logic.record_purchase_return(context, core_logic.ReturnCommand(product.id, 9, "Recall"))

    reloaded = _reload(bundle)
    assert core_logic.get_product(reloaded, product.id).stock == 3
    assert reloaded.ledger.get_all_sales() == []
    assert len(reloaded.ledger.get_all_movements()) == 1
    assert len(reloaded.audit.get_all()) == 1


def test_cycle_count_against_live_stock_flow(config_factory):
    """Counts are compared against the stock snapshot taken when the session opened."""

    bundle = config_factory()
    context = _reload(bundle, FakeClock())
    widget = add_sample_product(context, name="Widget", stock=10, unit_cost=Decimal("2.00"))
    bolt = add_sample_product(context, name="Bolt", stock=100, unit_cost=Decimal("0.05"))

    session_id = core_logic.start_cycle_count(context, "Month end")
    # Selling after the snapshot does not move the expected quantity.
    core_logic.record_sale(context, core_logic.SaleCommand(widget.id, 1))
    core_logic.record_cycle_count(context, session_id, widget.id, 9)

    reloaded = _reload(bundle)
    session, items = core_logic.get_cycle_count(reloaded, session_id)
    assert session.is_open
    by_product = {item.product_id: item for item in items}
    assert by_product[widget.id].expected_qty == 10
    assert by_product[widget.id].variance == -1
    assert not by_product[bolt.id].counted

    _, summary = core_logic.complete_cycle_count(reloaded, session_id)
    assert (summary.counted, summary.pending) == (1, 1)
    assert summary.total_variance_value == Decimal("-2.00")
    with pytest.raises(BusinessRuleViolation):
        core_logic.record_cycle_count(reloaded, session_id, bolt.id, 100)


def test_cycle_count_keeps_unit_cost_snapshot_flow(config_factory):
    """Editing a unit cost after the session opened leaves variance values alone."""

    bundle = config_factory()
    context = _reload(bundle, FakeClock())
    widget = add_sample_product(context, name="Widget", stock=10, unit_cost=Decimal("2.00"), price=Decimal("5.00"))

    session_id = core_logic.start_cycle_count(context, "Before repricing")
    core_logic.edit_product(
        context,
        core_logic.ProductUpdateCommand(
            product_id=widget.id,
            name="Widget",
            category=widget.category,
            unit_cost=Decimal("9.00"),
            price=Decimal("12.00"),
            min_stock=widget.min_stock,
        ),
    )
    core_logic.record_cycle_count(context, session_id, widget.id, 7)

    reloaded = _reload(bundle)
    assert core_logic.get_product(reloaded, widget.id).unit_cost == Decimal("9.00")
    _, items = core_logic.get_cycle_count(reloaded, session_id)
    assert items[0].unit_cost == Decimal("2.00")
    assert items[0].variance_value == Decimal("-6.00")
    _, summary = core_logic.complete_cycle_count(reloaded, session_id)
    assert summary.total_variance_value == Decimal("-6.00")


def test_backup_archive_restores_tables_flow(config_factory, tmp_path):
    """Extracting an archive yields a data folder a new context can read."""

    bundle = config_factory()
    context = _reload(bundle, FakeClock())
    product = add_sample_product(context, name="Archived", stock=7)
    archive = core_logic.run_manual_backup(context)

    # Later changes are not part of the archive.
    core_logic.record_sale(context, core_logic.SaleCommand(product.id, 2))

    restored = tmp_path / "restored"
    with zipfile.ZipFile(archive) as handle:
        handle.extractall(restored)
    restored_config = setup_data.write_config(tmp_path / "restored.ini", data_folder="restored")

    restored_context = core_logic.load_runtime_context(restored_config)
    assert core_logic.get_product(restored_context, product.id).stock == 7
    assert restored_context.ledger.get_all_sales() == []


def test_scheduler_writes_auto_backup_audit_entry_flow(config_factory):
    bundle = config_factory(max_backups=2)
    context = _reload(bundle, FakeClock())

    context.backups.start()
    context.backups.stop(timeout=5)

    entries = core_logic.list_audit_entries(context, action="Auto Backup")
    assert len(entries) == 1
    assert core_logic.get_backup_info(context).latest_archive.name in entries[0].details


def test_auto_backups_while_foreground_writes_keep_audit_rows_flow(config_factory):
    """The poll thread logging backups never drops rows written by the foreground."""

    bundle = config_factory(max_backups=2)
    context = _reload(bundle)
    product = add_sample_product(context, stock=0)
    context.backups.interval = timedelta(0)
    context.backups.poll_interval = timedelta(milliseconds=1)

    context.backups.start()
    try:
        for _ in range(15):
            core_logic.record_restock(context, core_logic.RestockCommand(product.id, 1, "Delivery"))
    finally:
        context.backups.stop(timeout=5)

    entries = _reload(bundle).audit.get_all()
    assert sorted(entry.id for entry in entries) == list(range(len(entries)))
    assert len([e for e in entries if e.action == "Restock"]) == 15
    assert any(e.action == "Auto Backup" for e in entries)
    assert core_logic.get_product(_reload(bundle), product.id).stock == 15


def test_cli_stock_and_reporting_flow(config_factory, capsys):
    """Drive the whole lifecycle through argv and check the reports."""

    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main([*config, "add-product", "--name", "CLI Granola", "--category", "Snacks",
                     "--unit-cost", "1.00", "--price", "4.00", "--stock", "5", "--min-stock", "2"]) == 0
    assert cli.main([*config, "sale", "--product-id", "1", "--quantity", "3"]) == 0
    assert cli.main([*config, "restock", "--product-id", "1", "--quantity", "10"]) == 0
    assert cli.main([*config, "loss", "--product-id", "1", "--quantity", "1", "--reason", "Torn"]) == 0
    capsys.readouterr()

    assert cli.main([*config, "summary"]) == 0
    summary_out = capsys.readouterr().out
    assert "Revenue:    12.00" in summary_out
    assert "Profit:     9.00" in summary_out

    assert cli.main([*config, "movements", "--product-id", "1"]) == 0
    movements_out = capsys.readouterr().out
    assert movements_out.count("\n") == 4
    assert "Torn" in movements_out

    assert cli.main([*config, "audit", "--action", "Sale"]) == 0
    assert "Qty: 3, Price: 4.00, Total: 12.00" in capsys.readouterr().out

    assert cli.main([*config, "discrepancies"]) == 0

    context = _reload(bundle)
    assert core_logic.get_product(context, 1).stock == 11


def test_cli_cycle_count_and_backup_flow(config_factory, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main([*config, "add-product", "--name", "Widget", "--unit-cost", "2", "--price", "3", "--stock", "4"]) == 0
    assert cli.main([*config, "count-start", "--notes", "Spot"]) == 0
    assert cli.main([*config, "count-record", "--session-id", "1", "--product-id", "1", "--counted", "5"]) == 0
    assert cli.main([*config, "count-complete", "--session-id", "1"]) == 0
    assert cli.main([*config, "count-complete", "--session-id", "1"]) == 2
    assert cli.main([*config, "count-record", "--session-id", "7", "--product-id", "1", "--counted", "1"]) == 2
    capsys.readouterr()

    assert cli.main([*config, "counts", "--session-id", "1"]) == 0
    assert "Overage" in capsys.readouterr().out

    assert cli.main([*config, "backup"]) == 0
    assert cli.main([*config, "backup", "--if-overdue"]) == 0
    assert cli.main([*config, "backups", "--verify"]) == 0
    out = capsys.readouterr().out
    assert "Backup not due yet" in out
    assert out.count(" OK") == 1
