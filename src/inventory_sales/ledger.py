"""Append-only ledger of sales and stock movements.

Rows are never updated or removed once written. Each append reads the target
table, allocates ``max(id) + 1`` over that table only, and rewrites it with the
new row at the end. Reads return rows in file order; sorting and filtering
are left to callers.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import List

from . import data_manager, log
from .data_manager import (
    SALES_FILE,
    SALES_TABLE,
    STOCK_MOVEMENTS_FILE,
    STOCK_MOVEMENTS_TABLE,
    Sale,
    StockMovement,
)


class LedgerRepository:
    """Writers and readers for the ``Sales`` and ``StockMovements`` tables."""

    def __init__(self, data_folder: Path) -> None:
        self.sales_path = data_manager.ensure_table_file(data_folder, SALES_FILE)
        self.movements_path = data_manager.ensure_table_file(data_folder, STOCK_MOVEMENTS_FILE)

    def get_all_sales(self) -> List[Sale]:
        rows = data_manager.load_table(self.sales_path, SALES_TABLE)
        return [data_manager.deserialize_sale(row) for row in rows]

    def get_all_movements(self) -> List[StockMovement]:
        rows = data_manager.load_table(self.movements_path, STOCK_MOVEMENTS_TABLE)
        return [data_manager.deserialize_movement(row) for row in rows]

    def record_sale(self, sale: Sale) -> Sale:
        """Append ``sale`` with a newly allocated id and return the stored record."""

        rows = data_manager.load_table(self.sales_path, SALES_TABLE)
        sale = replace(sale, id=data_manager.allocate_next_id(data_manager.deserialize_sale(row).id for row in rows))
        rows.append(tuple(data_manager.serialize_sale(sale)))
        data_manager.overwrite_tables(self.sales_path, SALES_FILE, {SALES_TABLE.name: rows})
        log.info(
            "Recorded sale %d: %d x '%s' at %s",
            sale.id,
            sale.quantity,
            sale.product_name,
            sale.price,
        )
        return sale

    def record_movement(self, movement: StockMovement) -> StockMovement:
        """Append ``movement`` with a newly allocated id and return the stored record."""

        rows = data_manager.load_table(self.movements_path, STOCK_MOVEMENTS_TABLE)
        movement = replace(
            movement,
            id=data_manager.allocate_next_id(data_manager.deserialize_movement(row).id for row in rows),
        )
        rows.append(tuple(data_manager.serialize_movement(movement)))
        data_manager.overwrite_tables(
            self.movements_path,
            STOCK_MOVEMENTS_FILE,
            {STOCK_MOVEMENTS_TABLE.name: rows},
        )
        log.info(
            "Recorded %s movement %d for product %d: %d -> %d",
            movement.action.value,
            movement.id,
            movement.product_id,
            movement.stock_before,
            movement.stock_after,
        )
        return movement
