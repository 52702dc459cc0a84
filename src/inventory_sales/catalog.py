"""Product catalog repository.

Every call reads the complete ``Products`` table and, for mutations, writes
the complete table back. Primary keys are allocated here as
``max(existing ids) + 1`` so that ids are never reused while a higher id
still exists.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from . import data_manager, log
from .data_manager import PRODUCTS_FILE, PRODUCTS_TABLE, Product


class CatalogRepository:
    """CRUD access to the ``Products`` table."""

    def __init__(self, data_folder: Path) -> None:
        self.path = data_manager.ensure_table_file(data_folder, PRODUCTS_FILE)

    def get_all(self) -> List[Product]:
        """Return every product in persisted order."""

        rows = data_manager.load_table(self.path, PRODUCTS_TABLE)
        return [data_manager.deserialize_product(row) for row in rows]

    def get(self, product_id: int) -> Optional[Product]:
        """Return the product with ``product_id`` or ``None``."""

        for product in self.get_all():
            if product.id == product_id:
                return product
        return None

    def save(self, product: Product) -> Product:
        """Insert or update ``product`` and return the persisted record.

        A product whose id is ``0`` or not present in the table is appended
        with a freshly allocated id; otherwise the row with the matching id is
        replaced in place. The whole table is rewritten either way.
        """

        products = self.get_all()
        index = next((i for i, row in enumerate(products) if product.id and row.id == product.id), None)
        if index is None:
            product = replace(product, id=data_manager.allocate_next_id(row.id for row in products))
            products.append(product)
            log.info("Adding product %d '%s'", product.id, product.name)
        else:
            products[index] = product
            log.info("Updating product %d '%s'", product.id, product.name)

        self._write(products)
        return product

    def delete(self, product_id: int) -> bool:
        """Remove the product with ``product_id``.

        Returns:
            bool: ``True`` when a row was removed. Unknown ids are ignored and
                nothing is written.
        """

        products = self.get_all()
        remaining = [row for row in products if row.id != product_id]
        if len(remaining) == len(products):
            log.info("Delete ignored: product %d does not exist", product_id)
            return False

        self._write(remaining)
        log.info("Deleted product %d", product_id)
        return True

    def _write(self, products: List[Product]) -> None:
        data_manager.overwrite_tables(
            self.path,
            PRODUCTS_FILE,
            {PRODUCTS_TABLE.name: [data_manager.serialize_product(row) for row in products]},
        )
