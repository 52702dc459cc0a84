"""Cycle count sessions: expected stock snapshots versus physical counts.

A session starts ``Open`` with one item per product, each carrying the
stock and unit cost of that product at the time the session was created.
Counts are recorded item by item; completing the session makes it
read-only. The engine reads products handed to it but never writes the
catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from . import data_manager, log
from .constants import SessionStatus
from .data_manager import (
    CYCLE_COUNTS_FILE,
    ITEMS_TABLE,
    SESSIONS_TABLE,
    CycleCountItem,
    CycleCountSession,
    Product,
)
from .errors import BusinessRuleViolation, NotFoundError, ValidationError


@dataclass(frozen=True)
class CycleCountSummary:
    """Aggregate view of the items of one session."""

    total: int
    counted: int
    pending: int
    with_variance: int
    total_variance_value: Decimal


def summarize_items(items: Iterable[CycleCountItem]) -> CycleCountSummary:
    """Count progress and sum the variance value of counted items."""

    items = list(items)
    counted = [item for item in items if item.counted]
    return CycleCountSummary(
        total=len(items),
        counted=len(counted),
        pending=len(items) - len(counted),
        with_variance=sum(1 for item in counted if item.has_variance),
        total_variance_value=sum((item.variance_value for item in counted), Decimal("0")),
    )


class CycleCountEngine:
    """State machine over the ``Sessions`` and ``Items`` tables of ``CycleCounts.xlsx``."""

    def __init__(self, data_folder: Path, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.path = data_manager.ensure_table_file(data_folder, CYCLE_COUNTS_FILE)
        self._clock = clock or data_manager.utcnow

    # Reads --------------------------------------------------------------

    def get_all_sessions(self) -> List[CycleCountSession]:
        """Every session, most recently started first."""

        sessions = self._load_sessions()
        return sorted(sessions, key=lambda s: (s.start_date, s.session_id), reverse=True)

    def get_session(self, session_id: int) -> Optional[CycleCountSession]:
        for session in self._load_sessions():
            if session.session_id == session_id:
                return session
        return None

    def get_session_items(self, session_id: int) -> List[CycleCountItem]:
        """Items of ``session_id`` in the order they were seeded."""

        return [item for item in self._load_items() if item.session_id == session_id]

    # Mutations ----------------------------------------------------------

    def create_session(self, products: Iterable[Product], notes: str = "") -> int:
        """Open a new session seeded from ``products`` and return its id.

        The session row and every item row are written in a single replace
        of the workbook.
        """

        sessions = self._load_sessions()
        items = self._load_items()
        session_id = data_manager.allocate_next_id(s.session_id for s in sessions)

        sessions.append(
            CycleCountSession(
                session_id=session_id,
                start_date=self._clock(),
                completed_date=None,
                status=SessionStatus.OPEN,
                notes=notes,
            )
        )
        seeded = [
            CycleCountItem(
                session_id=session_id,
                product_id=product.id,
                product_name=product.name,
                category=product.category,
                expected_qty=product.stock,
                unit_cost=product.unit_cost,
            )
            for product in products
        ]
        items.extend(seeded)

        self._write(sessions=sessions, items=items)
        log.info("Started cycle count session %d with %d items", session_id, len(seeded))
        return session_id

    def save_item_count(self, session_id: int, product_id: int, counted_qty: int, notes: str = "") -> CycleCountItem:
        """Record the physical count for one item and return the updated item.

        Raises:
            ValidationError: If ``counted_qty`` is negative.
            NotFoundError: If the session or the item does not exist.
            BusinessRuleViolation: If the session is already completed.
        """

        if counted_qty < 0:
            raise ValidationError(f"Counted quantity cannot be negative (got {counted_qty})")

        self._require_open(session_id)
        items = self._load_items()
        index = next(
            (i for i, item in enumerate(items) if item.session_id == session_id and item.product_id == product_id),
            None,
        )
        if index is None:
            log.warning("Cycle count item for product %d not found in session %d", product_id, session_id)
            raise NotFoundError(f"Product {product_id} is not part of cycle count session {session_id}")

        updated = replace(items[index], counted_qty=counted_qty, notes=notes, counted=True)
        items[index] = updated
        self._write(items=items)
        log.info(
            "Counted product %d in session %d: expected %d, counted %d",
            product_id,
            session_id,
            updated.expected_qty,
            counted_qty,
        )
        return updated

    def complete_session(self, session_id: int) -> CycleCountSession:
        """Close ``session_id``; pending items stay pending.

        Raises:
            NotFoundError: If the session does not exist.
            BusinessRuleViolation: If the session is already completed.
        """

        sessions = self._load_sessions()
        index = next((i for i, s in enumerate(sessions) if s.session_id == session_id), None)
        if index is None:
            log.warning("Cycle count session %d not found", session_id)
            raise NotFoundError(f"Cycle count session {session_id} does not exist")
        if not sessions[index].is_open:
            raise BusinessRuleViolation(f"Cycle count session {session_id} is already completed")

        completed = replace(sessions[index], completed_date=self._clock(), status=SessionStatus.COMPLETED)
        sessions[index] = completed
        self._write(sessions=sessions)
        log.info("Completed cycle count session %d", session_id)
        return completed

    # Helpers ------------------------------------------------------------

    def _require_open(self, session_id: int) -> CycleCountSession:
        session = self.get_session(session_id)
        if session is None:
            log.warning("Cycle count session %d not found", session_id)
            raise NotFoundError(f"Cycle count session {session_id} does not exist")
        if not session.is_open:
            raise BusinessRuleViolation(f"Cycle count session {session_id} is completed and cannot be changed")
        return session

    def _load_sessions(self) -> List[CycleCountSession]:
        rows = data_manager.load_table(self.path, SESSIONS_TABLE)
        return [data_manager.deserialize_session(row) for row in rows]

    def _load_items(self) -> List[CycleCountItem]:
        rows = data_manager.load_table(self.path, ITEMS_TABLE)
        return [data_manager.deserialize_item(row) for row in rows]

    def _write(
        self,
        *,
        sessions: Optional[List[CycleCountSession]] = None,
        items: Optional[List[CycleCountItem]] = None,
    ) -> None:
        rows_by_table = {}
        if sessions is not None:
            rows_by_table[SESSIONS_TABLE.name] = [data_manager.serialize_session(s) for s in sessions]
        if items is not None:
            rows_by_table[ITEMS_TABLE.name] = [data_manager.serialize_item(i) for i in items]
        data_manager.overwrite_tables(self.path, CYCLE_COUNTS_FILE, rows_by_table)


__all__ = [
    "CycleCountEngine",
    "CycleCountSummary",
    "summarize_items",
]
