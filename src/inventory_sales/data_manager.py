"""Data access layer for the inventory and sales store.

This module provides the low-level helpers that read from and write to the
``.xlsx`` table files kept in the data folder. Business logic belongs
elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Table file lifecycle: creating header-only files, opening them, and
   persisting them through a write-to-temp-then-replace step.
3. Whole-table operations: loading every record of a named table and
   overwriting one or more tables of a file in a single replace. There is no
   incremental row write; every mutation is "read the table, compute the new
   table, write the table".
4. Record codecs: converting dataclasses to and from worksheet rows.
"""


from __future__ import annotations

import configparser
import os
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import NOT_COUNTED, SessionStatus, StockAction, TableName
from .errors import StorageIOError


CONFIG_FILE_NAME = "config.ini"
DEFAULT_BACKUP_INTERVAL_DAYS = 7
DEFAULT_POLL_MINUTES = 60
DEFAULT_MAX_BACKUPS = 8


@dataclass(frozen=True)
class Settings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_folder: Path
    store_name: str
    schema_version: str
    backup_folder: Path
    backup_interval: timedelta = timedelta(days=DEFAULT_BACKUP_INTERVAL_DAYS)
    poll_interval: timedelta = timedelta(minutes=DEFAULT_POLL_MINUTES)
    max_backups: int = DEFAULT_MAX_BACKUPS


@dataclass(frozen=True)
class TableSpec:
    """Column layout of one named table (worksheet)."""

    name: str
    columns: tuple[str, ...]
    key_column: str

    @property
    def key_index(self) -> int:
        return self.columns.index(self.key_column)


@dataclass(frozen=True)
class TableFile:
    """A workbook on disk holding one or more tables that are replaced together."""

    file_name: str
    tables: tuple[TableSpec, ...]

    def table(self, name: str) -> TableSpec:
        for spec in self.tables:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown table '{name}' in {self.file_name}")


PRODUCTS_TABLE = TableSpec(
    name=TableName.PRODUCTS.value,
    columns=("ID", "Name", "Category", "UnitCost", "Price", "Stock", "MinStock"),
    key_column="ID",
)
SALES_TABLE = TableSpec(
    name=TableName.SALES.value,
    columns=("ID", "ProductId", "ProductName", "Quantity", "Price", "Total", "Date"),
    key_column="ID",
)
STOCK_MOVEMENTS_TABLE = TableSpec(
    name=TableName.STOCK_MOVEMENTS.value,
    columns=(
        "ID",
        "ProductId",
        "ProductName",
        "Action",
        "Quantity",
        "StockBefore",
        "StockAfter",
        "Reason",
        "Date",
    ),
    key_column="ID",
)
AUDIT_TRAIL_TABLE = TableSpec(
    name=TableName.AUDIT_TRAIL.value,
    columns=(
        "ID",
        "Timestamp",
        "Action",
        "Entity",
        "EntityId",
        "EntityName",
        "Details",
        "OldValue",
        "NewValue",
    ),
    key_column="ID",
)
SESSIONS_TABLE = TableSpec(
    name=TableName.SESSIONS.value,
    columns=("SessionId", "StartDate", "CompletedDate", "Status", "Notes"),
    key_column="SessionId",
)
ITEMS_TABLE = TableSpec(
    name=TableName.ITEMS.value,
    columns=(
        "SessionId",
        "ProductId",
        "ProductName",
        "Category",
        "ExpectedQty",
        "CountedQty",
        "Variance",
        "UnitCost",
        "VarianceValue",
        "Notes",
        "Counted",
    ),
    key_column="SessionId",
)

PRODUCTS_FILE = TableFile("Products.xlsx", (PRODUCTS_TABLE,))
SALES_FILE = TableFile("Sales.xlsx", (SALES_TABLE,))
STOCK_MOVEMENTS_FILE = TableFile("StockMovements.xlsx", (STOCK_MOVEMENTS_TABLE,))
AUDIT_TRAIL_FILE = TableFile("AuditTrail.xlsx", (AUDIT_TRAIL_TABLE,))
CYCLE_COUNTS_FILE = TableFile("CycleCounts.xlsx", (SESSIONS_TABLE, ITEMS_TABLE))

TABLE_FILES: tuple[TableFile, ...] = (
    PRODUCTS_FILE,
    SALES_FILE,
    STOCK_MOVEMENTS_FILE,
    AUDIT_TRAIL_FILE,
    CYCLE_COUNTS_FILE,
)


@dataclass(frozen=True)
class Product:
    """In-memory view of a row from the ``Products`` table."""

    id: int
    name: str
    category: str
    unit_cost: Decimal
    price: Decimal
    stock: int
    min_stock: int

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock


@dataclass(frozen=True)
class Sale:
    """In-memory view of a row from the ``Sales`` table."""

    id: int
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    timestamp: datetime

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class StockMovement:
    """In-memory view of a row from the ``StockMovements`` table."""

    id: int
    product_id: int
    product_name: str
    action: StockAction
    quantity: int
    stock_before: int
    stock_after: int
    reason: str
    timestamp: datetime

    @property
    def is_consistent(self) -> bool:
        """Whether ``stock_after`` follows from ``stock_before`` and the action sign."""

        return self.stock_after == self.stock_before + self.action.sign * self.quantity


@dataclass(frozen=True)
class AuditEntry:
    """In-memory view of a row from the ``AuditTrail`` table."""

    id: int
    timestamp: datetime
    action: str
    entity: str
    entity_id: int
    entity_name: str
    details: str = ""
    old_value: str = ""
    new_value: str = ""


@dataclass(frozen=True)
class CycleCountSession:
    """In-memory view of a row from the ``Sessions`` table."""

    session_id: int
    start_date: datetime
    completed_date: Optional[datetime]
    status: SessionStatus
    notes: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is SessionStatus.OPEN


@dataclass(frozen=True)
class CycleCountItem:
    """In-memory view of a row from the ``Items`` table.

    ``counted`` is the authoritative flag. ``counted_qty`` holds the
    ``NOT_COUNTED`` sentinel exactly when ``counted`` is false; the
    constructor refuses any other combination. Variance figures are derived
    from the stored quantities and the unit cost snapshot.
    """

    session_id: int
    product_id: int
    product_name: str
    category: str
    expected_qty: int
    unit_cost: Decimal
    counted_qty: int = NOT_COUNTED
    notes: str = ""
    counted: bool = False

    def __post_init__(self) -> None:
        if self.counted and self.counted_qty < 0:
            raise ValueError("A counted item requires a non-negative counted quantity")
        if not self.counted and self.counted_qty != NOT_COUNTED:
            raise ValueError("An uncounted item must carry the not-counted sentinel")

    @property
    def variance(self) -> int:
        return self.counted_qty - self.expected_qty if self.counted else 0

    @property
    def variance_value(self) -> Decimal:
        return self.unit_cost * self.variance

    @property
    def has_variance(self) -> bool:
        return self.counted and self.variance != 0

    @property
    def variance_status(self) -> str:
        if not self.counted:
            return "Pending"
        if self.variance == 0:
            return "OK"
        return "Overage" if self.variance > 0 else "Shortage"


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where the data lives.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> Settings:
    """Convert a ``ConfigParser`` into strongly typed :class:`Settings`.

    ``[System]`` entries are mandatory. The ``[Backup]`` section is optional
    and falls back to a weekly backup, an hourly poll and eight retained
    archives. Relative folders are anchored at ``base_path`` (the directory
    of the config file) or the current working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor directory for relative paths.

    Returns:
        Settings: Immutable settings with resolved folders.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric backup option is not a positive number.
    """

    try:
        data_folder_raw = parser.get("System", "DataFolder")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    data_folder = _resolve_path(data_folder_raw, base_path)
    backup_folder_raw = parser.get("Backup", "Folder", fallback="").strip()
    backup_folder = (
        _resolve_path(backup_folder_raw, base_path)
        if backup_folder_raw
        else data_folder / "Backups"
    )

    interval_days = parser.getfloat("Backup", "IntervalDays", fallback=DEFAULT_BACKUP_INTERVAL_DAYS)
    poll_minutes = parser.getfloat("Backup", "PollMinutes", fallback=DEFAULT_POLL_MINUTES)
    max_backups = parser.getint("Backup", "MaxBackups", fallback=DEFAULT_MAX_BACKUPS)
    if interval_days <= 0 or poll_minutes <= 0 or max_backups <= 0:
        raise ValueError("Backup IntervalDays, PollMinutes and MaxBackups must be positive")

    return Settings(
        data_folder=data_folder,
        store_name=store_name,
        schema_version=schema_version,
        backup_folder=backup_folder,
        backup_interval=timedelta(days=interval_days),
        poll_interval=timedelta(minutes=poll_minutes),
        max_backups=max_backups,
    )


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_path / path
    return path.resolve()


def table_file_path(data_folder: Path, table_file: TableFile) -> Path:
    """Return the on-disk location of ``table_file`` inside ``data_folder``."""

    return Path(data_folder) / table_file.file_name


def ensure_table_file(data_folder: Path, table_file: TableFile) -> Path:
    """Create ``table_file`` with header-only tables if it does not exist yet.

    Existing files are left untouched. The new file goes through the same
    temp-then-replace path as every other write.

    Returns:
        Path: Location of the (possibly new) table file.
    """

    path = table_file_path(data_folder, table_file)
    if path.exists():
        return path

    workbook = _new_workbook()
    for spec in table_file.tables:
        _write_sheet(workbook, spec, [])
    save_workbook(workbook, path)
    log.info("Created table file '%s' with tables %s", path, ", ".join(t.name for t in table_file.tables))
    return path


def initialize_data_folder(data_folder: Path) -> list[Path]:
    """Ensure every table file of the store exists inside ``data_folder``."""

    Path(data_folder).mkdir(parents=True, exist_ok=True)
    return [ensure_table_file(data_folder, table_file) for table_file in TABLE_FILES]


def open_workbook(path: Path) -> Workbook:
    """Open a table file and return a live ``openpyxl`` workbook.

    Raises:
        StorageIOError: If the file is missing, locked, or not a readable
            workbook.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise StorageIOError(f"Table file not found: {path}", path=path)
    try:
        return openpyxl.load_workbook(path)
    except (OSError, zipfile.BadZipFile, InvalidFileException, KeyError, ValueError) as exc:
        log.error("Unable to open table file '%s': %s", path, exc)
        raise StorageIOError(f"Unable to read table file {path}: {exc}", path=path) from exc


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` at ``destination`` as an all-or-nothing replace.

    The workbook is serialized into a temporary file next to the destination
    and then moved over it with :func:`os.replace`. A failure at any point
    leaves the previous file intact and removes the temporary file.

    Raises:
        StorageIOError: If the temporary file cannot be written or moved.
    """

    dest = Path(destination).expanduser().resolve()
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=".tmp", dir=dest.parent)
        os.close(fd)
    except OSError as exc:
        raise StorageIOError(f"Unable to prepare write of {dest}: {exc}", path=dest) from exc

    tmp_path = Path(tmp_name)
    try:
        workbook.save(tmp_path)
        os.replace(tmp_path, dest)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        log.error("Unable to write table file '%s': %s", dest, exc)
        raise StorageIOError(f"Unable to write table file {dest}: {exc}", path=dest) from exc


def load_table(path: Path, table: TableSpec) -> list[tuple]:
    """Return every data row of ``table`` stored in the file at ``path``.

    The header row is validated and skipped. Rows whose key cell is empty are
    treated as blank or deleted rows and skipped as well. Each returned tuple
    has exactly one value per declared column.

    Raises:
        StorageIOError: If the file cannot be read or the table is missing or
            has an unexpected header.
    """

    workbook = open_workbook(path)
    rows = _read_sheet(workbook, table, path)
    log.debug("Loaded %d rows from table '%s'", len(rows), table.name)
    return rows


def overwrite_tables(path: Path, table_file: TableFile, rows_by_table: Mapping[str, Iterable[Sequence[object]]]) -> None:
    """Replace the contents of one or more tables of ``table_file``.

    Tables named in ``rows_by_table`` are rewritten with a header plus the
    given rows; other tables of the same file are carried over unchanged. The
    whole file is then replaced in a single step, so tables sharing a file
    change together or not at all.

    Raises:
        KeyError: If ``rows_by_table`` names a table not in ``table_file``.
        StorageIOError: If the existing file cannot be read or the new one
            cannot be written.
    """

    for name in rows_by_table:
        table_file.table(name)

    path = Path(path)
    existing: Optional[Workbook] = None
    workbook = _new_workbook()
    for spec in table_file.tables:
        rows = rows_by_table.get(spec.name)
        if rows is None:
            if existing is None:
                existing = open_workbook(path)
            rows = _read_sheet(existing, spec, path)
        _write_sheet(workbook, spec, rows)

    save_workbook(workbook, path)
    log.debug("Rewrote %s (%s)", path.name, ", ".join(rows_by_table))


def _new_workbook() -> Workbook:
    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    return workbook


def _write_sheet(workbook: Workbook, spec: TableSpec, rows: Iterable[Sequence[object]]) -> None:
    sheet = workbook.create_sheet(title=spec.name)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(spec.columns, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    for row in rows:
        sheet.append(list(row))


def _read_sheet(workbook: Workbook, spec: TableSpec, path: Path) -> list[tuple]:
    if spec.name not in workbook.sheetnames:
        raise StorageIOError(f"Table '{spec.name}' missing from {path}", path=path, table=spec.name)

    sheet = workbook[spec.name]
    width = len(spec.columns)
    header = next(sheet.iter_rows(min_row=1, max_row=1, values_only=True), ())
    if tuple(header[:width]) != spec.columns:
        raise StorageIOError(
            f"Table '{spec.name}' in {path} has an unexpected header: {header}",
            path=path,
            table=spec.name,
        )

    rows: list[tuple] = []
    key_index = spec.key_index
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        key = raw[key_index] if len(raw) > key_index else None
        # blank key cell marks an empty or deleted row
        if key is None or (isinstance(key, str) and not key.strip()):
            continue
        padded = tuple(raw) + (None,) * (width - len(raw))
        rows.append(padded)
    return rows


def allocate_next_id(existing_ids: Iterable[int]) -> int:
    """Return ``max(existing_ids) + 1``, or ``1`` for an empty table."""

    return max(existing_ids, default=0) + 1


def utcnow() -> datetime:
    """Default clock for every component that stamps records."""

    return datetime.now(UTC)


def format_timestamp(moment: datetime) -> str:
    """Serialize ``moment`` as ISO-8601 text, assuming UTC for naive values."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.isoformat()


def parse_timestamp(raw: object) -> Optional[datetime]:
    """Parse a stored timestamp cell; blank cells yield ``None``.

    Raises:
        ValueError: If the cell holds text that is not an ISO-8601 timestamp.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    moment = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw).strip())
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def _to_int(raw: object, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return int(raw)
    value = Decimal(str(raw))
    if not value.is_finite() or value != value.to_integral_value():
        raise ValueError(f"expected a whole number, got {raw!r}")
    return int(value)


def _to_decimal(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    return Decimal(str(raw))


def _to_text(raw: object) -> str:
    return "" if raw is None else str(raw)


def _to_bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return bool(raw)


def _decode(table: TableSpec, raw_row: Sequence[object], decoder):
    try:
        return decoder(raw_row)
    except (ValueError, TypeError, InvalidOperation) as exc:
        raise StorageIOError(
            f"Malformed row in table '{table.name}': {list(raw_row)} ({exc})",
            table=table.name,
        ) from exc


def serialize_product(record: Product) -> list[object]:
    """Convert a product into ``[ID, Name, Category, UnitCost, Price, Stock, MinStock]``."""

    return [
        record.id,
        record.name,
        record.category,
        record.unit_cost,
        record.price,
        record.stock,
        record.min_stock,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw ``Products`` row into a :class:`Product`.

    Numeric cells are normalized into ``int`` and :class:`~decimal.Decimal`
    values; text cells are coerced to ``str`` so that spreadsheet auto-typing
    (for example a numeric category) does not leak through.

    Raises:
        StorageIOError: If a cell cannot be converted.
    """

    def _decode_row(row: Sequence[object]) -> Product:
        id_, name, category, unit_cost, price, stock, min_stock = row
        return Product(
            id=_to_int(id_),
            name=_to_text(name),
            category=_to_text(category),
            unit_cost=_to_decimal(unit_cost),
            price=_to_decimal(price),
            stock=_to_int(stock),
            min_stock=_to_int(min_stock),
        )

    return _decode(PRODUCTS_TABLE, raw_row, _decode_row)


def serialize_sale(record: Sale) -> list[object]:
    """Convert a sale into the ``Sales`` column order, including the derived total."""

    return [
        record.id,
        record.product_id,
        record.product_name,
        record.quantity,
        record.price,
        record.total,
        format_timestamp(record.timestamp),
    ]


def deserialize_sale(raw_row: Sequence[object]) -> Sale:
    """Convert a raw ``Sales`` row into a :class:`Sale`; the stored total is recomputed."""

    def _decode_row(row: Sequence[object]) -> Sale:
        id_, product_id, product_name, quantity, price, _total, date = row
        return Sale(
            id=_to_int(id_),
            product_id=_to_int(product_id),
            product_name=_to_text(product_name),
            quantity=_to_int(quantity),
            price=_to_decimal(price),
            timestamp=_require_timestamp(date),
        )

    return _decode(SALES_TABLE, raw_row, _decode_row)


def serialize_movement(record: StockMovement) -> list[object]:
    """Convert a stock movement into the ``StockMovements`` column order."""

    return [
        record.id,
        record.product_id,
        record.product_name,
        record.action.value,
        record.quantity,
        record.stock_before,
        record.stock_after,
        record.reason,
        format_timestamp(record.timestamp),
    ]


def deserialize_movement(raw_row: Sequence[object]) -> StockMovement:
    """Convert a raw ``StockMovements`` row into a :class:`StockMovement`."""

    def _decode_row(row: Sequence[object]) -> StockMovement:
        id_, product_id, product_name, action, quantity, before, after, reason, date = row
        return StockMovement(
            id=_to_int(id_),
            product_id=_to_int(product_id),
            product_name=_to_text(product_name),
            action=StockAction(_to_text(action)),
            quantity=_to_int(quantity),
            stock_before=_to_int(before),
            stock_after=_to_int(after),
            reason=_to_text(reason),
            timestamp=_require_timestamp(date),
        )

    return _decode(STOCK_MOVEMENTS_TABLE, raw_row, _decode_row)


def serialize_audit_entry(record: AuditEntry) -> list[object]:
    """Convert an audit entry into the ``AuditTrail`` column order."""

    return [
        record.id,
        format_timestamp(record.timestamp),
        record.action,
        record.entity,
        record.entity_id,
        record.entity_name,
        record.details,
        record.old_value,
        record.new_value,
    ]


def deserialize_audit_entry(raw_row: Sequence[object]) -> AuditEntry:
    """Convert a raw ``AuditTrail`` row into an :class:`AuditEntry`."""

    def _decode_row(row: Sequence[object]) -> AuditEntry:
        id_, timestamp, action, entity, entity_id, entity_name, details, old_value, new_value = row
        return AuditEntry(
            id=_to_int(id_),
            timestamp=_require_timestamp(timestamp),
            action=_to_text(action),
            entity=_to_text(entity),
            entity_id=_to_int(entity_id),
            entity_name=_to_text(entity_name),
            details=_to_text(details),
            old_value=_to_text(old_value),
            new_value=_to_text(new_value),
        )

    return _decode(AUDIT_TRAIL_TABLE, raw_row, _decode_row)


def serialize_session(record: CycleCountSession) -> list[object]:
    """Convert a cycle count session into the ``Sessions`` column order."""

    return [
        record.session_id,
        format_timestamp(record.start_date),
        format_timestamp(record.completed_date) if record.completed_date else "",
        record.status.value,
        record.notes,
    ]


def deserialize_session(raw_row: Sequence[object]) -> CycleCountSession:
    """Convert a raw ``Sessions`` row into a :class:`CycleCountSession`."""

    def _decode_row(row: Sequence[object]) -> CycleCountSession:
        session_id, start_date, completed_date, status, notes = row
        return CycleCountSession(
            session_id=_to_int(session_id),
            start_date=_require_timestamp(start_date),
            completed_date=parse_timestamp(completed_date),
            status=SessionStatus(_to_text(status) or SessionStatus.OPEN.value),
            notes=_to_text(notes),
        )

    return _decode(SESSIONS_TABLE, raw_row, _decode_row)


def serialize_item(record: CycleCountItem) -> list[object]:
    """Convert a cycle count item into the ``Items`` column order.

    ``Variance`` and ``VarianceValue`` are written for readers of the file;
    they are recomputed from the quantities when the row is loaded again.
    """

    return [
        record.session_id,
        record.product_id,
        record.product_name,
        record.category,
        record.expected_qty,
        record.counted_qty,
        record.variance,
        record.unit_cost,
        record.variance_value,
        record.notes,
        record.counted,
    ]


def deserialize_item(raw_row: Sequence[object]) -> CycleCountItem:
    """Convert a raw ``Items`` row into a :class:`CycleCountItem`.

    The ``Counted`` flag decides whether the stored ``CountedQty`` is used; an
    uncounted row always comes back with the sentinel.
    """

    def _decode_row(row: Sequence[object]) -> CycleCountItem:
        (
            session_id,
            product_id,
            product_name,
            category,
            expected_qty,
            counted_qty,
            _variance,
            unit_cost,
            _variance_value,
            notes,
            counted_raw,
        ) = row
        counted = _to_bool(counted_raw)
        return CycleCountItem(
            session_id=_to_int(session_id),
            product_id=_to_int(product_id),
            product_name=_to_text(product_name),
            category=_to_text(category),
            expected_qty=_to_int(expected_qty),
            unit_cost=_to_decimal(unit_cost),
            counted_qty=_to_int(counted_qty, NOT_COUNTED) if counted else NOT_COUNTED,
            notes=_to_text(notes),
            counted=counted,
        )

    return _decode(ITEMS_TABLE, raw_row, _decode_row)


def _require_timestamp(raw: object) -> datetime:
    moment = parse_timestamp(raw)
    if moment is None:
        raise ValueError("timestamp cell is empty")
    return moment
