"""Shared pytest fixtures and utilities for the inventory and sales tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from inventory_sales import cli, constants, core_logic, data_manager  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
START_MOMENT = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFolder = {data_folder}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Backup]\n"
    "IntervalDays = {interval_days}\n"
    "PollMinutes = 60\n"
    "MaxBackups = {max_backups}\n"
)


class FakeClock:
    """Deterministic clock: every call returns a moment ``step`` after the previous one."""

    def __init__(self, start: datetime = START_MOMENT, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step
        self.calls = 0

    def __call__(self) -> datetime:
        moment = self.current
        self.current = self.current + self.step
        self.calls += 1
        return moment

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_folder: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting on 2024-03-01 09:00 UTC and ticking one second per call."""

    return FakeClock()


@pytest.fixture
def data_folder(tmp_path: Path) -> Path:
    """An initialized data folder with every table file header-only."""

    folder = tmp_path / "data"
    data_manager.initialize_data_folder(folder)
    return folder


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/data-folder bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        interval_days: int = 7,
        max_backups: int = 8,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_folder = bundle_dir / "data"
        folder_entry = "data" if make_relative else str(data_folder)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_folder=folder_entry,
                store_name=store_name,
                schema_version=schema_version,
                interval_days=interval_days,
                max_backups=max_backups,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_folder=data_folder.resolve(),
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path, clock: FakeClock) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file, clock=clock)
    core_logic.ensure_schema_version(context)
    return context


def make_product(**overrides) -> data_manager.Product:
    """Build a product with sensible defaults for repository tests."""

    values = {
        "id": 0,
        "name": "Widget",
        "category": "Hardware",
        "unit_cost": Decimal("2.50"),
        "price": Decimal("4.00"),
        "stock": 10,
        "min_stock": 2,
    }
    values.update(overrides)
    return data_manager.Product(**values)


@pytest.fixture
def product_factory() -> Callable[..., data_manager.Product]:
    return make_product


def add_sample_product(context: core_logic.RuntimeContext, **overrides) -> data_manager.Product:
    """Add a product through the business layer so a New Product baseline is written."""

    values = {
        "name": "Widget",
        "category": "Hardware",
        "unit_cost": Decimal("2.50"),
        "price": Decimal("4.00"),
        "stock": 10,
        "min_stock": 2,
    }
    values.update(overrides)
    return core_logic.add_product(context, core_logic.ProductCommand(**values))


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="inventory-cli", description="Inventory CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
