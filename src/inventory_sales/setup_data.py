"""Utility for initializing a data folder for the inventory and sales store.

The module doubles as a script (``inventory-setup``) and as a library used
by tests or other tooling. It can write a starter ``config.ini`` and creates
every table file with header rows only.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from pathlib import Path
from typing import List, Sequence

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .data_manager import TABLE_FILES, Settings


DEFAULT_DATA_FOLDER = "data"
DEFAULT_STORE_NAME = "My Store"


def default_config(
    *,
    data_folder: str = DEFAULT_DATA_FOLDER,
    store_name: str = DEFAULT_STORE_NAME,
) -> configparser.ConfigParser:
    """Build the starter configuration written by :func:`write_config`."""

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep option names as written
    parser["System"] = {
        "DataFolder": data_folder,
        "StoreName": store_name,
        "SchemaVersion": EXPECTED_SCHEMA_VERSION,
    }
    parser["Backup"] = {
        "IntervalDays": str(data_manager.DEFAULT_BACKUP_INTERVAL_DAYS),
        "PollMinutes": str(data_manager.DEFAULT_POLL_MINUTES),
        "MaxBackups": str(data_manager.DEFAULT_MAX_BACKUPS),
    }
    return parser


def write_config(
    config_path: Path,
    *,
    data_folder: str = DEFAULT_DATA_FOLDER,
    store_name: str = DEFAULT_STORE_NAME,
    overwrite: bool = False,
) -> Path:
    """Write a starter ``config.ini``.

    Raises:
        FileExistsError: If ``config_path`` exists and ``overwrite`` is false.
    """

    config_path = Path(config_path).expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        default_config(data_folder=data_folder, store_name=store_name).write(handle)
    log.info("Wrote configuration '%s'", config_path)
    return config_path


def create_data_files(data_folder: Path, *, overwrite: bool = False) -> List[Path]:
    """Create every table file of the store, header rows only.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if any table file is already present, so existing
    data is never reset by accident.
    """

    data_folder = Path(data_folder).expanduser().resolve()
    existing = [
        data_manager.table_file_path(data_folder, table_file)
        for table_file in TABLE_FILES
        if data_manager.table_file_path(data_folder, table_file).exists()
    ]
    if existing and not overwrite:
        names = ", ".join(path.name for path in existing)
        raise FileExistsError(f"Refusing to overwrite existing table files in {data_folder}: {names}")

    for path in existing:
        path.unlink()
        log.warning("Reset table file '%s'", path)

    return data_manager.initialize_data_folder(data_folder)


def load_settings(config_path: Path) -> Settings:
    """Read ``config.ini`` the same way the runtime does."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def run_from_config(config_path: Path, *, overwrite: bool = False) -> List[Path]:
    """Create the data files of the folder named by ``config_path``."""

    settings = load_settings(config_path)
    created = create_data_files(settings.data_folder, overwrite=overwrite)
    settings.backup_folder.mkdir(parents=True, exist_ok=True)
    return created


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(
        prog="inventory-setup",
        description="Initialize the inventory and sales data folder",
    )
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter configuration file first if none exists.",
    )
    parser.add_argument("--store-name", default=DEFAULT_STORE_NAME, help="Store name for a new configuration.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Reset existing table files to header rows only.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Inventory & Sales Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.init_config and not config_path.exists():
            write_config(config_path, store_name=args.store_name)
            print(f"Wrote starter configuration '{config_path}'.")
        created = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --init-config to write a starter configuration.")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] Invalid configuration: {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to reset the existing files if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write data files: {exc}")
        return 1

    print(f"\n[SUCCESS] Created {len(created)} table files in '{created[0].parent}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
