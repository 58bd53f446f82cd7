#!/usr/bin/env python3
"""Import a supplier inventory export into the catalog database."""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from reefstock import config
from reefstock.errors import CatalogError, InputFormatError, NoValidDataError
from reefstock.logging_config import get_logger, setup_logging
from reefstock.pipeline import attach_images_from_dir, export_catalog, import_file
from reefstock.store import CatalogStore


log = get_logger("reef_import")


def load_env(env_file: Optional[str]) -> None:
    project_env = Path(__file__).resolve().parent.parent / ".env"
    if project_env.exists():
        load_dotenv(project_env)
    if env_file:
        p = Path(env_file)
        if not p.exists():
            raise FileNotFoundError(f"Env file not found: {p}")
        load_dotenv(p, override=True)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    # Early parse to pick up --env-file so env-driven defaults below see it
    env_only = argparse.ArgumentParser(add_help=False)
    env_only.add_argument("--env-file", default="")
    early, _ = env_only.parse_known_args(argv)
    load_env(early.env_file or None)

    parser = argparse.ArgumentParser(
        description="Import a reef inventory CSV into the catalog database.", parents=[env_only]
    )
    parser.add_argument("--input", help="Inventory export (.csv or .txt)")
    parser.add_argument("--db", default=str(config.db_path()), help="Catalog SQLite database path")
    parser.add_argument("--dry-run", action="store_true", help="Parse and report without writing")
    parser.add_argument("--export", default="", help="Write the stored catalog to this CSV path")
    parser.add_argument("--images-dir", default="", help="Attach photos named after catalog items from this directory")
    parser.add_argument("--recompute", action="store_true", help="Re-run the pricing policy over stored items")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)
    if not (args.input or args.export or args.images_dir or args.recompute):
        parser.error("nothing to do: pass --input, --export, --images-dir or --recompute")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    log.debug(f"Catalog database: {args.db} dry_run={args.dry_run}")
    store = CatalogStore(Path(args.db))
    if not args.dry_run:
        store.init()

    if args.input:
        summary = import_file(store, Path(args.input), dry_run=args.dry_run)
        verb = "Parsed" if args.dry_run else "Imported"
        print(
            f"{verb} {summary.items} items in {summary.categories} categories "
            f"from {summary.total_rows} rows ({summary.valid_rows} valid)"
        )
        if not args.dry_run:
            print(f"Repriced {summary.repriced} items")

    if args.dry_run:
        return 0

    if args.images_dir:
        counters = attach_images_from_dir(store, Path(args.images_dir))
        print(f"Attached {counters['attached']} images ({counters['skipped']} skipped, {counters['errors']} errors)")

    if args.recompute:
        print(f"Repriced {store.recompute_prices()} items")

    if args.export:
        count = export_catalog(store, Path(args.export))
        print(f"Wrote {count} items to {args.export}")
    return 0


def run(argv: Optional[List[str]] = None) -> int:
    try:
        return main(argv)
    except (InputFormatError, NoValidDataError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (CatalogError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(run())
