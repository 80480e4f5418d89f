#!/usr/bin/env python3
"""
CLI utility to create the reliability tables and indexes.

Usage:
    UV_CACHE_DIR=/tmp/uv uv run scripts/init_db.py
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from assetflow_core.infrastructure.schema import SCHEMA_STATEMENTS, ensure_schema
from assetflow_core.logging import setup_logging


def main():
    parser = argparse.ArgumentParser(description="Create reliability tables and indexes")
    parser.add_argument(
        "--print-sql",
        action="store_true",
        help="Print the DDL instead of applying it",
    )
    args = parser.parse_args()

    if args.print_sql:
        print(";\n".join(statement.strip() for statement in SCHEMA_STATEMENTS) + ";")
        return

    setup_logging()
    ensure_schema()


if __name__ == "__main__":
    main()
