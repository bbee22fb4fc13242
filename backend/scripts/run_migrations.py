#!/usr/bin/env python
"""
scripts/run_migrations.py
--------------------------
Creates the saved-plan table and its refresh indexes (db/schema.sql).

    python scripts/run_migrations.py            apply in one transaction
    python scripts/run_migrations.py --dry-run  list the statements only
    python scripts/run_migrations.py --check    report whether saved_plans exists

Exits 1 when the database is unreachable or a statement fails.  The schema
uses IF NOT EXISTS throughout, so re-running is harmless.
"""

from __future__ import annotations

import argparse
import pathlib
import re
import sys

_BACKEND_DIR = pathlib.Path(__file__).resolve().parent.parent
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

import psycopg2

import config
from db.connection import close_pool, get_conn

SCHEMA_FILE = _BACKEND_DIR / "db" / "schema.sql"

_COMMENT_RE = re.compile(r"--[^\n]*")


def load_statements(path: pathlib.Path = SCHEMA_FILE) -> list[str]:
    """SQL statements of the schema file, comments dropped, in file order."""
    sql = _COMMENT_RE.sub("", path.read_text(encoding="utf-8"))
    return [" ".join(stmt.split()) for stmt in sql.split(";") if stmt.strip()]


def apply(statements: list[str]) -> None:
    with get_conn() as conn, conn.cursor() as cur:
        for n, stmt in enumerate(statements, 1):
            try:
                cur.execute(stmt)
            except psycopg2.Error as exc:
                print(f"  [✗] #{n} {stmt[:60]}  ->  {exc.pgerror or exc}")
                raise
            print(f"  [✓] #{n} {stmt[:60]}")


def table_exists(name: str = "saved_plans") -> bool:
    with get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT to_regclass(%s)", (name,))
        return cur.fetchone()[0] is not None


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create the saved-plan schema.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="List statements without executing them.")
    mode.add_argument("--check", action="store_true", help="Only report whether saved_plans exists.")
    args = parser.parse_args(argv)

    target = f"{config.POSTGRES_DB} @ {config.POSTGRES_HOST}:{config.POSTGRES_PORT}"
    try:
        if args.check:
            found = table_exists()
            print(f"[migrations] saved_plans {'present' if found else 'missing'} in {target}")
            return 0 if found else 1

        statements = load_statements()
        print(f"[migrations] {len(statements)} statements from {SCHEMA_FILE.name} -> {target}")
        if args.dry_run:
            for n, stmt in enumerate(statements, 1):
                print(f"  [{n:02d}] {stmt[:80]}")
            return 0

        apply(statements)
        print("[migrations] Schema up to date.")
        return 0
    except (OSError, psycopg2.Error) as exc:
        print(f"[migrations] ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        close_pool()


if __name__ == "__main__":
    sys.exit(main())
