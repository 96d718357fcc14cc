#!/usr/bin/env python3
"""Create the marketplace document table in a Postgres database."""

from __future__ import annotations

import argparse
import asyncio
import os

from marketplace.services.repository import SCHEMA_SQL, PostgresDocumentStore


async def _apply(database_url: str) -> None:
    store = PostgresDocumentStore(
        database_url=database_url,
        min_pool_size=1,
        max_pool_size=1,
        command_timeout_seconds=30.0,
        notification_channel="marketplace_documents",
    )
    try:
        await store.ensure_schema()
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply the marketplace document-store schema.")
    parser.add_argument(
        "--database-url",
        default=os.getenv("MKT_DATABASE_URL"),
        help="Postgres DSN (defaults to MKT_DATABASE_URL)",
    )
    parser.add_argument(
        "--print-sql",
        action="store_true",
        help="Print the schema SQL instead of applying it",
    )
    args = parser.parse_args()

    if args.print_sql:
        print(SCHEMA_SQL)
        return
    if not args.database_url:
        parser.error("--database-url or MKT_DATABASE_URL is required")

    asyncio.run(_apply(args.database_url))
    print("document store schema applied", flush=True)


if __name__ == "__main__":
    main()
