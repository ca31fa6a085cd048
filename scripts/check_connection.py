"""Quick check that the configured database is reachable.

Reads POLYSTORE_DATABASE_URL (or POLYSTORE_DB_PATH for SQLite), connects,
optionally counts the rows of one table, and disconnects.

Usage:
    python scripts/check_connection.py [--table NAME]
"""

import argparse
import asyncio
import logging
import sys

from polystore.config import check_config, get_log_level
from polystore.db.connection import create_connection


async def main() -> int:
    """Connect with the environment's config and report the result."""
    parser = argparse.ArgumentParser(description="Check polystore database connectivity")
    parser.add_argument("--table", default=None, help="Table/collection to count rows in")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, get_log_level()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    config, error = check_config()
    if config is None:
        print(f"  Configuration error: {error}")
        return 1

    print(f"Checking {config.engine} connection...")
    conn = create_connection(config)
    try:
        await conn.connect()
        print("  Connected")
        if args.table:
            total = await conn.count(args.table)
            print(f"  {args.table}: {total} rows")
    except Exception as e:
        print(f"  Error: {e}")
        return 1
    finally:
        await conn.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
