from __future__ import annotations

import argparse
import asyncio

from wafscope.core.logging import configure_logging
from wafscope.persistence.db import configure_engine, dispose_engine, init_models


async def _init(database_url: str | None) -> None:
    configure_engine(database_url)
    await init_models()
    await dispose_engine()
    print("waf_notes table ready")


def main() -> None:
    # Dev helper; production databases are migrated with alembic.
    parser = argparse.ArgumentParser(description="Create the notes tables")
    parser.add_argument("--database-url", default=None, help="Defaults to DATABASE_URL")
    args = parser.parse_args()
    configure_logging()
    asyncio.run(_init(args.database_url))


if __name__ == "__main__":
    main()
