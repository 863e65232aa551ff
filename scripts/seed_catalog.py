#!/usr/bin/env python3
"""Load course definitions into the ledger.

RUN:  python scripts/seed_catalog.py scripts/sample_course.json [more.json ...]

Uses whatever ledger the service would use: PostgreSQL when DATABASE_URL
is set (run ``alembic upgrade head`` first), otherwise the in-memory
store, which is only useful as a dry run of the file format.
"""

from __future__ import annotations

import asyncio
import sys

from academy.core.config import SETTINGS
from academy.core.errors import ConflictError, ValidationError
from academy.core.logging import setup_logging
from academy.services.catalog import parse_definition, read_catalog_file
from academy.services.lifecycle import lifecycle


async def seed(paths: list[str]) -> int:
    failures = 0
    for path in paths:
        try:
            definition = parse_definition(read_catalog_file(path))
            course = await lifecycle.load_course(definition)
        except ConflictError as e:
            print(f"skip  {path}: {e.message}")
            continue
        except ValidationError as e:
            print(f"FAIL  {path}: {e.message}")
            failures += 1
            continue
        print(f"ok    {path}: {course.slug} ({course.id})")
    return failures


def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    if not SETTINGS.database_url:
        print("DATABASE_URL not set: loading into the in-memory ledger (dry run)")
    sys.exit(1 if asyncio.run(seed(sys.argv[1:])) else 0)


if __name__ == "__main__":
    main()
