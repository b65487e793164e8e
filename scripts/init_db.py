#!/usr/bin/env python3
"""Print or apply the contributions/users schema bootstrap."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from opentelemetry import trace

from snippet_review.core.config import Settings, get_settings
from snippet_review.core.telemetry import telemetry_session
from snippet_review.services.postgres_store import SCHEMA_STATEMENTS
from snippet_review.services.repository import open_repository

logger = logging.getLogger("init_db")
tracer = trace.get_tracer("init_db")


def render_sql() -> str:
    statements = [statement.strip() + ";" for statement in SCHEMA_STATEMENTS]
    return "-- snippet-review schema bootstrap\n\n" + "\n\n".join(statements) + "\n"


async def apply_schema(settings: Settings) -> bool:
    with tracer.start_as_current_span("init_db.apply_schema"):
        async with open_repository(settings) as repository:
            if repository.last_init_error is not None:
                logger.error("schema bootstrap failed: %s", repository.last_init_error.__cause__)
                return False
    logger.info("schema bootstrap complete")
    return True


def main() -> None:
    parser = argparse.ArgumentParser(description="Bootstrap the snippet-review database schema.")
    parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the DDL instead of applying it to SR_DATABASE_URL",
    )
    args = parser.parse_args()

    if args.print_only:
        print(render_sql())
        return

    settings = get_settings()
    with telemetry_session(settings):
        applied = asyncio.run(apply_schema(settings))
    if not applied:
        sys.exit(1)


if __name__ == "__main__":
    main()
