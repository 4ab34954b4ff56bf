from __future__ import annotations

import argparse
import asyncio

from app.agent.executor import build_executor
from app.agent.schema_cache import SchemaCache
from app.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


async def _discover(timeout: float | None) -> str:
    cache = SchemaCache(build_executor())
    if timeout:
        return await cache.get_summary(timeout=timeout)
    return await cache.refresh()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run one schema discovery pass and print the summary.")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up after this many seconds and print the loading placeholder.",
    )
    args = parser.parse_args(argv)

    summary = asyncio.run(_discover(args.timeout))
    logger.info("Schema discovery finished")
    print(summary)


if __name__ == "__main__":
    main()
