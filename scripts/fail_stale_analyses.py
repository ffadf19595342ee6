from __future__ import annotations

import argparse
import asyncio

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.core.config import settings
from app.services.analysis_pipeline import fail_stale_analyses


async def _run(older_than_s: int | None) -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    async with Session() as session:
        failed = await fail_stale_analyses(session, older_than_s)
    await engine.dispose()
    print(f"Failed {failed} stale analyses.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Fail outfit analyses stuck in pending/processing.")
    parser.add_argument("--older-than", type=int, default=None, help="Cutoff in seconds (defaults to ANALYSIS_STALE_AFTER_S)")
    args = parser.parse_args()
    asyncio.run(_run(args.older_than))


if __name__ == "__main__":
    main()
