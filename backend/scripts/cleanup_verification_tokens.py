"""Delete verification tokens past their retention window.

Standalone maintenance script, meant for a daily cron job. Tokens are
kept for VERIFICATION_TOKEN_RETENTION_DAYS after they expire so support
staff can still look them up, then removed.

Usage:
    cd backend && python -m scripts.cleanup_verification_tokens [--days N]
"""

import argparse
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.services.token_cleanup import cleanup_expired_tokens

logger = logging.getLogger(__name__)


async def run_cleanup(session: AsyncSession, *, retention_days: int) -> int:
    """Delete old tokens and commit.

    Args:
        session: Active async database session.
        retention_days: Days to keep a token after it expires.

    Returns:
        Number of tokens deleted.
    """
    deleted = await cleanup_expired_tokens(session, retention_days=retention_days)
    await session.commit()
    return deleted


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    from ciepi.core.config import settings

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--days",
        type=int,
        default=settings.verification_token_retention_days,
        help="retention window in days (default: %(default)s)",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> None:
    """CLI entry point: run cleanup against the configured database."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from ciepi.core.config import settings

    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with factory() as session:
            deleted = await run_cleanup(session, retention_days=args.days)
    finally:
        await engine.dispose()

    logger.info("Cleanup finished: %d tokens deleted", deleted)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
