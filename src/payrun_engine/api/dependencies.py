"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.database import init_db


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> str | None:
    """Extract the acting user from the X-Actor-ID header, if sent."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ActorId = Annotated[str | None, Depends(get_actor_id)]
