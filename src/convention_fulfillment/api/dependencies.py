"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from convention_fulfillment.fulfillment import Fulfillment
from convention_fulfillment.security.rate_limit import client_ip_from_headers


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_fulfillment(request: Request) -> Fulfillment:
    """The facade wired at application startup."""
    return request.app.state.fulfillment


def get_client_ip(request: Request) -> str:
    """Caller IP, honouring proxy headers."""
    peer = request.client.host if request.client else None
    return client_ip_from_headers(request.headers, peer)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
FulfillmentDep = Annotated[Fulfillment, Depends(get_fulfillment)]
ClientIP = Annotated[str, Depends(get_client_ip)]
