"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from convention_fulfillment import __version__
from convention_fulfillment.api.errors import error_response
from convention_fulfillment.api.routes import (
    admin_router,
    bookings_router,
    health_router,
    qr_router,
    receipts_router,
    webhooks_router,
)
from convention_fulfillment.config import get_settings
from convention_fulfillment.database import create_tables, dispose_db, init_db
from convention_fulfillment.fulfillment import Fulfillment

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 3600


async def _sweep_forever(fulfillment: Fulfillment) -> None:
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        fulfillment.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build whatever the factory was not given; dispose only what was built here."""
    owns_engine = app.state.session_factory is None
    if owns_engine:
        engine, app.state.session_factory = init_db()
        await create_tables(engine)
    if app.state.fulfillment is None:
        app.state.fulfillment = Fulfillment.from_settings(get_settings())
    sweeper = asyncio.create_task(_sweep_forever(app.state.fulfillment))
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    if owns_engine:
        await dispose_db()


def create_app(
    fulfillment: Fulfillment | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Both arguments default to what the lifespan handler builds from the
    environment; tests pass their own.
    """
    app = FastAPI(
        title="Convention Fulfillment API",
        description="Bookings, payment confirmation, QR codes and receipt delivery",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.fulfillment = fulfillment
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed bodies in the common error envelope."""
        errors = [
            f"{'.'.join(str(part) for part in err['loc'][1:])}: {err['msg']}"
            for err in exc.errors()
        ]
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body", errors=errors)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Last-resort envelope; the traceback goes to the log only."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Something went wrong")

    # Probes and metrics stay at the root for scrapers
    app.include_router(health_router)
    for router in (
        bookings_router,
        webhooks_router,
        receipts_router,
        qr_router,
        admin_router,
    ):
        app.include_router(router, prefix="/api/v1")

    return app


# Target for `uvicorn convention_fulfillment.api.app:app`
app = create_app()
