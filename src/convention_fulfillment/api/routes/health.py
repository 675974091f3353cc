"""Probes and the metrics scrape endpoint, mounted at the root."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from convention_fulfillment.api.dependencies import DbSession, FulfillmentDep
from convention_fulfillment.gateways.paystack_stub import StubPaymentGateway
from convention_fulfillment.gateways.wasender_stub import StubMessagingProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    database: str
    payments: str
    messaging: str


async def _database_reachable(db: DbSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Booking store unreachable: %s", exc)
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DbSession, fulfillment: FulfillmentDep) -> HealthResponse:
    """Store connectivity plus which providers are live and which are stubbed.

    A failing store reports `degraded` with status 200 so that load balancers
    keep routing webhooks, which are acknowledged even when work fails.
    """
    reachable = await _database_reachable(db)
    stub_payments = isinstance(fulfillment.gateway, StubPaymentGateway)
    stub_messaging = isinstance(fulfillment.messenger, StubMessagingProvider)
    return HealthResponse(
        status="healthy" if reachable else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if reachable else "unhealthy",
        payments="stub" if stub_payments else "paystack",
        messaging="stub" if stub_messaging else "wasender",
    )


@router.get("/ready")
async def readiness_check() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/metrics")
async def metrics(
    fulfillment: FulfillmentDep,
    output: Annotated[str, Query(alias="format", pattern="^(prometheus|json)$")] = "prometheus",
) -> Response:
    """Counters and gauges folded from domain events since startup."""
    snapshot = fulfillment.metrics.snapshot()
    if output == "json":
        return JSONResponse(snapshot.to_dict())
    return PlainTextResponse(snapshot.to_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)
