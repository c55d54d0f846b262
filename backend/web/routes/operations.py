"""Operations endpoints: health probe for load balancers and uptime checks."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import Response

from .. import wiring
from ..responses import boundary, private_json
from ..shaping import iso_timestamp

operations_router = APIRouter(tags=["Operations"])
logger = logging.getLogger("buildflow.web.operations")


async def _probe_database() -> dict:
    started = time.perf_counter()
    try:
        await wiring.run_io(wiring.project_repo().ping)
    except Exception as exc:
        logger.error("Health: database probe failed: %s", exc.__class__.__name__)
        return {"status": "unhealthy"}
    return {"status": "healthy", "responseTime": round((time.perf_counter() - started) * 1000)}


async def _probe_rate_limiter() -> dict:
    try:
        await wiring.rate_limiter().ping()
    except Exception as exc:
        logger.warning("Health: rate limiter probe failed: %s", exc.__class__.__name__)
        return {"status": "unhealthy"}
    return {"status": "healthy"}


@operations_router.api_route("/api/health", methods=["GET", "HEAD"])
@boundary("check health")
async def health(request: Request):
    """Liveness plus dependency probes.

    Status:
        - 200 `healthy` when all probes pass, `degraded` when only the rate
          limiter is down.
        - 503 `unhealthy` when the database probe fails.
    """
    started = time.perf_counter()
    database = await _probe_database()
    limiter = await _probe_rate_limiter()
    if database["status"] != "healthy":
        status, code = "unhealthy", 503
    elif limiter["status"] != "healthy":
        status, code = "degraded", 200
    else:
        status, code = "healthy", 200
    if request.method == "HEAD":
        return Response(status_code=code, headers={"Cache-Control": "private, no-store"})
    body = {
        "status": status,
        "timestamp": iso_timestamp(datetime.now(timezone.utc)),
        "responseTime": round((time.perf_counter() - started) * 1000),
        "checks": {"database": database, "rateLimiter": limiter},
    }
    return private_json(body, status_code=code)
