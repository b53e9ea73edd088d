"""Liveness and readiness probes.

Both are unauthenticated and exempt from rate limiting.
"""

import os
import time

from fastapi import APIRouter, Depends

from ..core.database import check_db
from ..core.logging import get_logger
from ..core.response import ToolgateResponse
from ..runtime import Runtime
from .dependencies import get_runtime

logger = get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/healthz", summary="Liveness probe")
async def liveness_probe(runtime: Runtime = Depends(get_runtime)):
    """Cheap check that the process is up and serving."""
    return ToolgateResponse.success(
        {
            "alive": True,
            "timestamp": time.time(),
            "pid": os.getpid(),
            "version": runtime.settings.version,
        }
    )


@router.get("/readyz", summary="Readiness probe", description="Ready when the registry database answers.")
async def readiness_probe(runtime: Runtime = Depends(get_runtime)):
    start_time = time.time()
    database_ready = await check_db(runtime.engine)
    readiness_status = {
        "ready": database_ready,
        "timestamp": time.time(),
        "checks": {"database": "ready" if database_ready else "not_ready"},
        "execution_time": time.time() - start_time,
    }

    if not database_ready:
        logger.warning("Readiness check failed", extra={"checks": readiness_status["checks"]})
        return ToolgateResponse.error(
            message="Application not ready",
            code="READINESS_CHECK_FAILED",
            details=readiness_status,
            status_code=503,
        )
    return ToolgateResponse.success(readiness_status)
