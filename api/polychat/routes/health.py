import os
import time

import psutil  # type: ignore[import-untyped]
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health_check(
    request: Request,
    probe: bool = Query(False, description="Also send a test translation"),
):
    """
    Health check endpoint that reports system resources and service status.

    Returns "initializing" until the translator and the connection registry
    are wired up by the application lifespan. With ``probe=true`` a real
    translation is attempted and a failure marks the service degraded (503).
    """
    # System metrics
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()

    translator = getattr(request.app.state, "translator", None)
    registry = getattr(request.app.state, "connection_registry", None)

    services = {
        "translation": "healthy" if translator else "initializing",
        "realtime": "healthy" if registry else "initializing",
    }
    overall_status = (
        "healthy"
        if all(state == "healthy" for state in services.values())
        else "initializing"
    )

    if probe and translator is not None:
        if not await translator.test_connection():
            services["translation"] = "degraded"
            overall_status = "degraded"

    body = {
        "status": overall_status,
        "timestamp": int(time.time()),
        "build_id": os.getenv("BUILD_ID", "unknown"),
        "system": {
            "cpu_percent": cpu_percent,
            "memory_percent": memory.percent,
        },
        "services": services,
        "translation": translator.get_stats() if translator else None,
        "realtime": registry.get_stats() if registry else None,
    }
    status_code = 503 if overall_status == "degraded" else 200
    return JSONResponse(content=body, status_code=status_code)


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness probe that checks if the service is ready to handle requests.
    """
    return {"status": "ready"}


@router.get("/health/live")
async def liveness_check():
    """
    Liveness probe that checks if the service is running.
    """
    return {"status": "alive"}
