import os
import time

import psutil  # type: ignore[import-untyped]
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint that monitors system resources and service status.

    Returns "initializing" status until the chat pipeline is built.
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")

    pipeline = getattr(request.app.state, "pipeline", None)
    pipeline_status = "healthy" if pipeline is not None else "initializing"

    services = {"pipeline": pipeline_status}
    if pipeline is not None and pipeline.document_store is not None:
        services["documents"] = pipeline.document_store.count()

    return {
        "status": pipeline_status,
        "timestamp": int(time.time()),
        "build_id": os.getenv("BUILD_ID", "unknown"),
        "system": {
            "cpu_percent": cpu_percent,
            "memory_percent": memory.percent,
            "disk_percent": disk.percent,
        },
        "services": services,
    }


@router.get("/health/cache")
async def cache_health(request: Request):
    """Hit/miss and size statistics for the translation and search caches."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return {"status": "initializing"}
    stats = await pipeline.get_cache_stats()
    return {"status": "ok", **stats}
