"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /readyz: Readiness probe (200 only if the policy configuration was loaded)
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/healthz",
    status_code=200,
    summary="Liveness probe",
)
async def liveness_check() -> Dict[str, Any]:
    """
    Liveness probe - always returns 200 if service is alive.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "avrostash",
        "version": "0.1.0",
    }


@router.get(
    "/readyz",
    summary="Readiness probe",
    description="""
    Readiness probe endpoint.

    Returns 503 while the pipeline is missing, or when the policy
    configuration could not be read and conservative defaults are in use
    (no field would be included).
    """,
)
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Readiness probe - returns 200 only if the pipeline runs on a loaded policy.
    """
    pipeline = getattr(request.app.state, 'pipeline', None)

    if pipeline is None:
        logger.warning("Pipeline not initialized")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "reason": "pipeline_not_initialized",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    checks = {
        "policy_loaded": pipeline.config.loaded,
        "private_address_filter": pipeline.privacy_filter.enabled,
        "cached_schemas": len(pipeline.resolver.cache),
    }

    if not pipeline.config.loaded:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "reason": "policy_defaults_in_use",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }

    response.status_code = status.HTTP_200_OK
    return {
        "status": "ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
