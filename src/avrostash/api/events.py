"""
Event projection API endpoints.

Main endpoint: POST /v1/events:project
"""

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from ..core.exceptions import AvroStashException
from ..core.pipeline import ProcessingPipeline
from ..models.event import ErrorResponse, ProjectRequest, ProjectResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


async def get_processing_pipeline(request: Request) -> ProcessingPipeline:
    """Dependency to get the processing pipeline from app state."""
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        raise AvroStashException(
            "Processing pipeline not initialized",
            status_code=503,
            error_code="service_unavailable",
        )
    return pipeline


@router.post(
    "/events:project",
    response_model=ProjectResponse,
    status_code=200,
    responses={
        422: {"description": "Invalid request"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
        503: {"model": ErrorResponse, "description": "Pipeline not initialized"},
    },
    summary="Project events into Logstash documents",
    description="""
    Project a batch of Avro events into Logstash formatted documents.

    **Processing Pipeline:**
    1. Private address filtering (when IgnoreRFC1918 is configured)
    2. Schema resolution (literal header, or cached hash + backing file)
    3. Avro decoding
    4. Field policy and transforms (@fields, geo points, @timestamp, @source)

    Events without a usable schema or body are dropped and counted;
    they never fail the batch.
    """,
)
async def project_events(
    request: ProjectRequest,
    pipeline: ProcessingPipeline = Depends(get_processing_pipeline),
) -> ProjectResponse:
    """
    Project events.

    Schema file reads may wait between retries, so the batch runs in the
    thread pool.
    """
    request_id = str(uuid.uuid4())
    start_time = datetime.now(timezone.utc)

    logger.info(
        "Processing projection request",
        request_id=request_id,
        events_count=len(request.events),
    )

    events = [payload.to_event() for payload in request.events]
    result = await run_in_threadpool(pipeline.process_batch, events, request_id)

    logger.info(
        "Projection request completed",
        request_id=request_id,
        documents=len(result.documents),
        processing_time_ms=result.processing_time_ms,
    )

    return ProjectResponse(
        documents=result.documents,
        events_received=result.events_received,
        events_filtered=result.events_filtered,
        events_dropped=result.events_dropped,
        request_id=request_id,
        timestamp=start_time,
    )
