"""
Health check endpoints for the face filter studio.
"""

from fastapi import APIRouter, Request

from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version="1.0.0",
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    The studio is ready once it is wired up; the heuristic detector always
    works, so a missing ML detector or camera only degrades the service.
    """
    studio = getattr(request.app.state, "studio", None)
    if studio is None:
        return ReadinessResponse(
            ready=False,
            heuristic_detector="not_loaded",
            external_detector="not_loaded",
            capture_source="not_configured",
        )

    source = studio.capture_source
    return ReadinessResponse(
        ready=True,
        heuristic_detector="ready",
        external_detector="ready" if studio.orchestrator.has_external_detector else "not_loaded",
        capture_source=("ready" if source.is_ready() else "not_ready") if source else "not_configured",
    )


@router.get("/health/models")
async def model_status(request: Request):
    """
    Detailed detector status endpoint.
    """
    studio = getattr(request.app.state, "studio", None)
    external_detector = getattr(request.app.state, "external_detector", None)

    return {
        "models": {
            "heuristic_detector": {
                "loaded": studio is not None,
                "ready": studio is not None,
                "strategies": ["skin_tone", "motion", "region_scan", "center_fallback"],
            },
            "external_detector": {
                "loaded": external_detector is not None,
                "ready": external_detector.is_ready() if external_detector else False,
                "model_type": external_detector.name if external_detector else None,
            },
        }
    }
