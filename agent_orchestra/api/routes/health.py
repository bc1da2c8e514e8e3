"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...orchestration import ExecutionEngine
from ..dependencies import get_engine
from ..schemas import HealthResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and healthy.",
)
def health_check(engine: ExecutionEngine = Depends(get_engine)) -> HealthResponse:
    """Return health status of the API server."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        tools=len(engine.registry),
    )
