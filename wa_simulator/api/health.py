"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health_check(request: Request) -> dict[str, str]:
    """Return application and engine health status."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None or orchestrator.is_destroyed:
        return {"status": "error", "engine": "stopped"}
    return {"status": "ok", "engine": "running"}
