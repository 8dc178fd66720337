"""
Health check endpoint.
"""
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Liveness probe with scheduler status."""
    scheduler = getattr(request.app.state, "report_scheduler", None)
    return {
        "status": "ok",
        "scheduler": {
            "running": bool(scheduler and scheduler.running),
            "armed": len(scheduler.armed_schedule_ids()) if scheduler else 0,
        },
    }
