"""REST endpoints for health and session status."""
from fastapi import APIRouter, HTTPException
from hintgate.services.session_registry import session_registry

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Status and version information
    """
    return {
        "status": "ok",
        "version": VERSION
    }


@router.get("/sessions")
async def list_sessions():
    return {"sessions": await session_registry.list_ids()}


@router.get("/sessions/{session_id}/status")
async def get_session_status(session_id: str):
    """
    Get the hint and conversation status of a live session.

    Args:
        session_id: Session identifier

    Returns:
        HintState and CurrentStatus snapshot
    """
    session = await session_registry.get(session_id)

    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    return session.snapshot()
