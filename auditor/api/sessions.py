"""
Session endpoints
=================
GET  /sessions/{session_id}       stored SessionState
POST /sessions/{session_id}/stop  close the loop manually (manual_stop)
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from auditor.agents.orchestrator import ConvergenceController
from auditor.api.dependencies import get_controller, to_http_error
from auditor.core.errors import AuditorError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("/{session_id}")
async def get_session(session_id: str, controller: ConvergenceController = Depends(get_controller)):
    try:
        state = await controller.get_session(session_id)
    except AuditorError as e:
        raise to_http_error(e)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return state.model_dump(mode="json")


@router.post("/{session_id}/stop")
async def stop_session(session_id: str, controller: ConvergenceController = Depends(get_controller)):
    try:
        reply = await controller.stop(session_id)
    except AuditorError as e:
        raise to_http_error(e)
    return reply.model_dump(mode="json", exclude_none=True)
