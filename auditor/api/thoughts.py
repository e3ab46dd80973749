"""
POST /thoughts
==============
Submits one candidate ("thought") to the convergence loop and returns the
EnhancedReply for it.

Query parameter `format=markdown` returns the rendered text view instead of
JSON. Absent reply blocks are dropped from the JSON body.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, field_validator

from auditor.agents.orchestrator import ConvergenceController
from auditor.api.dependencies import get_controller, to_http_error
from auditor.core.constants import DEFAULT_LANGUAGE
from auditor.core.errors import AuditorError
from auditor.core.output_formatter import format_reply

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Audit"])


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------
class ThoughtRequest(BaseModel):
    session_id: str
    thought: str
    thought_number: Optional[int] = Field(default=None, ge=1)
    total_thoughts: int = Field(default=1, ge=1)
    next_thought_needed: bool = True
    language: str = DEFAULT_LANGUAGE
    context_id: Optional[str] = None

    @field_validator("session_id")
    @classmethod
    def non_blank_session(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("session_id must not be empty")
        return v.strip()

    @field_validator("thought")
    @classmethod
    def non_blank_thought(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("thought must contain the candidate text")
        return v

    @field_validator("language")
    @classmethod
    def lower_language(cls, v: str) -> str:
        return v.strip().lower() or DEFAULT_LANGUAGE


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.post("/thoughts")
async def submit_thought(
    request: ThoughtRequest,
    output_format: str = Query(default="json", alias="format", pattern="^(json|markdown)$"),
    controller: ConvergenceController = Depends(get_controller),
):
    logger.info(
        "Thought for session %s (loop %s, %d chars)",
        request.session_id, request.thought_number, len(request.thought),
    )
    try:
        reply = await controller.submit(
            request.session_id,
            request.thought,
            thought_number=request.thought_number,
            total_thoughts=request.total_thoughts,
            language=request.language,
            context_id=request.context_id,
        )
    except AuditorError as e:
        raise to_http_error(e)

    if output_format == "markdown":
        return PlainTextResponse(format_reply(reply))
    return reply.model_dump(mode="json", exclude_none=True)
