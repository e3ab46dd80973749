"""
Shared API dependencies
=======================
One ConvergenceController per process, handed to routes via Depends so tests
can swap it with app.dependency_overrides.

Error mapping (AuditorError → HTTP status):
    JudgeError            → 503  judge unusable, request aborted
    SessionNotFoundError  → 404
    SessionError          → 409  closed session or out-of-order loop
    ConfigurationError    → 400
    anything else         → 500
"""
import logging
from functools import lru_cache

from fastapi import HTTPException

from auditor.agents.orchestrator import ConvergenceController
from auditor.core.errors import (
    AuditorError,
    ConfigurationError,
    JudgeError,
    SessionError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_controller() -> ConvergenceController:
    logger.info("Initialising convergence controller")
    return ConvergenceController()


def status_for(error: AuditorError) -> int:
    if isinstance(error, JudgeError):
        return 503
    if isinstance(error, SessionNotFoundError):
        return 404
    if isinstance(error, SessionError):
        return 409
    if isinstance(error, ConfigurationError):
        return 400
    return 500


def to_http_error(error: AuditorError) -> HTTPException:
    status = status_for(error)
    logger.error("Request failed with %d [%s/%s]: %s", status, error.category, error.severity, error.message)
    return HTTPException(status_code=status, detail=error.to_dict())
