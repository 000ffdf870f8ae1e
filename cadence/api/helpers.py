"""
Shared helpers for API routes: ID parsing and domain error -> HTTP status mapping.
"""
import logging
import uuid

from fastapi import HTTPException
from pydantic import ValidationError

from cadence.services.audience import AudienceResolutionError
from cadence.services.broadcasts import BroadcastNotFoundError, BroadcastStateError
from cadence.services.campaigns import CampaignStateError, InvalidStepError, NotFoundError
from cadence.services.enrollment import (
    AudienceNotFoundError,
    CampaignNotFoundError,
    EnrollmentBusyError,
    EnrollmentError,
)
from cadence.services.scoring import LeadNotFoundError

logger = logging.getLogger(__name__)

_NOT_FOUND = (
    NotFoundError,
    BroadcastNotFoundError,
    CampaignNotFoundError,
    AudienceNotFoundError,
    LeadNotFoundError,
)
_CONFLICT = (EnrollmentBusyError,)
_BAD_REQUEST = (EnrollmentError, CampaignStateError, BroadcastStateError, InvalidStepError)


def parse_uuid(value: str, label: str = "ID") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def to_http_error(error: Exception) -> HTTPException:
    """Map a service-layer exception to an HTTPException with a readable message."""
    if isinstance(error, _NOT_FOUND):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, _CONFLICT):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, _BAD_REQUEST):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, AudienceResolutionError):
        return HTTPException(status_code=503, detail="Audience could not be resolved, try again")
    logger.error("Unhandled service error: %s", str(error))
    return HTTPException(status_code=500, detail="Internal error")
