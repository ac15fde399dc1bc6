# app/api/routes/integrations.py
import logging
from datetime import date

from fastapi import APIRouter, Depends, Query

from app import schemas
from app.api import deps
from app.services.availability_service import AvailabilityService
from app.services.calendar_integration_service import CalendarIntegrationService

router = APIRouter()
logger = logging.getLogger(__name__)

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


@router.get(
    "/google-calendar",
    response_model=schemas.IntegrationStatus,
    response_model_by_alias=True,
)
def get_google_calendar_integration(
    user_id: str = Depends(deps.get_current_user),
    integration_service: CalendarIntegrationService = Depends(
        deps.get_integration_service
    ),
):
    """Connection status, default calendar and writable calendars."""
    return schemas.IntegrationStatus(**integration_service.get_status(user_id))


@router.patch(
    "/google-calendar",
    response_model=schemas.IntegrationStatus,
    response_model_by_alias=True,
)
def update_google_calendar_integration(
    payload: schemas.IntegrationUpdate,
    user_id: str = Depends(deps.get_current_user),
    integration_service: CalendarIntegrationService = Depends(
        deps.get_integration_service
    ),
):
    """Select the calendar new task events are created in."""
    integration = integration_service.set_default_calendar(
        user_id, payload.default_calendar_id
    )
    return schemas.IntegrationStatus(
        connected=integration.is_active,
        status=integration.connection_status,
        default_calendar_id=integration.default_calendar_id,
    )


@router.delete("/google-calendar")
def disconnect_google_calendar(
    user_id: str = Depends(deps.get_current_user),
    integration_service: CalendarIntegrationService = Depends(
        deps.get_integration_service
    ),
):
    """Disconnect Google Calendar integration."""
    disconnected = integration_service.disconnect(user_id)
    return {"success": True, "disconnected": disconnected}


@router.get(
    "/google-calendar/availability",
    response_model=schemas.AvailabilityResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def check_google_calendar_availability(
    day: date = Query(..., alias="date"),
    start_time: str = Query(..., alias="startTime", pattern=TIME_PATTERN),
    end_time: str = Query(..., alias="endTime", pattern=TIME_PATTERN),
    user_id: str = Depends(deps.get_current_user),
    availability_service: AvailabilityService = Depends(deps.get_availability_service),
):
    """Check a time slot against the default calendar."""
    result = availability_service.check_availability(user_id, day, start_time, end_time)
    if result.available:
        return schemas.AvailabilityResponse(available=True)
    return schemas.AvailabilityResponse(
        available=False,
        conflicts=result.conflicts,
        suggested_times=result.suggested_times,
    )
