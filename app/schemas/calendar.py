# app/schemas/calendar.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OAuthStartResponse(_CamelModel):
    auth_url: str = Field(..., alias="authUrl")


class OAuthFinishRequest(BaseModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


class OAuthFinishResponse(BaseModel):
    success: bool
    calendars: List[Dict[str, Any]] = []


class IntegrationStatus(_CamelModel):
    connected: bool
    status: Optional[str] = None
    default_calendar_id: str = Field("primary", alias="defaultCalendarId")
    calendars: List[Dict[str, Any]] = []


class IntegrationUpdate(_CamelModel):
    default_calendar_id: str = Field(..., alias="defaultCalendarId", min_length=1)


class AvailabilityResponse(_CamelModel):
    available: bool
    conflicts: Optional[List[Dict[str, Any]]] = None
    suggested_times: Optional[List[str]] = Field(None, alias="suggestedTimes")


class WebhookNotification(_CamelModel):
    """Push payload as accepted in a JSON body."""
    channel_id: Optional[str] = Field(None, alias="channelId")
    resource_id: Optional[str] = Field(None, alias="resourceId")
    resource_state: Optional[str] = Field(None, alias="resourceState")
    token: Optional[str] = None
    message_number: Optional[str] = Field(None, alias="messageNumber")
