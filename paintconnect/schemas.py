from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ReminderRunResponse(BaseModel):
    success: bool
    timestamp: datetime
    currentTime: str
    projectsChecked: int
    check_in_reminders_sent: int
    check_out_reminders_sent: int
    debug: list[str] = Field(default_factory=list)


class ReminderRunErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    debug: list[str] = Field(default_factory=list)


class PushSubscriptionRegisterRequest(BaseModel):
    user_id: int
    endpoint: str = Field(min_length=1, max_length=1024)
    provider: Literal["onesignal", "webpush"] = "onesignal"
    keys: dict[str, Any] | None = None
    user_agent: str | None = Field(default=None, max_length=1024)


class PushSubscriptionRegisterResponse(BaseModel):
    ok: bool
    subscription_id: int


class PushSubscriptionDeactivateRequest(BaseModel):
    user_id: int
    endpoint: str = Field(min_length=1, max_length=1024)


class PushSubscriptionDeactivateResponse(BaseModel):
    ok: bool


class PushSendRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    user_ids: list[int] = Field(default_factory=list)
    player_ids: list[str] = Field(default_factory=list)
    notification_type: str | None = Field(default=None, max_length=50)
    project_id: int | None = None
    data: dict[str, Any] | None = None
    url: str | None = None


class PushSendResponse(BaseModel):
    success: bool
    message: str | None = None
    recipients: int = 0
    provider_response: dict[str, Any] | None = None
