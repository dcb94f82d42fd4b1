from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from paintconnect.db import SessionLocal
from paintconnect.errors import reminder_run_failure_response
from paintconnect.schemas import ReminderRunErrorResponse, ReminderRunResponse
from paintconnect.security import require_cron_secret
from paintconnect.services.push_providers import build_push_provider
from paintconnect.services.reminders import ReminderConfig, ReminderDispatcher, ReminderRunError
from paintconnect.settings import get_settings

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = logging.getLogger("paintconnect.cron")


def get_reminder_dispatcher() -> ReminderDispatcher:
    settings = get_settings()
    return ReminderDispatcher(
        session_factory=SessionLocal,
        push_provider=build_push_provider(settings),
        config=ReminderConfig.from_settings(settings),
    )


@router.post(
    "/check-in-reminders",
    response_model=ReminderRunResponse,
    responses={500: {"model": ReminderRunErrorResponse}},
    dependencies=[Depends(require_cron_secret)],
)
def run_check_in_reminders(
    request: Request,
    dispatcher: ReminderDispatcher = Depends(get_reminder_dispatcher),
):
    try:
        result = dispatcher.run()
    except ReminderRunError as exc:
        logger.error("check_in_reminders_failed", extra={"error": exc.message})
        return reminder_run_failure_response(request, error=exc.message, debug=exc.debug)

    logger.info(
        "check_in_reminders_completed",
        extra={
            "projects_checked": result.projects_checked,
            "check_in_reminders_sent": result.check_in_reminders_sent,
            "check_out_reminders_sent": result.check_out_reminders_sent,
        },
    )
    return result.to_dict()
