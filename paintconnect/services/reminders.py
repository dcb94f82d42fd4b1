from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paintconnect.models import (
    CheckInRecord,
    Project,
    ProjectAssignment,
    ProjectStatus,
    PushNotificationLog,
    ReminderDispatch,
    User,
)
from paintconnect.services.push_notifications import list_active_push_subscriptions
from paintconnect.services.push_providers import PUSH_NOT_CONFIGURED, PushProvider, is_error_response
from paintconnect.services.time_of_day import TimeOfDay, parse_time_of_day
from paintconnect.settings import Settings

logger = logging.getLogger("paintconnect.reminders")

NOTIFICATION_TYPE_CHECK_IN = "check_in_reminder"
NOTIFICATION_TYPE_CHECK_OUT = "check_out_reminder"

DEFAULT_TIMEZONE = "Europe/Brussels"
DEFAULT_WINDOW_MINUTES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=16)
def resolve_reminder_timezone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "reminder_timezone_invalid",
            extra={"configured_timezone": timezone_name, "fallback_timezone": DEFAULT_TIMEZONE},
        )
        return ZoneInfo(DEFAULT_TIMEZONE)


@dataclass(frozen=True, slots=True)
class ReminderConfig:
    timezone_name: str = DEFAULT_TIMEZONE
    window_minutes: int = DEFAULT_WINDOW_MINUTES

    @classmethod
    def from_settings(cls, settings: Settings) -> ReminderConfig:
        return cls(
            timezone_name=(settings.reminder_timezone or "").strip() or DEFAULT_TIMEZONE,
            window_minutes=max(1, int(settings.reminder_window_minutes)),
        )

    @property
    def tz(self) -> ZoneInfo:
        return resolve_reminder_timezone(self.timezone_name)


@dataclass(frozen=True, slots=True)
class ReminderKind:
    notification_type: str
    label: str
    time_field: str
    title: str
    body_template: str
    url_param: str

    def render(self, project: CandidateProject) -> tuple[str, str, dict[str, Any]]:
        body = self.body_template.format(project=project.project_name)
        data = {
            "notification_type": self.notification_type,
            "project_id": project.id,
            "url": f"/dashboard?{self.url_param}={project.id}",
        }
        return self.title, body, data


CHECK_IN_REMINDER = ReminderKind(
    notification_type=NOTIFICATION_TYPE_CHECK_IN,
    label="check-in",
    time_field="work_start_time",
    title="Tijd om in te checken!",
    body_template="De werkdag bij {project} begint nu. Bent u al ingecheckt?",
    url_param="checkin",
)
CHECK_OUT_REMINDER = ReminderKind(
    notification_type=NOTIFICATION_TYPE_CHECK_OUT,
    label="check-out",
    time_field="work_end_time",
    title="Werkdag eindigt!",
    body_template="De werkdag bij {project} is afgelopen. Vergeet niet uit te checken!",
    url_param="checkout",
)


@dataclass(frozen=True, slots=True)
class CandidateProject:
    id: int
    project_name: str
    work_start_time: str | None
    work_end_time: str | None
    assigned_user_ids: frozenset[int]


@dataclass(slots=True)
class ReminderRunResult:
    timestamp: datetime
    current_time: str
    local_day: date
    projects_checked: int = 0
    check_in_reminders_sent: int = 0
    check_out_reminders_sent: int = 0
    debug: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "timestamp": self.timestamp.isoformat(),
            "currentTime": self.current_time,
            "projectsChecked": self.projects_checked,
            "check_in_reminders_sent": self.check_in_reminders_sent,
            "check_out_reminders_sent": self.check_out_reminders_sent,
            "debug": list(self.debug),
        }


class ReminderRunError(Exception):
    def __init__(self, message: str, *, debug: list[str]):
        super().__init__(message)
        self.message = message
        self.debug = debug


class RunTrace:
    """Collects human-readable trace lines and mirrors them as log events."""

    def __init__(self, run_logger: logging.Logger = logger) -> None:
        self.lines: list[str] = []
        self._logger = run_logger

    def add(self, event: str, detail: str, *, level: int = logging.INFO, **fields: Any) -> None:
        self.lines.append(detail)
        self._logger.log(level, event, extra={"detail": detail, **fields})


def local_day_bounds_utc(local_day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    local_start = datetime.combine(local_day, time.min, tzinfo=tz)
    local_end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def build_idempotency_key(*, notification_type: str, project_id: int, local_day: date) -> str:
    return f"{notification_type}:{project_id}:{local_day.isoformat()}"


def is_within_window(now: TimeOfDay, trigger: TimeOfDay, window_minutes: int) -> bool:
    diff = now.minutes_since(trigger)
    return 0 <= diff < window_minutes


def load_candidate_projects(session: Session) -> list[CandidateProject]:
    projects = list(
        session.scalars(
            select(Project)
            .where(Project.status == ProjectStatus.IN_PROGRESS)
            .order_by(Project.id.asc())
        ).all()
    )
    if not projects:
        return []

    assigned: dict[int, set[int]] = {}
    rows = session.execute(
        select(ProjectAssignment.project_id, ProjectAssignment.user_id)
        .join(User, User.id == ProjectAssignment.user_id)
        .where(
            ProjectAssignment.project_id.in_([project.id for project in projects]),
            ProjectAssignment.is_active.is_(True),
            User.is_active.is_(True),
        )
    ).all()
    for project_id, user_id in rows:
        assigned.setdefault(project_id, set()).add(user_id)

    return [
        CandidateProject(
            id=project.id,
            project_name=project.project_name,
            work_start_time=project.work_start_time,
            work_end_time=project.work_end_time,
            assigned_user_ids=frozenset(assigned[project.id]),
        )
        for project in projects
        if assigned.get(project.id)
    ]


def checked_in_user_ids(
    session: Session,
    *,
    project_id: int,
    day_start_utc: datetime,
    day_end_utc: datetime,
) -> set[int]:
    rows = session.scalars(
        select(CheckInRecord.user_id).where(
            CheckInRecord.project_id == project_id,
            CheckInRecord.check_in_time.is_not(None),
            CheckInRecord.check_in_time >= day_start_utc,
            CheckInRecord.check_in_time < day_end_utc,
        )
    ).all()
    return set(rows)


def still_checked_in_user_ids(
    session: Session,
    *,
    project_id: int,
    day_start_utc: datetime,
    day_end_utc: datetime,
) -> set[int]:
    rows = session.scalars(
        select(CheckInRecord.user_id).where(
            CheckInRecord.project_id == project_id,
            CheckInRecord.check_in_time.is_not(None),
            CheckInRecord.check_in_time >= day_start_utc,
            CheckInRecord.check_in_time < day_end_utc,
            CheckInRecord.check_out_time.is_(None),
        )
    ).all()
    return set(rows)


def has_dispatch_for_day(
    session: Session,
    *,
    project_id: int,
    notification_type: str,
    local_day: date,
) -> bool:
    existing = session.scalar(
        select(ReminderDispatch.id).where(
            ReminderDispatch.project_id == project_id,
            ReminderDispatch.notification_type == notification_type,
            ReminderDispatch.local_day == local_day,
        )
    )
    return existing is not None


def claim_dispatch(
    session: Session,
    *,
    project_id: int,
    notification_type: str,
    local_day: date,
) -> ReminderDispatch | None:
    """Insert the (project, type, day) claim row; None when another run holds it."""
    dispatch = ReminderDispatch(
        project_id=project_id,
        notification_type=notification_type,
        local_day=local_day,
        idempotency_key=build_idempotency_key(
            notification_type=notification_type,
            project_id=project_id,
            local_day=local_day,
        ),
        target_count=0,
        provider_response=None,
    )
    session.add(dispatch)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return None
    return dispatch


class ReminderDispatcher:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        push_provider: PushProvider,
        config: ReminderConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._push_provider = push_provider
        self._config = config or ReminderConfig()
        self._clock = clock

    def run(self) -> ReminderRunResult:
        trace = RunTrace()
        tz = self._config.tz
        now_utc = self._clock().astimezone(timezone.utc)
        local_now = now_utc.astimezone(tz)
        now_tod = TimeOfDay.from_time(local_now)
        local_day = local_now.date()
        day_start_utc, day_end_utc = local_day_bounds_utc(local_day, tz)

        result = ReminderRunResult(
            timestamp=now_utc,
            current_time=str(now_tod),
            local_day=local_day,
            debug=trace.lines,
        )
        trace.add(
            "reminder_run_started",
            f"Running at {now_tod} on {local_day.isoformat()} ({tz.key})",
            current_time=str(now_tod),
            local_day=local_day.isoformat(),
        )
        if tz.key != self._config.timezone_name:
            trace.add(
                "reminder_timezone_fallback",
                f"Unknown timezone {self._config.timezone_name!r}, using {tz.key}",
                level=logging.WARNING,
            )
        if not self._push_provider.is_configured:
            trace.add(
                "reminder_push_not_configured",
                f"Push provider {self._push_provider.name} is not configured; sends will be recorded as errors",
                level=logging.WARNING,
                provider=self._push_provider.name,
            )

        try:
            with self._session_factory() as session:
                candidates = load_candidate_projects(session)
                result.projects_checked = len(candidates)
                trace.add(
                    "reminder_candidates_loaded",
                    f"Found {len(candidates)} in-progress projects with assigned workers",
                    projects_checked=len(candidates),
                )

                for project in candidates:
                    result.check_in_reminders_sent += self._run_pass_safely(
                        session,
                        project,
                        CHECK_IN_REMINDER,
                        trace=trace,
                        now_tod=now_tod,
                        local_day=local_day,
                        day_start_utc=day_start_utc,
                        day_end_utc=day_end_utc,
                    )
                    result.check_out_reminders_sent += self._run_pass_safely(
                        session,
                        project,
                        CHECK_OUT_REMINDER,
                        trace=trace,
                        now_tod=now_tod,
                        local_day=local_day,
                        day_start_utc=day_start_utc,
                        day_end_utc=day_end_utc,
                    )
        except Exception as exc:
            trace.add(
                "reminder_run_failed",
                f"Run aborted: {exc}",
                level=logging.ERROR,
            )
            raise ReminderRunError(str(exc), debug=trace.lines) from exc

        trace.add(
            "reminder_run_finished",
            (
                f"Done: {result.check_in_reminders_sent} check-in and "
                f"{result.check_out_reminders_sent} check-out reminders sent"
            ),
            check_in_reminders_sent=result.check_in_reminders_sent,
            check_out_reminders_sent=result.check_out_reminders_sent,
        )
        return result

    def _run_pass_safely(
        self,
        session: Session,
        project: CandidateProject,
        kind: ReminderKind,
        *,
        trace: RunTrace,
        **kwargs: Any,
    ) -> int:
        try:
            return self._run_pass(session, project, kind, trace=trace, **kwargs)
        except Exception as exc:
            session.rollback()
            trace.add(
                "reminder_pass_failed",
                f"{kind.label} reminder for {project.project_name} failed: {exc}",
                level=logging.ERROR,
                project_id=project.id,
                notification_type=kind.notification_type,
            )
            return 0

    def _run_pass(
        self,
        session: Session,
        project: CandidateProject,
        kind: ReminderKind,
        *,
        trace: RunTrace,
        now_tod: TimeOfDay,
        local_day: date,
        day_start_utc: datetime,
        day_end_utc: datetime,
    ) -> int:
        raw_trigger = getattr(project, kind.time_field)
        trigger = parse_time_of_day(raw_trigger)
        if trigger is None:
            if raw_trigger:
                trace.add(
                    "reminder_invalid_time",
                    f"{project.project_name}: invalid {kind.time_field} {raw_trigger!r}, {kind.label} skipped",
                    level=logging.WARNING,
                    project_id=project.id,
                )
            return 0

        if not is_within_window(now_tod, trigger, self._config.window_minutes):
            return 0

        window_end = trigger.shifted(self._config.window_minutes)
        trace.add(
            "reminder_window_open",
            f"{project.project_name}: {kind.label} window {trigger}-{window_end} is open",
            project_id=project.id,
            notification_type=kind.notification_type,
        )

        if kind is CHECK_IN_REMINDER:
            done = checked_in_user_ids(
                session,
                project_id=project.id,
                day_start_utc=day_start_utc,
                day_end_utc=day_end_utc,
            )
            pending = set(project.assigned_user_ids) - done
        else:
            pending = still_checked_in_user_ids(
                session,
                project_id=project.id,
                day_start_utc=day_start_utc,
                day_end_utc=day_end_utc,
            )
        if not pending:
            trace.add(
                "reminder_nobody_pending",
                f"{project.project_name}: no workers need a {kind.label} reminder",
                project_id=project.id,
            )
            return 0

        if has_dispatch_for_day(
            session,
            project_id=project.id,
            notification_type=kind.notification_type,
            local_day=local_day,
        ):
            trace.add(
                "reminder_already_sent",
                f"{project.project_name}: {kind.label} reminder already sent today",
                project_id=project.id,
            )
            return 0

        subscriptions = list_active_push_subscriptions(
            session,
            user_ids=pending,
            provider_name=self._push_provider.name,
        )
        if not subscriptions:
            trace.add(
                "reminder_no_subscriptions",
                f"{project.project_name}: {len(pending)} pending workers but no active push subscriptions",
                project_id=project.id,
                pending_workers=len(pending),
            )
            return 0

        dispatch = claim_dispatch(
            session,
            project_id=project.id,
            notification_type=kind.notification_type,
            local_day=local_day,
        )
        if dispatch is None:
            trace.add(
                "reminder_claim_lost",
                f"{project.project_name}: {kind.label} reminder claimed by a concurrent run",
                level=logging.WARNING,
                project_id=project.id,
            )
            return 0

        title, body, data = kind.render(project)
        try:
            response = self._push_provider.send_batch(subscriptions, title=title, body=body, data=data)
        except Exception as exc:
            # The claim is already committed, so the outcome must still be recorded.
            logger.exception(
                "reminder_provider_raised",
                extra={"project_id": project.id, "notification_type": kind.notification_type},
            )
            response = {"error": str(exc) or type(exc).__name__, "provider": self._push_provider.name}
        targeted_user_ids = sorted({row.user_id for row in subscriptions})
        for user_id in targeted_user_ids:
            session.add(
                PushNotificationLog(
                    user_id=user_id,
                    project_id=project.id,
                    dispatch_id=dispatch.id,
                    notification_type=kind.notification_type,
                    title=title,
                    message=body,
                    provider_response=response,
                )
            )
        dispatch.target_count = len(targeted_user_ids)
        dispatch.provider_response = response
        session.commit()

        if is_error_response(response):
            error_text = response.get("error") or response.get("errors")
            trace.add(
                "reminder_pass_delivery_failed",
                (
                    f"{project.project_name}: {kind.label} push to "
                    f"{len(subscriptions)} endpoints failed: {error_text}"
                ),
                level=logging.WARNING if error_text == PUSH_NOT_CONFIGURED else logging.ERROR,
                project_id=project.id,
                notification_type=kind.notification_type,
                targets=len(targeted_user_ids),
            )
            return 0

        trace.add(
            "reminder_pass_sent",
            (
                f"{project.project_name}: sent {kind.label} reminder to "
                f"{len(targeted_user_ids)} workers ({len(subscriptions)} endpoints)"
            ),
            project_id=project.id,
            notification_type=kind.notification_type,
            targets=len(targeted_user_ids),
        )
        return len(targeted_user_ids)
