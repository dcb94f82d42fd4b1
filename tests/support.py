from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from paintconnect.db import Base
from paintconnect.models import (
    CheckInRecord,
    Company,
    Project,
    ProjectAssignment,
    ProjectStatus,
    PushProviderName,
    PushSubscription,
    User,
)

BRUSSELS = ZoneInfo("Europe/Brussels")


def make_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def local_dt(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=BRUSSELS)


def utc_from_local(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    return local_dt(year, month, day, hour, minute).astimezone(timezone.utc)


class FixedClock:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


class RecordingPushProvider:
    name = PushProviderName.ONESIGNAL.value

    def __init__(
        self,
        *,
        response: dict[str, Any] | None = None,
        error: Exception | None = None,
        configured: bool = True,
    ) -> None:
        self.response = response if response is not None else {"id": "notif-1", "recipients": 1}
        self.error = error
        self.configured = configured
        self.calls: list[dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def send_batch(
        self,
        subscriptions: Sequence[PushSubscription],
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.calls.append(
            {
                "endpoints": [row.endpoint for row in subscriptions],
                "title": title,
                "body": body,
                "data": data,
            }
        )
        if self.error is not None:
            raise self.error
        return dict(self.response)


def add_company(session: Session, name: str = "Schilderwerken Peeters") -> Company:
    company = Company(name=name)
    session.add(company)
    session.flush()
    return company


def add_user(session: Session, company: Company, email: str, *, is_active: bool = True) -> User:
    user = User(company_id=company.id, email=email, full_name=email.split("@")[0], is_active=is_active)
    session.add(user)
    session.flush()
    return user


def add_project(
    session: Session,
    company: Company,
    *,
    name: str,
    start: str | None = "08:00",
    end: str | None = "16:30",
    status: ProjectStatus = ProjectStatus.IN_PROGRESS,
    workers: Sequence[User] = (),
) -> Project:
    project = Project(
        company_id=company.id,
        project_name=name,
        work_start_time=start,
        work_end_time=end,
        status=status,
    )
    session.add(project)
    session.flush()
    for worker in workers:
        session.add(ProjectAssignment(project_id=project.id, user_id=worker.id, is_active=True))
    session.flush()
    return project


def add_subscription(
    session: Session,
    user: User,
    endpoint: str,
    *,
    is_active: bool = True,
    provider: PushProviderName = PushProviderName.ONESIGNAL,
) -> PushSubscription:
    row = PushSubscription(
        user_id=user.id,
        provider=provider,
        endpoint=endpoint,
        is_active=is_active,
        last_seen_at=datetime.now(timezone.utc),
    )
    session.add(row)
    session.flush()
    return row


def add_check_in(
    session: Session,
    user: User,
    project: Project,
    *,
    check_in_time: datetime | None,
    check_out_time: datetime | None = None,
) -> CheckInRecord:
    record = CheckInRecord(
        user_id=user.id,
        project_id=project.id,
        check_in_time=check_in_time.astimezone(timezone.utc) if check_in_time else None,
        check_out_time=check_out_time.astimezone(timezone.utc) if check_out_time else None,
    )
    session.add(record)
    session.flush()
    return record
