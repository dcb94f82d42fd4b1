from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from paintconnect.errors import ApiError
from paintconnect.models import PushNotificationLog, PushProviderName, PushSubscription, User
from paintconnect.services.push_providers import PushProvider, is_error_response

NOTIFICATION_TYPE_GENERAL = "general"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_active_user(db: Session, *, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ApiError(
            status_code=404,
            code="USER_NOT_FOUND",
            message="User not found.",
        )
    if not user.is_active:
        raise ApiError(
            status_code=403,
            code="USER_INACTIVE",
            message="Inactive user cannot register push notifications.",
        )
    return user


def _normalize_provider(raw: str | None) -> PushProviderName:
    try:
        return PushProviderName((raw or PushProviderName.ONESIGNAL.value).strip().lower())
    except ValueError as exc:
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_PROVIDER",
            message=f"Unsupported push provider: {raw}",
        ) from exc


def register_push_subscription(
    db: Session,
    *,
    user_id: int,
    endpoint: str,
    provider: str | None = None,
    keys: dict[str, Any] | None = None,
    user_agent: str | None = None,
) -> PushSubscription:
    user = _resolve_active_user(db, user_id=user_id)
    provider_name = _normalize_provider(provider)
    normalized_endpoint = (endpoint or "").strip()
    if not normalized_endpoint:
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Endpoint is required.",
        )

    p256dh: str | None = None
    auth: str | None = None
    if provider_name is PushProviderName.WEBPUSH:
        p256dh = str((keys or {}).get("p256dh") or "").strip()
        auth = str((keys or {}).get("auth") or "").strip()
        if not p256dh or not auth:
            raise ApiError(
                status_code=422,
                code="INVALID_PUSH_SUBSCRIPTION",
                message="Web push subscription keys are missing.",
            )

    now_utc = _utcnow()
    row = db.scalar(select(PushSubscription).where(PushSubscription.endpoint == normalized_endpoint))
    if row is None:
        row = PushSubscription(
            user_id=user.id,
            provider=provider_name,
            endpoint=normalized_endpoint,
            p256dh=p256dh,
            auth=auth,
            is_active=True,
            user_agent=user_agent,
            last_error=None,
            last_seen_at=now_utc,
        )
        db.add(row)
    else:
        row.user_id = user.id
        row.provider = provider_name
        row.p256dh = p256dh
        row.auth = auth
        row.is_active = True
        row.user_agent = user_agent
        row.last_error = None
        row.last_seen_at = now_utc

    db.commit()
    db.refresh(row)
    return row


def list_active_push_subscriptions(
    db: Session,
    *,
    user_ids: set[int] | list[int],
    provider_name: str | None = None,
) -> list[PushSubscription]:
    if not user_ids:
        return []
    stmt = (
        select(PushSubscription)
        .join(User, User.id == PushSubscription.user_id)
        .where(
            PushSubscription.user_id.in_(sorted(set(user_ids))),
            PushSubscription.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(PushSubscription.id.asc())
    )
    if provider_name:
        stmt = stmt.where(PushSubscription.provider == PushProviderName(provider_name))
    return list(db.scalars(stmt).all())


def deactivate_push_subscription(db: Session, *, user_id: int, endpoint: str) -> bool:
    normalized_endpoint = (endpoint or "").strip()
    if not normalized_endpoint:
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_SUBSCRIPTION",
            message="Endpoint is required.",
        )

    row = db.scalar(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == normalized_endpoint,
        )
    )
    if row is None:
        return False

    if row.is_active:
        row.is_active = False
        row.last_seen_at = _utcnow()
        db.commit()
    return True


def send_push_to_users(
    db: Session,
    provider: PushProvider,
    *,
    title: str,
    message: str,
    user_ids: list[int] | None = None,
    endpoints: list[str] | None = None,
    notification_type: str | None = None,
    project_id: int | None = None,
    data: dict[str, Any] | None = None,
    url: str | None = None,
) -> dict[str, Any]:
    if not title.strip() or not message.strip():
        raise ApiError(
            status_code=422,
            code="INVALID_PUSH_MESSAGE",
            message="Title and message are required.",
        )

    resolved_type = notification_type or NOTIFICATION_TYPE_GENERAL
    unique_user_ids = sorted(set(user_ids or []))
    subscriptions = list_active_push_subscriptions(
        db,
        user_ids=set(unique_user_ids),
        provider_name=provider.name,
    )

    targets: dict[str, PushSubscription] = {row.endpoint: row for row in subscriptions}
    for raw_endpoint in endpoints or []:
        endpoint = raw_endpoint.strip()
        if endpoint and endpoint not in targets:
            # Raw tokens are delivered without being persisted.
            targets[endpoint] = PushSubscription(
                endpoint=endpoint,
                provider=PushProviderName(provider.name),
                is_active=True,
            )

    if not targets:
        return {
            "success": False,
            "message": "No valid push subscriptions found for target users",
        }

    payload_data = {
        **(data or {}),
        "notification_type": resolved_type,
        "project_id": project_id,
        "url": url or "/",
    }
    response = provider.send_batch(
        list(targets.values()),
        title=title,
        body=message,
        data=payload_data,
    )

    for user_id in unique_user_ids:
        db.add(
            PushNotificationLog(
                user_id=user_id,
                project_id=project_id,
                dispatch_id=None,
                notification_type=resolved_type,
                title=title,
                message=message,
                provider_response=response,
            )
        )
    db.commit()

    return {
        "success": not is_error_response(response),
        "recipients": len(targets),
        "provider_response": response,
    }
