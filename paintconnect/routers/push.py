from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from paintconnect.db import get_db
from paintconnect.schemas import (
    PushSendRequest,
    PushSendResponse,
    PushSubscriptionDeactivateRequest,
    PushSubscriptionDeactivateResponse,
    PushSubscriptionRegisterRequest,
    PushSubscriptionRegisterResponse,
)
from paintconnect.security import require_service_key
from paintconnect.services.push_notifications import (
    deactivate_push_subscription,
    register_push_subscription,
    send_push_to_users,
)
from paintconnect.services.push_providers import PushProvider, build_push_provider
from paintconnect.settings import get_settings

router = APIRouter(
    prefix="/api/push",
    tags=["push"],
    dependencies=[Depends(require_service_key)],
)


def get_push_provider() -> PushProvider:
    return build_push_provider(get_settings())


@router.post("/subscriptions", response_model=PushSubscriptionRegisterResponse)
def register_subscription(
    payload: PushSubscriptionRegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PushSubscriptionRegisterResponse:
    row = register_push_subscription(
        db,
        user_id=payload.user_id,
        endpoint=payload.endpoint,
        provider=payload.provider,
        keys=payload.keys,
        user_agent=payload.user_agent or request.headers.get("user-agent"),
    )
    return PushSubscriptionRegisterResponse(ok=True, subscription_id=row.id)


@router.post("/subscriptions/deactivate", response_model=PushSubscriptionDeactivateResponse)
def deactivate_subscription(
    payload: PushSubscriptionDeactivateRequest,
    db: Session = Depends(get_db),
) -> PushSubscriptionDeactivateResponse:
    ok = deactivate_push_subscription(db, user_id=payload.user_id, endpoint=payload.endpoint)
    return PushSubscriptionDeactivateResponse(ok=ok)


@router.post("/send", response_model=PushSendResponse)
def send_push(
    payload: PushSendRequest,
    db: Session = Depends(get_db),
    provider: PushProvider = Depends(get_push_provider),
) -> PushSendResponse:
    result = send_push_to_users(
        db,
        provider,
        title=payload.title,
        message=payload.message,
        user_ids=payload.user_ids,
        endpoints=payload.player_ids,
        notification_type=payload.notification_type,
        project_id=payload.project_id,
        data=payload.data,
        url=payload.url,
    )
    return PushSendResponse(**result)
