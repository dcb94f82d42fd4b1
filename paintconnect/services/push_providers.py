from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

import httpx
from pywebpush import WebPushException, webpush

from paintconnect.models import PushProviderName, PushSubscription
from paintconnect.settings import Settings

logger = logging.getLogger("paintconnect.push")

PUSH_NOT_CONFIGURED = "push_not_configured"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PushProvider(Protocol):
    name: str

    @property
    def is_configured(self) -> bool: ...

    def send_batch(
        self,
        subscriptions: Sequence[PushSubscription],
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...


def is_error_response(response: dict[str, Any]) -> bool:
    if not isinstance(response, dict):
        return True
    if response.get("error"):
        return True
    # OneSignal reports partially invalid player ids in "errors" next to a notification id.
    return bool(response.get("errors")) and not response.get("id")


class OneSignalPushProvider:
    """Batch delivery through the OneSignal REST API, one request per batch."""

    name = PushProviderName.ONESIGNAL.value

    def __init__(
        self,
        *,
        app_id: str | None,
        rest_api_key: str | None,
        api_url: str = "https://onesignal.com/api/v1/notifications",
        icon_url: str | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._app_id = (app_id or "").strip()
        self._rest_api_key = (rest_api_key or "").strip()
        self._api_url = api_url
        self._icon_url = icon_url
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._app_id and self._rest_api_key)

    def _build_payload(
        self,
        player_ids: list[str],
        *,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "app_id": self._app_id,
            "include_player_ids": player_ids,
            "headings": {"en": title, "nl": title},
            "contents": {"en": body, "nl": body},
            "data": data,
            "web_push_topic": data.get("notification_type") or "general",
        }
        if data.get("url"):
            payload["url"] = data["url"]
        if self._icon_url:
            payload["chrome_web_icon"] = self._icon_url
        return payload

    def send_batch(
        self,
        subscriptions: Sequence[PushSubscription],
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            return {"error": PUSH_NOT_CONFIGURED, "provider": self.name}

        player_ids = list(dict.fromkeys(row.endpoint for row in subscriptions))
        if not player_ids:
            return {"error": "no_targets", "provider": self.name}

        payload = self._build_payload(player_ids, title=title, body=body, data=dict(data or {}))
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Basic {self._rest_api_key}"},
                )
        except httpx.HTTPError as exc:
            logger.warning("onesignal_request_failed", extra={"error": str(exc)})
            return {"error": str(exc), "provider": self.name}

        try:
            body_json: Any = response.json()
        except ValueError:
            body_json = {"raw": response.text}

        if response.is_error:
            return {
                "error": "provider_rejected",
                "status_code": response.status_code,
                "provider": self.name,
                "response": body_json,
            }
        if isinstance(body_json, dict):
            return body_json
        return {"response": body_json}


class WebPushProvider:
    """VAPID Web Push delivery, one request per subscription."""

    name = PushProviderName.WEBPUSH.value

    def __init__(
        self,
        *,
        vapid_public_key: str | None,
        vapid_private_key: str | None,
        vapid_subject: str,
        ttl: int = 60,
    ) -> None:
        self._vapid_public_key = (vapid_public_key or "").strip()
        self._vapid_private_key = (vapid_private_key or "").strip()
        self._vapid_subject = vapid_subject
        self._ttl = ttl

    @property
    def is_configured(self) -> bool:
        return bool(self._vapid_public_key and self._vapid_private_key)

    def _send_one(self, row: PushSubscription, *, payload: str) -> tuple[bool, str | None, int | None]:
        if not row.p256dh or not row.auth:
            return False, "missing_subscription_keys", None
        try:
            webpush(
                subscription_info={
                    "endpoint": row.endpoint,
                    "keys": {
                        "p256dh": row.p256dh,
                        "auth": row.auth,
                    },
                },
                data=payload,
                vapid_private_key=self._vapid_private_key,
                vapid_claims={"sub": self._vapid_subject},
                ttl=self._ttl,
            )
            return True, None, None
        except WebPushException as exc:
            status_code: int | None = None
            if exc.response is not None:
                status_code = exc.response.status_code
            return False, str(exc), status_code
        except Exception as exc:
            return False, str(exc) or type(exc).__name__, None

    def send_batch(
        self,
        subscriptions: Sequence[PushSubscription],
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            return {"error": PUSH_NOT_CONFIGURED, "provider": self.name}

        now_utc = _utcnow()
        payload = json.dumps(
            {
                "title": title,
                "body": body,
                "data": data or {},
                "ts_utc": now_utc.isoformat(),
            }
        )
        sent = 0
        failed = 0
        deactivated = 0
        failures: list[dict[str, Any]] = []

        for row in subscriptions:
            ok, error_text, status_code = self._send_one(row, payload=payload)
            row.last_seen_at = now_utc
            if ok:
                sent += 1
                row.last_error = None
                continue

            failed += 1
            row.last_error = error_text
            if status_code in {404, 410} and row.is_active:
                row.is_active = False
                deactivated += 1
            failures.append(
                {
                    "subscription_id": row.id,
                    "status_code": status_code,
                    "error": error_text,
                }
            )

        result: dict[str, Any] = {
            "provider": self.name,
            "total_targets": len(subscriptions),
            "sent": sent,
            "failed": failed,
            "deactivated": deactivated,
            "failures": failures,
        }
        if subscriptions and sent == 0:
            result["error"] = "all_deliveries_failed"
        return result


def build_push_provider(settings: Settings) -> PushProvider:
    provider = (settings.push_provider or "").strip().lower()
    if provider == PushProviderName.WEBPUSH.value:
        return WebPushProvider(
            vapid_public_key=settings.push_vapid_public_key,
            vapid_private_key=settings.push_vapid_private_key,
            vapid_subject=settings.push_vapid_subject,
        )
    if provider and provider != PushProviderName.ONESIGNAL.value:
        raise ValueError(f"Unknown push provider: {settings.push_provider}")
    return OneSignalPushProvider(
        app_id=settings.onesignal_app_id,
        rest_api_key=settings.onesignal_rest_api_key,
        api_url=settings.onesignal_api_url,
        icon_url=settings.push_icon_url,
        timeout=settings.http_timeout_seconds,
    )
