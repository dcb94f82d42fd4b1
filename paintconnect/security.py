from __future__ import annotations

import hmac

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from paintconnect.errors import ApiError
from paintconnect.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


def _secrets_match(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def require_cron_secret(
    request: Request,
    secret: str | None = Query(default=None),
) -> None:
    expected = (get_settings().cron_secret or "").strip()
    if not expected:
        return

    provided = request.headers.get("X-Cron-Secret") or secret
    if not _secrets_match(expected, provided):
        raise ApiError(status_code=401, code="UNAUTHORIZED", message="Invalid cron secret.")
    request.state.actor = "cron"
    request.state.actor_id = "cron"


def require_service_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    expected = (get_settings().service_api_key or "").strip()
    if not expected:
        raise ApiError(
            status_code=503,
            code="SERVICE_KEY_NOT_CONFIGURED",
            message="Service API key is not configured.",
        )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    if not _secrets_match(expected, credentials.credentials):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Invalid service key.")
    request.state.actor = "service"
    request.state.actor_id = "service"
