from __future__ import annotations

import json
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import requests
from pywebpush import WebPushException

from paintconnect.models import PushProviderName, PushSubscription
from paintconnect.services.push_providers import (
    PUSH_NOT_CONFIGURED,
    OneSignalPushProvider,
    WebPushProvider,
    build_push_provider,
    is_error_response,
)
from paintconnect.settings import Settings


def _onesignal_rows(*endpoints: str) -> list[PushSubscription]:
    return [
        PushSubscription(id=index + 1, user_id=1, provider=PushProviderName.ONESIGNAL, endpoint=endpoint, is_active=True)
        for index, endpoint in enumerate(endpoints)
    ]


class OneSignalPushProviderTests(unittest.TestCase):
    def _provider(self, handler) -> OneSignalPushProvider:  # type: ignore[no-untyped-def]
        return OneSignalPushProvider(
            app_id="app-123",
            rest_api_key="rest-key",
            api_url="https://onesignal.test/api/v1/notifications",
            icon_url="https://paintconnect.be/logo-192.png",
            transport=httpx.MockTransport(handler),
        )

    def test_send_batch_posts_one_request_with_unique_player_ids(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "notif-9", "recipients": 2})

        provider = self._provider(handler)
        response = provider.send_batch(
            _onesignal_rows("player-a", "player-b", "player-a"),
            title="Tijd om in te checken!",
            body="De werkdag bij Villa Jansen begint nu.",
            data={"notification_type": "check_in_reminder", "project_id": 4, "url": "/dashboard?checkin=4"},
        )

        self.assertEqual(response, {"id": "notif-9", "recipients": 2})
        self.assertFalse(is_error_response(response))
        self.assertEqual(len(captured), 1)
        request = captured[0]
        self.assertEqual(request.headers["Authorization"], "Basic rest-key")
        body = json.loads(request.content)
        self.assertEqual(body["app_id"], "app-123")
        self.assertEqual(body["include_player_ids"], ["player-a", "player-b"])
        self.assertEqual(body["headings"], {"en": "Tijd om in te checken!", "nl": "Tijd om in te checken!"})
        self.assertEqual(body["web_push_topic"], "check_in_reminder")
        self.assertEqual(body["url"], "/dashboard?checkin=4")
        self.assertEqual(body["chrome_web_icon"], "https://paintconnect.be/logo-192.png")

    def test_rejected_batch_returns_provider_body(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"errors": ["All included players are not subscribed"]})

        response = self._provider(handler).send_batch(_onesignal_rows("player-a"), title="t", body="b")

        self.assertTrue(is_error_response(response))
        self.assertEqual(response["error"], "provider_rejected")
        self.assertEqual(response["status_code"], 400)
        self.assertEqual(response["response"], {"errors": ["All included players are not subscribed"]})

    def test_transport_error_is_returned_not_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        response = self._provider(handler).send_batch(_onesignal_rows("player-a"), title="t", body="b")

        self.assertTrue(is_error_response(response))
        self.assertIn("connection refused", response["error"])

    def test_missing_credentials_short_circuit(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        provider = OneSignalPushProvider(app_id="", rest_api_key=None, transport=httpx.MockTransport(handler))

        response = provider.send_batch(_onesignal_rows("player-a"), title="t", body="b")

        self.assertFalse(provider.is_configured)
        self.assertEqual(response["error"], PUSH_NOT_CONFIGURED)
        self.assertEqual(calls, [])

    def test_partial_invalid_players_still_count_as_delivered(self) -> None:
        self.assertFalse(is_error_response({"id": "notif-1", "errors": {"invalid_player_ids": ["x"]}}))
        self.assertTrue(is_error_response({"id": "", "errors": ["All included players are not subscribed"]}))


class WebPushProviderTests(unittest.TestCase):
    def _provider(self) -> WebPushProvider:
        return WebPushProvider(
            vapid_public_key="public",
            vapid_private_key="private",
            vapid_subject="mailto:support@paintconnect.be",
        )

    @patch("paintconnect.services.push_providers.webpush")
    def test_gone_subscriptions_are_deactivated(self, mock_webpush) -> None:
        healthy = PushSubscription(id=1, user_id=1, provider=PushProviderName.WEBPUSH, endpoint="https://push.test/a", p256dh="k1", auth="a1", is_active=True)
        gone = PushSubscription(id=2, user_id=2, provider=PushProviderName.WEBPUSH, endpoint="https://push.test/b", p256dh="k2", auth="a2", is_active=True)

        def _side_effect(*, subscription_info, **_kwargs):  # type: ignore[no-untyped-def]
            if subscription_info["endpoint"].endswith("/b"):
                raise WebPushException("Push failed: 410 Gone", response=SimpleNamespace(status_code=410))
            return None

        mock_webpush.side_effect = _side_effect

        result = self._provider().send_batch([healthy, gone], title="t", body="b", data={"project_id": 1})

        self.assertEqual(result["sent"], 1)
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["deactivated"], 1)
        self.assertNotIn("error", result)
        self.assertTrue(healthy.is_active)
        self.assertIsNone(healthy.last_error)
        self.assertFalse(gone.is_active)
        self.assertEqual(result["failures"][0]["status_code"], 410)
        payload = json.loads(mock_webpush.call_args_list[0].kwargs["data"])
        self.assertEqual(payload["title"], "t")
        self.assertEqual(payload["data"], {"project_id": 1})

    @patch("paintconnect.services.push_providers.webpush")
    def test_subscription_without_keys_fails_without_request(self, mock_webpush) -> None:
        row = PushSubscription(id=3, user_id=1, provider=PushProviderName.WEBPUSH, endpoint="https://push.test/c", is_active=True)

        result = self._provider().send_batch([row], title="t", body="b")

        mock_webpush.assert_not_called()
        self.assertEqual(result["error"], "all_deliveries_failed")
        self.assertEqual(row.last_error, "missing_subscription_keys")

    @patch("paintconnect.services.push_providers.webpush")
    def test_network_error_is_recorded_as_failed_delivery(self, mock_webpush) -> None:
        mock_webpush.side_effect = requests.exceptions.ConnectionError("push service unreachable")
        row = PushSubscription(id=4, user_id=1, provider=PushProviderName.WEBPUSH, endpoint="https://push.test/d", p256dh="k4", auth="a4", is_active=True)

        result = self._provider().send_batch([row], title="t", body="b")

        self.assertEqual(result["error"], "all_deliveries_failed")
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["deactivated"], 0)
        self.assertIsNone(result["failures"][0]["status_code"])
        self.assertEqual(result["failures"][0]["error"], "push service unreachable")
        self.assertTrue(row.is_active)
        self.assertEqual(row.last_error, "push service unreachable")


class BuildPushProviderTests(unittest.TestCase):
    def test_selects_provider_from_settings(self) -> None:
        self.assertIsInstance(build_push_provider(Settings(push_provider="onesignal")), OneSignalPushProvider)
        self.assertIsInstance(build_push_provider(Settings(push_provider="webpush")), WebPushProvider)
        with self.assertRaises(ValueError):
            build_push_provider(Settings(push_provider="carrier-pigeon"))


if __name__ == "__main__":
    unittest.main()
