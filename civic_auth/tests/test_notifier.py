from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone

import httpx

from civic_auth.auth.notifier import HttpAccountNotifier

EXPIRES = datetime(2030, 1, 1, 13, 0, tzinfo=timezone.utc)


class HttpAccountNotifierTests(unittest.IsolatedAsyncioTestCase):
    async def test_posts_reset_message(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"queued": True})

        notifier = HttpAccountNotifier(
            "https://relay.example",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://relay.example"),
        )

        delivered = await notifier.send_password_reset("a@b.com", "Ada", "tok", EXPIRES)

        self.assertTrue(delivered)
        self.assertEqual(seen[0].url.path, "/messages/password-reset")
        body = json.loads(seen[0].content.decode())
        self.assertEqual(body["to"], "a@b.com")
        self.assertEqual(body["token"], "tok")
        self.assertEqual(body["expires_at"], EXPIRES.isoformat())

    async def test_rejected_message_reports_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        notifier = HttpAccountNotifier(
            "https://relay.example",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://relay.example"),
        )

        self.assertFalse(await notifier.send_email_verification("a@b.com", None, "tok", EXPIRES))

    async def test_unreachable_relay_reports_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        notifier = HttpAccountNotifier(
            "https://relay.example",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://relay.example"),
        )

        with self.assertLogs("civic_auth.notifier", level="WARNING"):
            self.assertFalse(await notifier.send_password_reset("a@b.com", None, "tok", EXPIRES))

    async def test_api_key_sent_as_bearer_token(self) -> None:
        notifier = HttpAccountNotifier("https://relay.example", api_key="secret")
        try:
            self.assertEqual(notifier.client.headers["Authorization"], "Bearer secret")
        finally:
            await notifier.aclose()


if __name__ == "__main__":
    unittest.main()
