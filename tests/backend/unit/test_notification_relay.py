import asyncio
import json

import httpx

from intake.infrastructure.messaging import notification_relay as messages
from intake.infrastructure.messaging.notification_relay import NotificationRelay


def test_send_posts_address_and_message():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200)

    relay = NotificationRelay("http://relay/send", transport=httpx.MockTransport(handler))

    assert asyncio.run(relay.send("+15550100", "hello")) is True
    assert seen == [{"address": "+15550100", "message": "hello"}]


def test_send_failures_are_swallowed():
    relay = NotificationRelay(
        "http://relay/send", transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )
    assert asyncio.run(relay.send("+15550100", "hello")) is False


def test_disabled_relay_or_missing_address_sends_nothing():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    relay = NotificationRelay("", transport=httpx.MockTransport(handler))
    assert asyncio.run(relay.send("+15550100", "hello")) is False

    relay = NotificationRelay("http://relay/send", transport=httpx.MockTransport(handler))
    assert asyncio.run(relay.send(None, "hello")) is False
    assert calls == []


def test_messages_name_the_file():
    assert "scan.pdf" in messages.started_message("scan.pdf")
    assert "45 seconds" in messages.progress_message("scan.pdf", 45)
    assert "bad page" in messages.failed_message("scan.pdf", "bad page")
    assert "scan.pdf" in messages.untracked_message("scan.pdf")
