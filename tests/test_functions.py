"""Tests for clubops.functions — Edge Function calls with retry."""

import json
from unittest.mock import patch

import httpx
import pytest

from clubops.config import Settings
from clubops.errors import ConfigError, ConnectionFailure, FunctionInvocationError
from clubops.functions import invoke_function, post_webhook


def _client(*responses):
    """httpx client that replays *responses* (ints become bare status codes)."""
    calls = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item, text="error")
        return item

    return httpx.Client(transport=httpx.MockTransport(handler)), calls


class TestInvokeFunction:
    @patch("clubops.functions.time.sleep")
    def test_posts_with_service_role_key(self, mock_sleep, settings):
        client, calls = _client(httpx.Response(200, json={"totalProcessed": 2}))

        result = invoke_function(settings, "vacation-checker", {"source": "test"}, client=client)

        assert result == {"totalProcessed": 2}
        (request,) = calls
        assert str(request.url) == "https://example.supabase.co/functions/v1/vacation-checker"
        assert request.headers["Authorization"] == "Bearer service-role-key"
        assert json.loads(request.content) == {"source": "test"}
        mock_sleep.assert_not_called()

    @patch("clubops.functions.time.sleep")
    def test_retries_on_server_errors(self, mock_sleep, settings):
        client, calls = _client(503, 502, httpx.Response(200, json={"ok": True}))

        assert invoke_function(settings, "send-reminder-emails", client=client) == {"ok": True}
        assert len(calls) == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2, 4]

    @patch("clubops.functions.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep, settings):
        client, calls = _client(500, 500, 500)

        with pytest.raises(FunctionInvocationError) as excinfo:
            invoke_function(settings, "vacation-checker", client=client)

        assert excinfo.value.status_code == 500
        assert len(calls) == 3

    @patch("clubops.functions.time.sleep")
    def test_client_errors_fail_immediately(self, mock_sleep, settings):
        client, calls = _client(httpx.Response(400, text="bad payload"))

        with pytest.raises(FunctionInvocationError) as excinfo:
            invoke_function(settings, "vacation-checker", client=client)

        assert excinfo.value.body == "bad payload"
        assert len(calls) == 1
        mock_sleep.assert_not_called()

    @patch("clubops.functions.time.sleep")
    def test_network_errors_are_retried_then_classified(self, mock_sleep, settings):
        refused = httpx.ConnectError("[Errno 111] Connection refused")
        client, calls = _client(refused, refused, refused)

        with pytest.raises(ConnectionFailure):
            invoke_function(settings, "vacation-checker", client=client)
        assert len(calls) == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2, 4]

    @patch("clubops.functions.time.sleep")
    def test_recovers_after_network_error(self, mock_sleep, settings):
        client, _ = _client(httpx.ConnectError("reset"), httpx.Response(200, json={"ok": True}))
        assert invoke_function(settings, "vacation-checker", client=client) == {"ok": True}

    def test_non_json_body_is_returned_as_text(self, settings):
        client, _ = _client(httpx.Response(200, text="done"))
        assert invoke_function(settings, "vacation-checker", client=client) == "done"

    def test_requires_service_role_key(self):
        with pytest.raises(ConfigError, match="SUPABASE_SERVICE_ROLE_KEY"):
            invoke_function(Settings(supabase_url="https://example.supabase.co"), "vacation-checker")


class TestPostWebhook:
    def test_posts_payload_without_auth(self):
        client, calls = _client(httpx.Response(200, json={"received": True}))

        assert post_webhook("https://hooks.example.com/x", {"type": "ping"}, client=client) == {"received": True}
        assert "Authorization" not in calls[0].headers
