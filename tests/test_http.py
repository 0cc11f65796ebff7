"""
Retry policy tests for core.http.send_with_retry.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from confluence_qa.core.errors import AuthenticationError, TransientNetworkError, UpstreamRequestError
from confluence_qa.core.http import compute_backoff, is_retryable_status, send_with_retry


def _client(responses):
    """Build an AsyncClient that replays `responses` (status codes or exceptions) in order."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, type) and issubclass(item, Exception):
            raise item("boom", request=request)
        return httpx.Response(item, json={"ok": item < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


class TestBackoff:
    def test_exponential_with_jitter(self):
        assert 2.0 <= compute_backoff(1, 2.0) <= 2.25
        assert 4.0 <= compute_backoff(2, 2.0) <= 4.25
        assert 8.0 <= compute_backoff(3, 2.0) <= 8.25

    def test_retryable_statuses(self):
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert is_retryable_status(429)
        assert not is_retryable_status(404)
        assert not is_retryable_status(401)


class TestSendWithRetry:
    @pytest.mark.asyncio
    async def test_retries_server_error_then_succeeds(self):
        client, calls = _client([503, 200])
        with patch("confluence_qa.core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await send_with_retry(client, "GET", "https://x.test/a", service="Test")
        await client.aclose()

        assert response.status_code == 200
        assert len(calls) == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried(self):
        client, calls = _client([401, 200])
        with patch("confluence_qa.core.http.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(AuthenticationError) as exc_info:
                await send_with_retry(
                    client, "GET", "https://x.test/a", service="Test", auth_hint="Check TOKEN."
                )
        await client.aclose()

        assert len(calls) == 1
        assert exc_info.value.status_code == 401
        assert "Check TOKEN." in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        client, calls = _client([404])
        with patch("confluence_qa.core.http.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(UpstreamRequestError) as exc_info:
                await send_with_retry(client, "GET", "https://x.test/a", service="Test")
        await client.aclose()

        assert len(calls) == 1
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_transient_error(self):
        client, calls = _client([500])
        with patch("confluence_qa.core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(TransientNetworkError) as exc_info:
                await send_with_retry(
                    client, "GET", "https://x.test/a", service="Test", max_retries=2
                )
        await client.aclose()

        assert len(calls) == 3
        assert sleep.await_count == 2
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        client, calls = _client([httpx.ConnectError, 200])
        with patch("confluence_qa.core.http.asyncio.sleep", new_callable=AsyncMock):
            response = await send_with_retry(client, "GET", "https://x.test/a", service="Test")
        await client.aclose()

        assert response.status_code == 200
        assert len(calls) == 2
